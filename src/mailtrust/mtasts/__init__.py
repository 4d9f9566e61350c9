"""MTA-STS policy deployment."""

from .manager import WORKER_SCRIPT, MtaStsManager, worker_name_for

__all__ = ["MtaStsManager", "WORKER_SCRIPT", "worker_name_for"]
