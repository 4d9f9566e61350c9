"""DKIM key lifecycle management."""

from .manager import DkimLifecycleManager, KeyGenerationResult, SideEffectFailure
from .mta import MtaClient

__all__ = [
    "DkimLifecycleManager",
    "KeyGenerationResult",
    "MtaClient",
    "SideEffectFailure",
]
