"""Domain verification, scheduled re-verification and upstream health."""

from .engine import BatchReport, CheckOutcome, DomainVerificationEngine
from .scheduler import HealthCheckScheduler
from .upstream import AggregateHealth, ServiceHealth, UpstreamHealthChecker

__all__ = [
    "AggregateHealth",
    "BatchReport",
    "CheckOutcome",
    "DomainVerificationEngine",
    "HealthCheckScheduler",
    "ServiceHealth",
    "UpstreamHealthChecker",
]
