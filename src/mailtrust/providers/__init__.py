"""DNS provider backends and the services built on them."""

from .base import DnsProviderBackend, EdgeWorkerCapability, ProviderRecord
from .cloudflare import CloudflareBackend
from .gateway import ProviderGateway, default_gateway
from .publisher import RecordPublisher
from .route53 import Route53Backend
from .service import ConnectionTestResult, ProviderCredentialService

__all__ = [
    "CloudflareBackend",
    "ConnectionTestResult",
    "DnsProviderBackend",
    "EdgeWorkerCapability",
    "ProviderCredentialService",
    "ProviderGateway",
    "ProviderRecord",
    "RecordPublisher",
    "Route53Backend",
    "default_gateway",
]
