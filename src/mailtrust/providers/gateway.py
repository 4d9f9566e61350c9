"""Provider type dispatch."""

import logging
from typing import Any, Iterable

from mailtrust.common.exceptions import ConflictError, InvalidInputError
from mailtrust.common.models import ProviderType

from .base import DnsProviderBackend, EdgeWorkerCapability
from .cloudflare import CloudflareBackend
from .route53 import Route53Backend

logger = logging.getLogger(__name__)


def _type_key(provider_type: ProviderType | str) -> str:
    try:
        return ProviderType(provider_type).value
    except ValueError:
        raise InvalidInputError(
            "provider_type", provider_type, "must be CLOUDFLARE or AWS_ROUTE53"
        )


class ProviderGateway:
    """Maps provider types to backend instances."""

    def __init__(self, backends: Iterable[DnsProviderBackend]) -> None:
        self._backends: dict[str, DnsProviderBackend] = {
            ProviderType(b.provider_type).value: b for b in backends
        }

    def backend(self, provider_type: ProviderType | str) -> DnsProviderBackend:
        """
        Return the DNS backend for a provider type.

        Raises:
            InvalidInputError: If no backend is registered for the type.
        """
        key = _type_key(provider_type)
        try:
            return self._backends[key]
        except KeyError:
            raise InvalidInputError("provider_type", key, "no backend registered")

    def supports_edge_workers(self, provider_type: ProviderType | str) -> bool:
        backend = self._backends.get(_type_key(provider_type))
        return isinstance(backend, EdgeWorkerCapability)

    def edge_workers(self, provider_type: ProviderType | str) -> EdgeWorkerCapability:
        """
        Return the edge worker capability of a provider type.

        Raises:
            ConflictError: If the provider does not host edge workers.
        """
        backend = self.backend(provider_type)
        if not isinstance(backend, EdgeWorkerCapability):
            raise ConflictError(
                f"Provider {_type_key(provider_type)} does not support edge workers"
            )
        return backend


def default_gateway(settings: Any) -> ProviderGateway:
    """Build a gateway with the Cloudflare and Route53 backends from settings."""
    return ProviderGateway([
        CloudflareBackend(
            base_url=settings.cloudflare.api_base_url,
            timeout=settings.cloudflare.timeout,
        ),
        Route53Backend(default_region=settings.route53.default_region),
    ])
