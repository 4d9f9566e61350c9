"""
Record publication through a domain's DNS provider.

Each publish is one provider round trip followed by a local
``ManagedDnsRecord`` upsert. There is no rollback across calls.
"""

import logging
from typing import Optional

from mailtrust.common.exceptions import ConflictError, NotFoundError
from mailtrust.common.models import Domain, ManagedDnsRecord
from mailtrust.common.storage import Storage
from mailtrust.crypto.vault import SecretVault
from mailtrust.dns.resolver import normalize_domain

from .base import Credentials, DnsProviderBackend
from .gateway import ProviderGateway

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600


def qualify(name: str, domain: str) -> str:
    """Return ``name`` as a fully qualified name inside ``domain``."""
    name = normalize_domain(name)
    domain = normalize_domain(domain)
    if name in ("", "@"):
        return domain
    if name == domain or name.endswith("." + domain):
        return name
    return f"{name}.{domain}"


class RecordPublisher:
    """Publishes and removes managed DNS records for domains."""

    def __init__(self, storage: Storage, vault: SecretVault, gateway: ProviderGateway) -> None:
        self.storage = storage
        self.vault = vault
        self.gateway = gateway

    def _target(self, domain: Domain) -> Optional[tuple[DnsProviderBackend, Credentials]]:
        if domain.dns_provider_id is None:
            return None
        provider = self.storage.require_provider(domain.dns_provider_id)
        credentials = self.vault.decrypt_json(provider.encrypted_credentials)
        return self.gateway.backend(provider.type), credentials

    def publish(
        self,
        domain_id: int,
        record_type: str,
        name: str,
        value: str,
        ttl: int = DEFAULT_TTL,
        priority: Optional[int] = None,
    ) -> Optional[ManagedDnsRecord]:
        """
        Create or update a record at the domain's DNS provider.

        Args:
            domain_id: Owning domain.
            record_type: DNS record type.
            name: Record name, relative to the domain or fully qualified.
            value: Record value.
            ttl: Time to live in seconds.
            priority: MX priority.

        Returns:
            The persisted managed record, or None when the domain has no DNS
            provider configured.
        """
        domain = self.storage.require_domain(domain_id)
        target = self._target(domain)
        if target is None:
            logger.info("No DNS provider configured for %s, skipping publish", domain.name)
            return None
        backend, credentials = target

        record_type = record_type.upper()
        fqdn = qualify(name, domain.name)
        zone_id = backend.resolve_zone_id(domain.name, credentials)
        record_id = backend.upsert_record(
            zone_id, record_type, fqdn, value, ttl, credentials, priority=priority
        )

        existing = next(
            (r for r in self.storage.list_dns_records(domain_id)
             if r.managed and r.record_type == record_type and r.name == fqdn),
            None,
        )
        record = existing or ManagedDnsRecord(
            domain_id=domain_id, record_type=record_type, name=fqdn, value=value, managed=True
        )
        record.value = value
        record.ttl = ttl
        record.priority = priority
        record.provider_record_id = record_id
        saved = self.storage.save_dns_record(record)
        logger.info("Published %s record %s for %s", record_type, fqdn, domain.name)
        return saved

    def unpublish(self, record_id: int) -> None:
        """
        Delete a managed record at the provider and locally.

        Raises:
            NotFoundError: If the record does not exist.
            ConflictError: If the record is an unmanaged snapshot.
        """
        record = self.storage.get_dns_record(record_id)
        if record is None:
            raise NotFoundError("DNS record", record_id)
        if not record.managed:
            raise ConflictError(f"DNS record {record_id} is not managed and cannot be deleted")

        domain = self.storage.require_domain(record.domain_id)
        target = self._target(domain)
        if target is not None and record.provider_record_id:
            backend, credentials = target
            zone_id = backend.resolve_zone_id(domain.name, credentials)
            backend.delete_record(zone_id, record.provider_record_id, credentials)
        self.storage.delete_dns_record(record_id)
        logger.info("Unpublished %s record %s", record.record_type, record.name)
