"""
Persistence boundary for mailtrust.

The core only needs create/read/update keyed by id plus a handful of
secondary lookups. ``Storage`` names that contract; ``MemoryStorage`` is a
process-local implementation used by the CLI and the test-suite. A
database-backed implementation lives outside this package.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional, TypeVar

from .exceptions import ConflictError, NotFoundError
from .models import (
    BaseEntity,
    CheckType,
    DetectedDkimSelector,
    DkimKey,
    DkimKeyStatus,
    DnsProviderCredential,
    Domain,
    DomainHealthRecord,
    ManagedDnsRecord,
    MtaStsWorker,
)

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=BaseEntity)


class Storage(ABC):
    """Storage operations required by the core."""

    # Domains
    @abstractmethod
    def get_domain(self, domain_id: int) -> Optional[Domain]: ...

    @abstractmethod
    def get_domain_by_name(self, name: str) -> Optional[Domain]: ...

    @abstractmethod
    def list_domains(self) -> list[Domain]: ...

    @abstractmethod
    def save_domain(self, domain: Domain) -> Domain: ...

    # DKIM keys
    @abstractmethod
    def get_dkim_key(self, key_id: int) -> Optional[DkimKey]: ...

    @abstractmethod
    def get_dkim_key_by_selector(self, domain_id: int, selector: str) -> Optional[DkimKey]: ...

    @abstractmethod
    def list_dkim_keys(
        self, domain_id: int, status: Optional[DkimKeyStatus] = None
    ) -> list[DkimKey]: ...

    @abstractmethod
    def save_dkim_key(
        self, key: DkimKey, expected_status: Optional[DkimKeyStatus] = None
    ) -> DkimKey:
        """Persist a key; with ``expected_status`` the stored status must match."""

    # Health records
    @abstractmethod
    def get_health_record(
        self, domain_id: int, check_type: CheckType
    ) -> Optional[DomainHealthRecord]: ...

    @abstractmethod
    def list_health_records(self, domain_id: int) -> list[DomainHealthRecord]: ...

    @abstractmethod
    def save_health_record(self, record: DomainHealthRecord) -> DomainHealthRecord: ...

    # Provider credentials
    @abstractmethod
    def get_provider(self, provider_id: int) -> Optional[DnsProviderCredential]: ...

    @abstractmethod
    def list_providers(self) -> list[DnsProviderCredential]: ...

    @abstractmethod
    def save_provider(self, provider: DnsProviderCredential) -> DnsProviderCredential: ...

    @abstractmethod
    def delete_provider(self, provider_id: int) -> bool: ...

    # DNS records
    @abstractmethod
    def list_dns_records(self, domain_id: int) -> list[ManagedDnsRecord]: ...

    @abstractmethod
    def get_dns_record(self, record_id: int) -> Optional[ManagedDnsRecord]: ...

    @abstractmethod
    def save_dns_record(self, record: ManagedDnsRecord) -> ManagedDnsRecord: ...

    @abstractmethod
    def delete_dns_record(self, record_id: int) -> bool: ...

    # Detected selectors
    @abstractmethod
    def get_detected_selector(
        self, domain: str, selector: str
    ) -> Optional[DetectedDkimSelector]: ...

    @abstractmethod
    def list_detected_selectors(self, domain: str) -> list[DetectedDkimSelector]: ...

    @abstractmethod
    def save_detected_selector(self, entity: DetectedDkimSelector) -> DetectedDkimSelector: ...

    # MTA-STS workers
    @abstractmethod
    def get_mta_sts_worker(self, domain_id: int) -> Optional[MtaStsWorker]: ...

    @abstractmethod
    def save_mta_sts_worker(self, worker: MtaStsWorker) -> MtaStsWorker: ...

    def require_domain(self, domain_id: int) -> Domain:
        """Fetch a domain or raise NotFoundError."""
        domain = self.get_domain(domain_id)
        if domain is None:
            raise NotFoundError("Domain", domain_id)
        return domain

    def require_provider(self, provider_id: int) -> DnsProviderCredential:
        """Fetch a provider credential or raise NotFoundError."""
        provider = self.get_provider(provider_id)
        if provider is None:
            raise NotFoundError("DNS provider", provider_id)
        return provider


class _Table:
    """Id-keyed collection handing out copies of its rows."""

    def __init__(self) -> None:
        self.rows: dict[int, BaseEntity] = {}
        self._next_id = 1

    def get(self, entity_id: int) -> Optional[BaseEntity]:
        row = self.rows.get(entity_id)
        return row.model_copy(deep=True) if row is not None else None

    def all(self) -> list:
        return [row.model_copy(deep=True) for _, row in sorted(self.rows.items())]

    def put(self, entity: E) -> E:
        stored = entity.model_copy(deep=True)
        if stored.id is None:
            stored.id = self._next_id
        self._next_id = max(self._next_id, stored.id + 1)
        self.rows[stored.id] = stored
        return stored.model_copy(deep=True)

    def remove(self, entity_id: int) -> bool:
        return self.rows.pop(entity_id, None) is not None


class MemoryStorage(Storage):
    """
    Thread-safe in-memory storage.

    Enforces the uniqueness rules a relational store would: domain name,
    (domain, selector) for DKIM keys, (domain, check type) for health
    records and (domain, selector) for detected selectors.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._domains = _Table()
        self._keys = _Table()
        self._health = _Table()
        self._providers = _Table()
        self._records = _Table()
        self._selectors = _Table()
        self._workers = _Table()

    # Domains
    def get_domain(self, domain_id: int) -> Optional[Domain]:
        with self._lock:
            return self._domains.get(domain_id)

    def get_domain_by_name(self, name: str) -> Optional[Domain]:
        with self._lock:
            name = name.lower().rstrip(".")
            return next((d for d in self._domains.all() if d.name == name), None)

    def list_domains(self) -> list[Domain]:
        with self._lock:
            return self._domains.all()

    def save_domain(self, domain: Domain) -> Domain:
        with self._lock:
            domain.name = domain.name.lower().rstrip(".")
            existing = self.get_domain_by_name(domain.name)
            if existing is not None and existing.id != domain.id:
                raise ConflictError(f"Domain already exists: {domain.name}")
            return self._domains.put(domain)

    # DKIM keys
    def get_dkim_key(self, key_id: int) -> Optional[DkimKey]:
        with self._lock:
            return self._keys.get(key_id)

    def get_dkim_key_by_selector(self, domain_id: int, selector: str) -> Optional[DkimKey]:
        with self._lock:
            return next(
                (k for k in self._keys.all()
                 if k.domain_id == domain_id and k.selector == selector),
                None,
            )

    def list_dkim_keys(
        self, domain_id: int, status: Optional[DkimKeyStatus] = None
    ) -> list[DkimKey]:
        with self._lock:
            return [
                k for k in self._keys.all()
                if k.domain_id == domain_id and (status is None or k.status == status)
            ]

    def save_dkim_key(
        self, key: DkimKey, expected_status: Optional[DkimKeyStatus] = None
    ) -> DkimKey:
        with self._lock:
            clash = self.get_dkim_key_by_selector(key.domain_id, key.selector)
            if clash is not None and clash.id != key.id:
                raise ConflictError(
                    f"Selector '{key.selector}' already exists for domain {key.domain_id}"
                )
            if expected_status is not None:
                current = self._keys.get(key.id) if key.id is not None else None
                if current is None or current.status != expected_status:
                    raise ConflictError(
                        f"DKIM key {key.id} is no longer {DkimKeyStatus(expected_status).value}",
                        {"current_status": current.status if current else None},
                    )
            return self._keys.put(key)

    # Health records
    def get_health_record(
        self, domain_id: int, check_type: CheckType
    ) -> Optional[DomainHealthRecord]:
        with self._lock:
            return next(
                (r for r in self._health.all()
                 if r.domain_id == domain_id and r.check_type == check_type),
                None,
            )

    def list_health_records(self, domain_id: int) -> list[DomainHealthRecord]:
        with self._lock:
            return [r for r in self._health.all() if r.domain_id == domain_id]

    def save_health_record(self, record: DomainHealthRecord) -> DomainHealthRecord:
        with self._lock:
            existing = self.get_health_record(record.domain_id, record.check_type)
            if existing is not None and existing.id != record.id:
                raise ConflictError(
                    f"Health record for {record.check_type} already exists "
                    f"for domain {record.domain_id}"
                )
            return self._health.put(record)

    # Provider credentials
    def get_provider(self, provider_id: int) -> Optional[DnsProviderCredential]:
        with self._lock:
            return self._providers.get(provider_id)

    def list_providers(self) -> list[DnsProviderCredential]:
        with self._lock:
            return self._providers.all()

    def save_provider(self, provider: DnsProviderCredential) -> DnsProviderCredential:
        with self._lock:
            return self._providers.put(provider)

    def delete_provider(self, provider_id: int) -> bool:
        with self._lock:
            return self._providers.remove(provider_id)

    # DNS records
    def list_dns_records(self, domain_id: int) -> list[ManagedDnsRecord]:
        with self._lock:
            return [r for r in self._records.all() if r.domain_id == domain_id]

    def get_dns_record(self, record_id: int) -> Optional[ManagedDnsRecord]:
        with self._lock:
            return self._records.get(record_id)

    def save_dns_record(self, record: ManagedDnsRecord) -> ManagedDnsRecord:
        with self._lock:
            return self._records.put(record)

    def delete_dns_record(self, record_id: int) -> bool:
        with self._lock:
            return self._records.remove(record_id)

    # Detected selectors
    def get_detected_selector(
        self, domain: str, selector: str
    ) -> Optional[DetectedDkimSelector]:
        with self._lock:
            return next(
                (s for s in self._selectors.all()
                 if s.domain == domain and s.selector == selector),
                None,
            )

    def list_detected_selectors(self, domain: str) -> list[DetectedDkimSelector]:
        with self._lock:
            return sorted(
                (s for s in self._selectors.all() if s.domain == domain),
                key=lambda s: s.selector,
            )

    def save_detected_selector(self, entity: DetectedDkimSelector) -> DetectedDkimSelector:
        with self._lock:
            existing = self.get_detected_selector(entity.domain, entity.selector)
            if existing is not None and existing.id != entity.id:
                raise ConflictError(
                    f"Selector '{entity.selector}' already recorded for {entity.domain}"
                )
            return self._selectors.put(entity)

    # MTA-STS workers
    def get_mta_sts_worker(self, domain_id: int) -> Optional[MtaStsWorker]:
        with self._lock:
            return next(
                (w for w in self._workers.all() if w.domain_id == domain_id), None
            )

    def save_mta_sts_worker(self, worker: MtaStsWorker) -> MtaStsWorker:
        with self._lock:
            existing = self.get_mta_sts_worker(worker.domain_id)
            if existing is not None and existing.id != worker.id:
                raise ConflictError(
                    f"MTA-STS worker already exists for domain {worker.domain_id}"
                )
            return self._workers.put(worker)
