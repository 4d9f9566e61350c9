"""
DNS provider interfaces.

``DnsProviderBackend`` is the uniform zone/record surface every provider
implements. Edge worker deployment (scripts, routes, KV storage) is a
separate capability only some providers offer; callers obtain it through
``ProviderGateway.edge_workers`` rather than by inspecting backend classes.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from mailtrust.common.exceptions import InvalidInputError
from mailtrust.common.models import ProviderType

Credentials = dict[str, Any]

_TXT_VERSION_RE = re.compile(r"^\s*v\s*=\s*([A-Za-z0-9]+)")


def txt_version_tag(value: str) -> Optional[str]:
    """Return the lower-cased ``v=`` tag of a TXT value (``spf1``, ``dkim1``...)."""
    match = _TXT_VERSION_RE.match(value)
    return match.group(1).lower() if match else None


def txt_value_replaces(existing: str, new: str) -> bool:
    """
    Decide whether publishing TXT value ``new`` overwrites ``existing``.

    Values sharing a ``v=`` tag belong to the same policy and replace each
    other. Untagged values (site verification tokens and the like) are only
    matched exactly, so they sit alongside managed values.
    """
    tag = txt_version_tag(new)
    if tag is None:
        return existing == new
    return txt_version_tag(existing) == tag


@dataclass
class ProviderRecord:
    """A record as reported by a provider listing."""

    id: str
    record_type: str
    name: str
    value: str
    ttl: int
    priority: Optional[int] = None


class DnsProviderBackend(ABC):
    """Zone and record operations for one DNS provider."""

    provider_type: ProviderType
    required_credentials: tuple[str, ...] = ()

    def validate_credentials(self, credentials: Credentials) -> None:
        """
        Check that all required credential fields are present.

        Raises:
            InvalidInputError: If a required field is missing or blank.
        """
        for key in self.required_credentials:
            if not str(credentials.get(key) or "").strip():
                raise InvalidInputError(
                    "credentials", key,
                    f"{self.provider_type.value} credentials require '{key}'",
                )

    @abstractmethod
    def list_zones(self, credentials: Credentials) -> list[str]:
        """Return the zone names visible to the credentials."""

    @abstractmethod
    def resolve_zone_id(self, domain: str, credentials: Credentials) -> str:
        """
        Locate the zone serving ``domain``.

        Raises:
            ZoneNotFoundError: If no zone matches exactly.
        """

    @abstractmethod
    def upsert_record(
        self,
        zone_id: str,
        record_type: str,
        name: str,
        value: str,
        ttl: int,
        credentials: Credentials,
        priority: Optional[int] = None,
    ) -> str:
        """Create or replace a record, returning the provider's record id."""

    @abstractmethod
    def delete_record(
        self, zone_id: str, provider_record_id: str, credentials: Credentials
    ) -> None:
        """Delete a record by provider record id."""

    @abstractmethod
    def list_records(self, zone_id: str, credentials: Credentials) -> list[ProviderRecord]:
        """List all records in a zone."""


class EdgeWorkerCapability(ABC):
    """Edge script hosting used to serve MTA-STS policies."""

    @abstractmethod
    def create_worker_script(
        self,
        account_id: str,
        script_name: str,
        script: str,
        credentials: Credentials,
        kv_bindings: Optional[dict[str, str]] = None,
    ) -> str:
        """Create or replace a worker script, returning its id."""

    @abstractmethod
    def create_worker_route(
        self, zone_id: str, pattern: str, script_name: str, credentials: Credentials
    ) -> Optional[str]:
        """Bind a route pattern to a script."""

    @abstractmethod
    def create_kv_namespace(
        self, account_id: str, title: str, credentials: Credentials
    ) -> str:
        """Create a KV namespace, returning its id."""

    @abstractmethod
    def write_kv_value(
        self,
        account_id: str,
        namespace_id: str,
        key: str,
        value: str,
        credentials: Credentials,
    ) -> None:
        """Write one value into a KV namespace."""
