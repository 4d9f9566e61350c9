"""
Pytest fixtures for mailtrust tests.

Provides in-memory fakes for the outside world: a DNS backend serving
dnspython rdata from a dict, a provider backend recording every call, and
an MTA client recording configured keys.
"""

import os
import sys
from datetime import datetime, timezone
from typing import Any, Optional

import dns.rdata
import dns.rdataclass
import dns.rdatatype
import dns.resolver
import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from mailtrust.common.exceptions import ZoneNotFoundError  # noqa: E402
from mailtrust.common.models import DnsProviderCredential, Domain, ProviderType  # noqa: E402
from mailtrust.common.storage import MemoryStorage  # noqa: E402
from mailtrust.crypto.vault import SecretVault  # noqa: E402
from mailtrust.dns.resolver import DNSResolver  # noqa: E402
from mailtrust.providers.base import (  # noqa: E402
    DnsProviderBackend,
    EdgeWorkerCapability,
    ProviderRecord,
)
from mailtrust.providers.gateway import ProviderGateway  # noqa: E402

TEST_KEY = "base64:" + "QUJDREVGR0hJSktMTU5PUFFSU1RVVldYWVoxMjM0NTY="
FIXED_NOW = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)


def _txt_rdata_text(value: str) -> str:
    chunks = [value[i:i + 255] for i in range(0, len(value), 255)] or [""]
    return " ".join('"%s"' % c.replace("\\", "\\\\").replace('"', '\\"') for c in chunks)


class FakeDnsBackend:
    """
    Stand-in for ``dns.resolver.Resolver``.

    ``records`` maps ``(name, TYPE)`` to a list of presentation-format
    values, or to an exception instance to raise. Unknown names raise
    NXDOMAIN. Every query is recorded in ``queries``.
    """

    def __init__(self, records: Optional[dict[tuple[str, str], Any]] = None) -> None:
        self.records: dict[tuple[str, str], Any] = dict(records or {})
        self.queries: list[tuple[str, str]] = []

    def add(self, name: str, record_type: str, *values: str) -> None:
        self.records.setdefault((name, record_type), []).extend(values)

    def fail(self, name: str, record_type: str, error: Exception) -> None:
        self.records[(name, record_type)] = error

    def resolve(self, name: str, rdtype: str) -> list:
        self.queries.append((name, rdtype))
        entry = self.records.get((name, rdtype))
        if isinstance(entry, Exception):
            raise entry
        if not entry:
            raise dns.resolver.NXDOMAIN()

        rdtype_value = dns.rdatatype.from_text(rdtype)
        result = []
        for value in entry:
            text = _txt_rdata_text(value) if rdtype == "TXT" else value
            result.append(dns.rdata.from_text(dns.rdataclass.IN, rdtype_value, text))
        return result


class FakeProviderBackend(DnsProviderBackend, EdgeWorkerCapability):
    """Provider backend that keeps records in a dict and records every call."""

    provider_type = ProviderType.CLOUDFLARE
    required_credentials = ("apiToken",)

    def __init__(self, zones: Optional[dict[str, str]] = None) -> None:
        self.zones = zones if zones is not None else {"example.com": "zone-1"}
        self.records: dict[str, ProviderRecord] = {}
        self.calls: list[tuple] = []
        self.failing: dict[str, Exception] = {}
        self.kv: dict[tuple[str, str], str] = {}
        self.scripts: dict[str, tuple[str, dict[str, str]]] = {}
        self.routes: dict[str, str] = {}

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.failing:
            raise self.failing[operation]

    def list_zones(self, credentials):
        self.calls.append(("list_zones",))
        self._maybe_fail("list_zones")
        return sorted(self.zones)

    def resolve_zone_id(self, domain, credentials):
        self.calls.append(("resolve_zone_id", domain))
        self._maybe_fail("resolve_zone_id")
        if domain not in self.zones:
            raise ZoneNotFoundError(domain)
        return self.zones[domain]

    def upsert_record(self, zone_id, record_type, name, value, ttl, credentials, priority=None):
        self.calls.append(("upsert_record", record_type, name, value))
        self._maybe_fail("upsert_record")
        self._maybe_fail(f"upsert_record:{record_type}")
        record_id = f"{record_type}:{name}"
        self.records[record_id] = ProviderRecord(
            id=record_id, record_type=record_type, name=name, value=value,
            ttl=ttl, priority=priority,
        )
        return record_id

    def delete_record(self, zone_id, provider_record_id, credentials):
        self.calls.append(("delete_record", provider_record_id))
        self._maybe_fail("delete_record")
        self.records.pop(provider_record_id, None)

    def list_records(self, zone_id, credentials):
        return list(self.records.values())

    def create_worker_script(self, account_id, script_name, script, credentials, kv_bindings=None):
        self.calls.append(("create_worker_script", account_id, script_name))
        self._maybe_fail("create_worker_script")
        self.scripts[script_name] = (script, dict(kv_bindings or {}))
        return f"script-{script_name}"

    def create_worker_route(self, zone_id, pattern, script_name, credentials):
        self.calls.append(("create_worker_route", zone_id, pattern, script_name))
        self._maybe_fail("create_worker_route")
        self.routes[pattern] = script_name
        return "route-1"

    def create_kv_namespace(self, account_id, title, credentials):
        self.calls.append(("create_kv_namespace", account_id, title))
        self._maybe_fail("create_kv_namespace")
        return f"ns-{title}"

    def write_kv_value(self, account_id, namespace_id, key, value, credentials):
        self.calls.append(("write_kv_value", namespace_id, key))
        self._maybe_fail("write_kv_value")
        self.kv[(namespace_id, key)] = value

    def call_names(self) -> list[str]:
        return [c[0] for c in self.calls]


class RecordingMtaClient:
    """MTA client double capturing configured keys."""

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.configured: list[dict[str, str]] = []

    def configure_dkim(self, domain, selector, private_key_b64, algorithm):
        if self.error is not None:
            raise self.error
        self.configured.append({
            "domain": domain,
            "selector": selector,
            "privateKey": private_key_b64,
            "algorithm": algorithm,
        })

    def trigger_reload(self):
        return None


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def vault():
    return SecretVault(TEST_KEY)


@pytest.fixture
def dns_backend():
    return FakeDnsBackend()


@pytest.fixture
def resolver(dns_backend):
    return DNSResolver(backend=dns_backend)


@pytest.fixture
def provider_backend():
    return FakeProviderBackend()


@pytest.fixture
def gateway(provider_backend):
    return ProviderGateway([provider_backend])


@pytest.fixture
def mta_client():
    return RecordingMtaClient()


@pytest.fixture
def domain(storage):
    return storage.save_domain(Domain(name="example.com"))


@pytest.fixture
def provider(storage, vault):
    return storage.save_provider(DnsProviderCredential(
        name="Cloudflare main",
        type=ProviderType.CLOUDFLARE,
        encrypted_credentials=vault.encrypt_json({"apiToken": "cf-token", "accountId": "acct-1"}),
    ))


@pytest.fixture
def managed_domain(storage, provider):
    return storage.save_domain(Domain(name="example.com", dns_provider_id=provider.id))

