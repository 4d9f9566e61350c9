"""
Pre-onboarding DNS census of a domain.

Collects NS, A, MX and TXT records at the apex and the well-known email
subdomains, probes for DKIM selectors, looks up conventional CNAMEs and
fingerprints the nameserver vendor to suggest a registered provider.

DKIM selector discovery runs in two phases. Phase 1 probes a fixed list of
common selector names. Every hit marks its alphabetic prefix (trailing
digits stripped) as a family; phase 2 then walks ``<prefix>1`` to
``<prefix>20`` for each family and stops at the first index with no record.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from mailtrust.common.models import (
    DetectedDkimSelector,
    DnsProviderCredential,
    ManagedDnsRecord,
    ProviderType,
    utcnow,
)
from mailtrust.common.storage import Storage
from mailtrust.crypto.dkim import dkim_record_name, parse_dkim_tags
from mailtrust.dns.resolver import DNSResolver, validate_hostname

logger = logging.getLogger(__name__)

BASE_DKIM_SELECTORS = (
    "default", "google", "mail", "selector1", "selector2",
    "k1", "k2", "k3", "dkim", "dkim1", "dkim2",
    "smtp", "s1", "s2", "key1", "key2",
    "mta", "mta1", "mta2", "mx", "sig1",
    "email", "outbound", "primary", "main", "a", "b",
)
MAX_FAMILY_INDEX = 20

CNAME_SUBDOMAINS = (
    "autoconfig", "autodiscover", "_mta-sts", "mail", "smtp", "imap", "pop", "webmail",
)

UNKNOWN_PROVIDER = "UNKNOWN"

_TRAILING_DIGITS = re.compile(r"\d+$")


@dataclass
class DnsRecordEntry:
    """One discovered record."""

    type: str
    name: str
    value: str


@dataclass
class ParsedDkimRecord:
    public_key: str
    algorithm: str = "rsa"
    test_mode: bool = False
    revoked: bool = False


@dataclass
class DomainLookupResult:
    """Everything a discovery scan found for a domain."""

    domain: str
    ns_records: list[str] = field(default_factory=list)
    mx_records: list[str] = field(default_factory=list)
    spf_records: list[str] = field(default_factory=list)
    dmarc_records: list[str] = field(default_factory=list)
    mta_sts_records: list[str] = field(default_factory=list)
    smtp_tls_records: list[str] = field(default_factory=list)
    detected_ns_provider_type: str = UNKNOWN_PROVIDER
    suggested_provider: Optional[DnsProviderCredential] = None
    available_providers: list[DnsProviderCredential] = field(default_factory=list)
    all_records: list[DnsRecordEntry] = field(default_factory=list)
    detected_dkim_selectors: list[DetectedDkimSelector] = field(default_factory=list)
    probed_selectors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "ns_records": self.ns_records,
            "mx_records": self.mx_records,
            "spf_records": self.spf_records,
            "dmarc_records": self.dmarc_records,
            "mta_sts_records": self.mta_sts_records,
            "smtp_tls_records": self.smtp_tls_records,
            "detected_ns_provider_type": self.detected_ns_provider_type,
            "suggested_provider": (
                self.suggested_provider.to_dict() if self.suggested_provider else None
            ),
            "available_providers": [p.to_dict() for p in self.available_providers],
            "all_records": [vars(r) for r in self.all_records],
            "detected_dkim_selectors": [
                s.model_dump(mode="json", exclude={"id"}) for s in self.detected_dkim_selectors
            ],
        }


def parse_dkim_record(value: str) -> Optional[ParsedDkimRecord]:
    """
    Interpret a DKIM TXT value.

    Returns None when the value has no ``p`` tag (not a key record). An
    empty ``p`` marks the key revoked; a ``t`` tag containing ``y`` marks
    test mode.
    """
    tags = parse_dkim_tags(value)
    if "p" not in tags:
        return None
    return ParsedDkimRecord(
        public_key=tags["p"],
        algorithm=tags.get("k") or "rsa",
        test_mode="y" in tags.get("t", ""),
        revoked=tags["p"] == "",
    )


def detect_ns_provider_type(ns_records: list[str]) -> str:
    """Fingerprint nameservers: CLOUDFLARE, AWS_ROUTE53 or UNKNOWN."""
    for ns in ns_records:
        lower = ns.lower()
        if ".ns.cloudflare.com" in lower:
            return ProviderType.CLOUDFLARE.value
        if ".awsdns-" in lower:
            return ProviderType.AWS_ROUTE53.value
    return UNKNOWN_PROVIDER


def selector_family(selector: str) -> str:
    return _TRAILING_DIGITS.sub("", selector)


class DiscoveryScanner:
    """Best-effort DNS snapshot used before a domain is onboarded."""

    def __init__(
        self,
        storage: Storage,
        resolver: DNSResolver,
        now: Callable[[], datetime] = utcnow,
        base_selectors: tuple[str, ...] = BASE_DKIM_SELECTORS,
    ) -> None:
        self.storage = storage
        self.resolver = resolver
        self.now = now
        self.base_selectors = base_selectors

    def _collect(self, result: DomainLookupResult, record_type: str, host: str) -> list[str]:
        values = self.resolver.query(host, record_type).values
        result.all_records.extend(DnsRecordEntry(record_type, host, v) for v in values)
        return values

    def _probe_selector(self, result: DomainLookupResult, domain: str, selector: str) -> bool:
        host = dkim_record_name(selector, domain)
        result.probed_selectors.append(selector)
        values = self._collect(result, "TXT", host)
        for value in values:
            parsed = parse_dkim_record(value)
            if parsed is None:
                continue
            result.detected_dkim_selectors.append(DetectedDkimSelector(
                domain=domain,
                selector=selector,
                public_key_dns_value=parsed.public_key,
                algorithm=parsed.algorithm,
                test_mode=parsed.test_mode,
                revoked=parsed.revoked,
                detected_at=self.now(),
            ))
        return bool(values)

    def _discover_dkim(self, result: DomainLookupResult, domain: str) -> None:
        phase_one: set[str] = set()
        families: list[str] = []
        for selector in self.base_selectors:
            hit = self._probe_selector(result, domain, selector)
            phase_one.add(selector)
            family = selector_family(selector)
            if hit and family and family not in families:
                families.append(family)

        for family in families:
            for index in range(1, MAX_FAMILY_INDEX + 1):
                selector = f"{family}{index}"
                if selector in phase_one:
                    continue
                if not self._probe_selector(result, domain, selector):
                    logger.debug("DKIM family '%s' ends at index %d", family, index - 1)
                    break

    def _save_selectors(self, domain: str, selectors: list[DetectedDkimSelector]) -> None:
        for entity in selectors:
            try:
                existing = self.storage.get_detected_selector(domain, entity.selector)
                if existing is not None:
                    existing.public_key_dns_value = entity.public_key_dns_value
                    existing.algorithm = entity.algorithm
                    existing.test_mode = entity.test_mode
                    existing.revoked = entity.revoked
                    existing.detected_at = entity.detected_at
                    self.storage.save_detected_selector(existing)
                else:
                    self.storage.save_detected_selector(entity)
            except Exception as e:
                logger.warning(
                    "Failed to save detected DKIM selector %s for %s: %s",
                    entity.selector, domain, e,
                )

    def lookup_domain(self, domain: str) -> DomainLookupResult:
        """
        Scan a domain's public DNS.

        Raises:
            InvalidDomainError: If the domain name is malformed.
        """
        domain = validate_hostname(domain)
        logger.info("Performing DNS lookup for domain: %s", domain)
        result = DomainLookupResult(domain=domain)

        result.ns_records = self._collect(result, "NS", domain)
        self._collect(result, "A", domain)
        self._collect(result, "A", f"mail.{domain}")
        result.mx_records = self._collect(result, "MX", domain)
        apex_txt = self._collect(result, "TXT", domain)
        result.dmarc_records = self._collect(result, "TXT", f"_dmarc.{domain}")
        result.mta_sts_records = self._collect(result, "TXT", f"_mta-sts.{domain}")
        result.smtp_tls_records = self._collect(result, "TXT", f"_smtp._tls.{domain}")
        result.spf_records = [v for v in apex_txt if v.startswith("v=spf1")]

        self._discover_dkim(result, domain)
        self._save_selectors(domain, result.detected_dkim_selectors)

        for sub in CNAME_SUBDOMAINS:
            self._collect(result, "CNAME", f"{sub}.{domain}")

        result.detected_ns_provider_type = detect_ns_provider_type(result.ns_records)
        result.available_providers = [p.masked() for p in self.storage.list_providers()]
        if result.detected_ns_provider_type != UNKNOWN_PROVIDER:
            result.suggested_provider = next(
                (p for p in result.available_providers
                 if p.type == result.detected_ns_provider_type),
                None,
            )

        logger.info(
            "Lookup of %s found %d records and %d DKIM selectors",
            domain, len(result.all_records), len(result.detected_dkim_selectors),
        )
        return result

    def snapshot_records(self, domain_id: int, result: DomainLookupResult) -> list[ManagedDnsRecord]:
        """
        Persist a lookup as the domain's unmanaged record snapshot.

        Any previous unmanaged snapshot for the domain is replaced; managed
        records are left alone.
        """
        self.storage.require_domain(domain_id)
        for record in self.storage.list_dns_records(domain_id):
            if not record.managed:
                self.storage.delete_dns_record(record.id)

        saved = []
        for entry in result.all_records:
            value, priority = entry.value, None
            if entry.type == "MX":
                head, _, tail = entry.value.partition(" ")
                if head.isdigit() and tail:
                    priority, value = int(head), tail
            saved.append(self.storage.save_dns_record(ManagedDnsRecord(
                domain_id=domain_id,
                record_type=entry.type,
                name=entry.name,
                value=value,
                priority=priority,
                managed=False,
            )))
        logger.info("Captured %d existing DNS records for domain %s", len(saved), domain_id)
        return saved
