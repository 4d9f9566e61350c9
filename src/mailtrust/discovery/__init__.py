"""Pre-onboarding DNS discovery."""

from .scanner import (
    BASE_DKIM_SELECTORS,
    DiscoveryScanner,
    DnsRecordEntry,
    DomainLookupResult,
    ParsedDkimRecord,
    detect_ns_provider_type,
    parse_dkim_record,
)

__all__ = [
    "BASE_DKIM_SELECTORS",
    "DiscoveryScanner",
    "DnsRecordEntry",
    "DomainLookupResult",
    "ParsedDkimRecord",
    "detect_ns_provider_type",
    "parse_dkim_record",
]
