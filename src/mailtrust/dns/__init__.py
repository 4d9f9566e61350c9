"""DNS lookup client."""

from .resolver import (
    DNSResolver,
    LookupResult,
    RawAnswer,
    normalize_domain,
    validate_hostname,
)

__all__ = [
    "DNSResolver",
    "LookupResult",
    "RawAnswer",
    "normalize_domain",
    "validate_hostname",
]
