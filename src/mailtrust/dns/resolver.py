"""
DNS client for mailtrust.

Performs targeted lookups (TXT, A, MX, CNAME, NS) for arbitrary hostnames.
Lookups never raise on a miss or a transport failure: both produce an empty
result. A ``LookupResult`` additionally records whether the emptiness is
authoritative (NXDOMAIN / no answer) or indeterminate (timeout, SERVFAIL,
unreachable server) so callers can tell "absent" from "unknown".
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

import dns.exception
import dns.resolver

from mailtrust.common.exceptions import InvalidDomainError, InvalidInputError

logger = logging.getLogger(__name__)

SUPPORTED_RECORD_TYPES = ("A", "TXT", "MX", "CNAME", "NS")

_LABEL_RE = re.compile(r"^(?!-)[a-z0-9_-]{1,63}(?<!-)$")


def normalize_domain(name: str) -> str:
    """Lower-case a hostname and strip any trailing dot."""
    return name.strip().lower().rstrip(".")


def validate_hostname(hostname: Any) -> str:
    """
    Validate and normalize a hostname.

    Args:
        hostname: Candidate hostname.

    Returns:
        The normalized hostname.

    Raises:
        InvalidDomainError: If the hostname is malformed.
    """
    if not isinstance(hostname, str) or not hostname.strip():
        raise InvalidDomainError(hostname, "hostname is empty")

    name = normalize_domain(hostname)
    if len(name) > 253:
        raise InvalidDomainError(hostname, "hostname exceeds 253 characters")

    for label in name.split("."):
        if not label:
            raise InvalidDomainError(hostname, "hostname contains an empty label")
        if len(label) > 63:
            raise InvalidDomainError(hostname, f"label '{label[:20]}...' exceeds 63 characters")
        if not _LABEL_RE.match(label):
            raise InvalidDomainError(hostname, f"label '{label}' contains invalid characters")

    return name


@dataclass(frozen=True)
class RawAnswer:
    """One decoded DNS answer."""

    name: str
    record_type: str
    value: str
    ttl: int = 0


@dataclass
class LookupResult:
    """Answers for one query plus whether an empty result is trustworthy."""

    answers: list[RawAnswer] = field(default_factory=list)
    indeterminate: bool = False

    @property
    def values(self) -> list[str]:
        return [a.value for a in self.answers]

    def __bool__(self) -> bool:
        return bool(self.answers)


def _decode(rdata: Any, record_type: str) -> str:
    if record_type == "TXT":
        return "".join(
            s.decode("utf-8", errors="replace") if isinstance(s, bytes) else s
            for s in rdata.strings
        )
    if record_type == "MX":
        return f"{rdata.preference} {normalize_domain(str(rdata.exchange))}"
    if record_type in ("CNAME", "NS"):
        return normalize_domain(str(rdata.target))
    return str(rdata)


class DNSResolver:
    """
    DNS lookup client.

    No retries and no caching: every call is a fresh query bounded by the
    configured lifetime.
    """

    def __init__(
        self,
        nameservers: Optional[list[str]] = None,
        timeout: float = 5,
        backend: Optional[Any] = None,
    ) -> None:
        """
        Initialize the resolver.

        Args:
            nameservers: Resolver addresses; None uses the system configuration.
            timeout: Query lifetime in seconds.
            backend: Object exposing ``resolve(name, rdtype)``; defaults to a
                ``dns.resolver.Resolver``.
        """
        if backend is None:
            backend = dns.resolver.Resolver()
            if nameservers:
                backend.nameservers = list(nameservers)
            backend.lifetime = timeout
        self._backend = backend

    @classmethod
    def from_settings(cls, settings: Any) -> "DNSResolver":
        """Build a resolver from a Settings instance."""
        return cls(nameservers=settings.dns.nameservers or None, timeout=settings.dns.timeout)

    def query(self, hostname: str, record_type: str) -> LookupResult:
        """
        Look up records of one type.

        Args:
            hostname: Name to query.
            record_type: One of A, TXT, MX, CNAME, NS.

        Returns:
            LookupResult; empty on a miss or on failure.

        Raises:
            InvalidDomainError: If the hostname is malformed.
            InvalidInputError: If the record type is unsupported.
        """
        name = validate_hostname(hostname)
        rdtype = str(record_type).upper()
        if rdtype not in SUPPORTED_RECORD_TYPES:
            raise InvalidInputError(
                "record_type", record_type,
                f"must be one of {', '.join(SUPPORTED_RECORD_TYPES)}",
            )

        try:
            answers = self._backend.resolve(name, rdtype)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            logger.debug("No %s records for %s", rdtype, name)
            return LookupResult()
        except dns.exception.Timeout:
            logger.debug("Timeout resolving %s %s", rdtype, name)
            return LookupResult(indeterminate=True)
        except dns.exception.DNSException as e:
            logger.debug("Lookup of %s %s failed: %s", rdtype, name, e)
            return LookupResult(indeterminate=True)
        except OSError as e:
            logger.debug("Transport error resolving %s %s: %s", rdtype, name, e)
            return LookupResult(indeterminate=True)

        rrset = getattr(answers, "rrset", None)
        ttl = getattr(rrset, "ttl", 0) or 0
        return LookupResult(
            answers=[
                RawAnswer(name=name, record_type=rdtype, value=_decode(rdata, rdtype), ttl=ttl)
                for rdata in answers
            ]
        )

    def lookup(self, hostname: str, record_type: str) -> list[RawAnswer]:
        """Look up records, returning the answers only."""
        return self.query(hostname, record_type).answers

    def resolve_txt(self, hostname: str) -> list[str]:
        """TXT records with character-strings concatenated."""
        return self.query(hostname, "TXT").values

    def resolve_a(self, hostname: str) -> list[str]:
        """A records as dotted quads."""
        return self.query(hostname, "A").values

    def resolve_mx(self, hostname: str) -> list[str]:
        """MX records as ``"<priority> <target>"``."""
        return self.query(hostname, "MX").values

    def resolve_cname(self, hostname: str) -> list[str]:
        """CNAME targets without the trailing dot."""
        return self.query(hostname, "CNAME").values

    def resolve_ns(self, hostname: str) -> list[str]:
        """NS targets without the trailing dot."""
        return self.query(hostname, "NS").values
