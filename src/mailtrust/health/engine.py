"""
Domain verification engine for mailtrust.

Runs six DNS authentication checks (MX, SPF, DKIM, DMARC, MTA-STS, NS) for
a domain, upserts one health record per check and derives the domain's
aggregate status. Each check is isolated: an exception inside one becomes
an ERROR result for that check only.

A lookup that came back empty because the resolver could not get an answer
(timeout, SERVFAIL) reports UNKNOWN rather than ERROR, and UNKNOWN does not
move the domain into ERROR.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from mailtrust.common.models import (
    CheckType,
    DkimKeyStatus,
    Domain,
    DomainHealthRecord,
    DomainStatus,
    HealthStatus,
    utcnow,
)
from mailtrust.common.storage import Storage
from mailtrust.crypto.dkim import dkim_record_name
from mailtrust.dns.resolver import DNSResolver

logger = logging.getLogger(__name__)


@dataclass
class CheckOutcome:
    """Result of one check before it is persisted."""

    status: HealthStatus
    message: str


@dataclass
class BatchReport:
    """Summary of a verification run over all domains."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    verified: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.verified) + len(self.failed)


class DomainVerificationEngine:
    """Verifies the DNS authentication posture of managed domains."""

    def __init__(
        self,
        storage: Storage,
        resolver: DNSResolver,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self.storage = storage
        self.resolver = resolver
        self.now = now
        self._checks: dict[str, Callable[[Domain], CheckOutcome]] = {
            CheckType.MX.value: self._check_mx,
            CheckType.SPF.value: self._check_spf,
            CheckType.DKIM.value: self._check_dkim,
            CheckType.DMARC.value: self._check_dmarc,
            CheckType.MTA_STS.value: self._check_mta_sts,
            CheckType.NS.value: self._check_ns,
        }

    # Individual checks

    def _count_check(self, hostname: str, record_type: str) -> CheckOutcome:
        result = self.resolver.query(hostname, record_type)
        if result.answers:
            return CheckOutcome(
                HealthStatus.OK, f"Found {len(result.answers)} {record_type} records"
            )
        if result.indeterminate:
            return CheckOutcome(
                HealthStatus.UNKNOWN, f"Could not resolve {record_type} records for {hostname}"
            )
        return CheckOutcome(HealthStatus.ERROR, f"No {record_type} records found for {hostname}")

    def _txt_check(self, hostname: str, prefix: str, missing: str, label: str) -> CheckOutcome:
        result = self.resolver.query(hostname, "TXT")
        match = next((v for v in result.values if v.startswith(prefix)), None)
        if match is not None:
            return CheckOutcome(HealthStatus.OK, f"{label} record is valid: {match}")
        if result.indeterminate:
            return CheckOutcome(
                HealthStatus.UNKNOWN, f"Could not resolve TXT records at {hostname}"
            )
        return CheckOutcome(HealthStatus.ERROR, missing)

    def _check_mx(self, domain: Domain) -> CheckOutcome:
        return self._count_check(domain.name, "MX")

    def _check_ns(self, domain: Domain) -> CheckOutcome:
        return self._count_check(domain.name, "NS")

    def _check_spf(self, domain: Domain) -> CheckOutcome:
        return self._txt_check(domain.name, "v=spf1", "No SPF record found", "SPF")

    def _check_dmarc(self, domain: Domain) -> CheckOutcome:
        host = f"_dmarc.{domain.name}"
        return self._txt_check(host, "v=DMARC1", f"No DMARC record found at {host}", "DMARC")

    def _check_mta_sts(self, domain: Domain) -> CheckOutcome:
        host = f"_mta-sts.{domain.name}"
        return self._txt_check(
            host, "v=STSv1", f"No MTA-STS TXT record found at {host}", "MTA-STS TXT"
        )

    def _check_dkim(self, domain: Domain) -> CheckOutcome:
        active = self.storage.list_dkim_keys(domain.id, DkimKeyStatus.ACTIVE)
        if not active:
            return CheckOutcome(HealthStatus.WARN, "No active DKIM key configured in the system")

        missing: list[str] = []
        unresolved: list[str] = []
        for key in active:
            result = self.resolver.query(dkim_record_name(key.selector, domain.name), "TXT")
            if any(v.startswith("v=DKIM1") for v in result.values):
                continue
            if result.indeterminate:
                unresolved.append(key.selector)
            else:
                missing.append(key.selector)

        if missing:
            return CheckOutcome(
                HealthStatus.ERROR,
                " ".join(f"Selector {s} is missing or invalid." for s in missing),
            )
        if unresolved:
            return CheckOutcome(
                HealthStatus.UNKNOWN,
                f"Could not resolve DKIM records for selectors: {', '.join(unresolved)}",
            )
        return CheckOutcome(HealthStatus.OK, "All active DKIM keys have valid DNS records")

    def perform_check(self, domain: Domain, check_type: CheckType | str) -> CheckOutcome:
        """Run one check, converting any exception into an ERROR outcome."""
        check_type = CheckType(check_type)
        try:
            return self._checks[check_type.value](domain)
        except Exception as e:
            logger.error(
                "Exception during health check %s for domain %s: %s",
                check_type.value, domain.name, e, exc_info=True,
            )
            return CheckOutcome(HealthStatus.ERROR, f"Error executing check: {e}")

    # Runs

    def run_checks(self, domain_id: int) -> list[DomainHealthRecord]:
        """
        Run all six checks for a domain and persist the results.

        Each check is saved on its own; a failed save is logged and the
        remaining checks are still run and saved.

        Returns:
            The health record of each check, in check order. A record whose
            save failed is returned unsaved.

        Raises:
            NotFoundError: If the domain does not exist.
        """
        domain = self.storage.require_domain(domain_id)
        results: list[DomainHealthRecord] = []

        for check_type in CheckType:
            outcome = self.perform_check(domain, check_type)
            record = self.storage.get_health_record(domain_id, check_type) or DomainHealthRecord(
                domain_id=domain_id, check_type=check_type
            )
            record.status = outcome.status
            record.message = outcome.message
            record.last_checked = self.now()
            try:
                record = self.storage.save_health_record(record)
            except Exception as e:
                logger.error(
                    "Failed to save %s health record for domain %s: %s",
                    check_type.value, domain.name, e,
                )
            results.append(record)

        any_error = any(r.status == HealthStatus.ERROR for r in results)
        domain.status = DomainStatus.ERROR if any_error else DomainStatus.ACTIVE
        domain.last_health_check = self.now()
        self.storage.save_domain(domain)

        logger.info("Completed health checks for domain %s (%s)", domain.name, domain.status)
        return results

    def verify_domain(self, domain_id: int) -> list[DomainHealthRecord]:
        """On-demand verification of one domain."""
        domain = self.storage.require_domain(domain_id)
        logger.info("Running on-demand verification for domain: %s", domain.name)
        return self.run_checks(domain_id)

    def get_health(self, domain_id: int) -> list[DomainHealthRecord]:
        self.storage.require_domain(domain_id)
        records = self.storage.list_health_records(domain_id)
        logger.debug("Retrieved %d health records for domain %s", len(records), domain_id)
        return records

    def verify_all(self) -> BatchReport:
        """
        Verify every known domain, one at a time.

        A failure on one domain is logged and recorded in the report; the
        batch continues with the next domain.
        """
        report = BatchReport(started_at=self.now())
        domains = self.storage.list_domains()
        logger.info("Running scheduled health checks for %d domains", len(domains))

        for domain in domains:
            try:
                self.run_checks(domain.id)
                report.verified.append(domain.name)
            except Exception as e:
                logger.error(
                    "Error running scheduled health check for domain %s: %s", domain.name, e
                )
                report.failed[domain.name] = str(e)

        report.finished_at = self.now()
        return report
