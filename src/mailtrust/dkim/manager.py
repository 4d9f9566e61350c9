"""
DKIM key lifecycle for mailtrust.

Keys move through ACTIVE -> ROTATING -> RETIRED (or ACTIVE -> RETIRED) only
on explicit calls. Generation persists the key first; publishing the TXT
record and handing the key to the MTA follow as independent best-effort
side effects whose failures are reported on the result instead of failing
the operation.

The private key only leaves this module decrypted in the MTA signing call.
Every key returned to callers is masked.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from mailtrust.common.exceptions import (
    ConflictError,
    InvalidDomainError,
    InvalidInputError,
    NotFoundError,
)
from mailtrust.common.models import (
    DkimAlgorithm,
    DkimKey,
    DkimKeyStatus,
    Domain,
    ManagedDnsRecord,
    utcnow,
)
from mailtrust.common.storage import Storage
from mailtrust.crypto import dkim as dkim_crypto
from mailtrust.crypto.vault import SecretVault
from mailtrust.dns.resolver import validate_hostname
from mailtrust.providers.publisher import RecordPublisher

from .mta import MtaClient

logger = logging.getLogger(__name__)

DKIM_RECORD_TTL = 3600
SIDE_EFFECT_DNS = "dns_publish"
SIDE_EFFECT_MTA = "mta_signing"


@dataclass
class SideEffectFailure:
    """A best-effort step that did not complete."""

    step: str
    error: str


@dataclass
class KeyGenerationResult:
    """A persisted key plus the side effects that failed after saving it."""

    key: DkimKey
    failed_side_effects: list[SideEffectFailure] = field(default_factory=list)
    published_record: Optional[ManagedDnsRecord] = None

    @property
    def fully_applied(self) -> bool:
        return not self.failed_side_effects


class DkimLifecycleManager:
    """Generates, rotates and retires DKIM keys."""

    def __init__(
        self,
        storage: Storage,
        vault: SecretVault,
        publisher: Optional[RecordPublisher] = None,
        mta_client: Optional[MtaClient] = None,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self.storage = storage
        self.vault = vault
        self.publisher = publisher
        self.mta_client = mta_client
        self.now = now

    def build_selector(self, algorithm: DkimAlgorithm | str) -> str:
        """Return ``yyyyMM`` + ``r``/``e`` + 6 random hex characters."""
        suffix = "r" if DkimAlgorithm(algorithm) == DkimAlgorithm.RSA_2048 else "e"
        return f"{self.now():%Y%m}{suffix}{secrets.token_hex(3)}"

    def _check_selector(self, selector: str, domain: Domain) -> str:
        selector = (selector or "").strip().lower()
        try:
            validate_hostname(dkim_crypto.dkim_record_name(selector, domain.name))
        except InvalidDomainError:
            raise InvalidInputError("selector", selector, "not a valid DNS label")
        return selector

    def generate_key_pair(
        self,
        domain_id: int,
        algorithm: DkimAlgorithm | str = DkimAlgorithm.RSA_2048,
        selector_override: Optional[str] = None,
        cname_selector: Optional[str] = None,
    ) -> KeyGenerationResult:
        """
        Generate and persist a new ACTIVE key for a domain.

        Args:
            domain_id: Owning domain.
            algorithm: RSA_2048 or ED25519.
            selector_override: Selector to use instead of a generated one.
            cname_selector: Selector this key supersedes, set on rotation.

        Returns:
            KeyGenerationResult with the masked key.

        Raises:
            NotFoundError: If the domain does not exist. Nothing is persisted.
            ConflictError: If the selector is already used for the domain.
            InvalidInputError: If the algorithm or selector is malformed.
        """
        domain = self.storage.require_domain(domain_id)
        try:
            algorithm = DkimAlgorithm(algorithm)
        except ValueError:
            raise InvalidInputError("algorithm", algorithm, "must be RSA_2048 or ED25519")

        selector = self._check_selector(
            selector_override or self.build_selector(algorithm), domain
        )
        if self.storage.get_dkim_key_by_selector(domain_id, selector) is not None:
            raise ConflictError(f"Selector '{selector}' already exists for {domain.name}")

        pair = dkim_crypto.generate_key_pair(algorithm)
        key = DkimKey(
            domain_id=domain_id,
            selector=selector,
            algorithm=algorithm,
            encrypted_private_key=self.vault.encrypt(pair.private_key_b64),
            public_key=pair.public_key_b64,
            cname_selector=cname_selector,
            status=DkimKeyStatus.ACTIVE,
            created_at=self.now(),
        )
        saved = self.storage.save_dkim_key(key)
        logger.info(
            "Generated DKIM key for domain %s with selector '%s' and algorithm %s",
            domain.name, selector, algorithm.value,
        )

        result = KeyGenerationResult(key=saved.masked())
        try:
            result.published_record = self.publish_to_dns(saved)
        except Exception as e:
            logger.warning(
                "DNS publish failed for key %s (domain %s), key saved but DNS record may be missing: %s",
                saved.id, domain.name, e,
            )
            result.failed_side_effects.append(SideEffectFailure(SIDE_EFFECT_DNS, str(e)))

        try:
            self.configure_mta_signing(saved)
        except Exception as e:
            logger.warning(
                "MTA signing config failed for key %s (domain %s), key saved but MTA may not sign yet: %s",
                saved.id, domain.name, e,
            )
            result.failed_side_effects.append(SideEffectFailure(SIDE_EFFECT_MTA, str(e)))

        return result

    def publish_to_dns(self, key: DkimKey) -> Optional[ManagedDnsRecord]:
        """
        Publish the TXT record for a key through the domain's DNS provider.

        Returns:
            The managed record, or None when no publisher or provider is set up.
        """
        if self.publisher is None:
            return None
        domain = self.storage.require_domain(key.domain_id)
        return self.publisher.publish(
            key.domain_id,
            "TXT",
            dkim_crypto.dkim_record_name(key.selector, domain.name),
            dkim_crypto.build_dns_record(key.algorithm, key.public_key),
            ttl=DKIM_RECORD_TTL,
        )

    def configure_mta_signing(self, key: DkimKey) -> bool:
        """
        Hand a key's decrypted private key to the MTA.

        Returns:
            False when no MTA client is configured, True once the MTA accepted it.
        """
        if self.mta_client is None:
            return False
        domain = self.storage.require_domain(key.domain_id)
        stored = self.storage.get_dkim_key(key.id) if key.id is not None else None
        if stored is None:
            raise NotFoundError("DKIM key", key.id)

        self.mta_client.configure_dkim(
            domain.name,
            stored.selector,
            self.vault.decrypt(stored.encrypted_private_key),
            dkim_crypto.algorithm_tag(stored.algorithm),
        )
        return True

    def initiate_rotation(self, domain_id: int) -> KeyGenerationResult:
        """
        Start rotating a domain's signing key.

        The current ACTIVE key becomes ROTATING and a new ACTIVE key with the
        same algorithm is generated, its ``cname_selector`` pointing at the
        old selector.

        Raises:
            NotFoundError: If the domain does not exist.
            ConflictError: If the domain has no ACTIVE key, or the key changed
                state concurrently.
        """
        domain = self.storage.require_domain(domain_id)
        active = self.storage.list_dkim_keys(domain_id, DkimKeyStatus.ACTIVE)
        if not active:
            raise ConflictError(f"No active DKIM key found for domain: {domain.name}")

        current = max(active, key=lambda k: (k.created_at, k.id or 0))
        old_selector = current.selector
        current.status = DkimKeyStatus.ROTATING
        current = self.storage.save_dkim_key(current, expected_status=DkimKeyStatus.ACTIVE)
        logger.info("Set DKIM key '%s' to ROTATING for domain %s", old_selector, domain.name)

        try:
            result = self.generate_key_pair(
                domain_id, current.algorithm, cname_selector=old_selector
            )
        except Exception:
            current.status = DkimKeyStatus.ACTIVE
            self.storage.save_dkim_key(current, expected_status=DkimKeyStatus.ROTATING)
            logger.error("Rotation for %s failed; restored '%s' to ACTIVE", domain.name, old_selector)
            raise

        logger.info(
            "DKIM rotation initiated for domain %s; new selector='%s' points back to old selector='%s'",
            domain.name, result.key.selector, old_selector,
        )
        return result

    def retire_key(self, key_id: int) -> DkimKey:
        """
        Retire a key. DNS records are left in place.

        Raises:
            NotFoundError: If the key does not exist.
            ConflictError: If the key is already RETIRED or changed concurrently.
        """
        key = self.storage.get_dkim_key(key_id)
        if key is None:
            raise NotFoundError("DKIM key", key_id)
        if key.status == DkimKeyStatus.RETIRED:
            raise ConflictError(f"DKIM key {key_id} is already retired")

        previous = DkimKeyStatus(key.status)
        key.status = DkimKeyStatus.RETIRED
        key.retired_at = self.now()
        saved = self.storage.save_dkim_key(key, expected_status=previous)
        logger.info("Retired DKIM key %s (selector='%s')", key_id, saved.selector)
        return saved.masked()

    def get_keys_for_domain(self, domain_id: int) -> list[DkimKey]:
        self.storage.require_domain(domain_id)
        keys = [k.masked() for k in self.storage.list_dkim_keys(domain_id)]
        logger.debug("Retrieved %d DKIM keys for domain %s", len(keys), domain_id)
        return keys

    def get_key(self, key_id: int) -> DkimKey:
        key = self.storage.get_dkim_key(key_id)
        if key is None:
            raise NotFoundError("DKIM key", key_id)
        return key.masked()
