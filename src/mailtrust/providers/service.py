"""
DNS provider credential management.

Credentials are opaque key/value maps, stored as a vault envelope of their
JSON form. Everything handed back to callers is masked; only
``decrypted_credentials`` returns the plaintext map, for use by the
publisher and the MTA-STS manager.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from mailtrust.common.exceptions import ConflictError, InvalidInputError, MailTrustError
from mailtrust.common.models import DnsProviderCredential, ProviderType
from mailtrust.common.storage import Storage
from mailtrust.crypto.vault import SecretVault

from .gateway import ProviderGateway

logger = logging.getLogger(__name__)


@dataclass
class ConnectionTestResult:
    """Outcome of a provider connectivity check."""

    success: bool
    message: str
    zones: int = 0


class ProviderCredentialService:
    """Create, read, update and delete DNS provider credentials."""

    def __init__(self, storage: Storage, vault: SecretVault, gateway: ProviderGateway) -> None:
        self.storage = storage
        self.vault = vault
        self.gateway = gateway

    def _validate(self, name: str, provider_type: ProviderType | str,
                  credentials: dict[str, Any]) -> ProviderType:
        if not name or not name.strip():
            raise InvalidInputError("name", name, "must not be blank")
        if not isinstance(credentials, dict):
            raise InvalidInputError("credentials", "<redacted>", "must be a mapping")
        backend = self.gateway.backend(provider_type)
        backend.validate_credentials(credentials)
        return ProviderType(backend.provider_type)

    def create_provider(
        self, name: str, provider_type: ProviderType | str, credentials: dict[str, Any]
    ) -> DnsProviderCredential:
        """Register a provider; returns the masked entity."""
        ptype = self._validate(name, provider_type, credentials)
        provider = DnsProviderCredential(
            name=name.strip(),
            type=ptype,
            encrypted_credentials=self.vault.encrypt_json(credentials),
        )
        saved = self.storage.save_provider(provider)
        logger.info("Created DNS provider %s (%s)", saved.name, ptype.value)
        return saved.masked()

    def update_provider(
        self,
        provider_id: int,
        name: Optional[str] = None,
        provider_type: Optional[ProviderType | str] = None,
        credentials: Optional[dict[str, Any]] = None,
    ) -> DnsProviderCredential:
        """Update a provider's name, type or credentials."""
        provider = self.storage.require_provider(provider_id)
        new_name = name if name is not None else provider.name
        new_type = provider_type if provider_type is not None else provider.type

        if credentials is None:
            if ProviderType(new_type).value != provider.type:
                raise InvalidInputError(
                    "credentials", "<redacted>", "required when changing provider type"
                )
            credentials = self.vault.decrypt_json(provider.encrypted_credentials)

        ptype = self._validate(new_name, new_type, credentials)
        provider.name = new_name.strip()
        provider.type = ptype
        provider.encrypted_credentials = self.vault.encrypt_json(credentials)
        saved = self.storage.save_provider(provider)
        logger.info("Updated DNS provider %s", saved.name)
        return saved.masked()

    def get_provider(self, provider_id: int) -> DnsProviderCredential:
        return self.storage.require_provider(provider_id).masked()

    def list_providers(self) -> list[DnsProviderCredential]:
        return [p.masked() for p in self.storage.list_providers()]

    def find_by_type(self, provider_type: ProviderType | str) -> Optional[DnsProviderCredential]:
        """First registered provider of a type, masked."""
        wanted = ProviderType(provider_type).value
        for provider in self.storage.list_providers():
            if provider.type == wanted:
                return provider.masked()
        return None

    def decrypted_credentials(self, provider_id: int) -> dict[str, Any]:
        """Return the plaintext credential map of a provider."""
        provider = self.storage.require_provider(provider_id)
        return self.vault.decrypt_json(provider.encrypted_credentials)

    def delete_provider(self, provider_id: int) -> None:
        """
        Delete a provider.

        Raises:
            NotFoundError: If the provider does not exist.
            ConflictError: If any domain references the provider.
        """
        self.storage.require_provider(provider_id)
        users = [
            d.name for d in self.storage.list_domains()
            if provider_id in (d.dns_provider_id, d.ns_provider_id)
        ]
        if users:
            raise ConflictError(
                "DNS provider is in use by one or more domains and cannot be deleted",
                {"domains": users},
            )
        self.storage.delete_provider(provider_id)
        logger.info("Deleted DNS provider %s", provider_id)

    def test_connection(self, provider_id: int) -> ConnectionTestResult:
        """List zones with the stored credentials to confirm they work."""
        provider = self.storage.require_provider(provider_id)
        credentials = self.vault.decrypt_json(provider.encrypted_credentials)
        backend = self.gateway.backend(provider.type)
        try:
            zones = backend.list_zones(credentials)
        except MailTrustError as e:
            logger.warning("Connection test failed for provider %s: %s", provider.name, e)
            return ConnectionTestResult(success=False, message=str(e))
        logger.info("Connection test succeeded for provider %s", provider.name)
        return ConnectionTestResult(
            success=True, message=f"Found {len(zones)} zones", zones=len(zones)
        )
