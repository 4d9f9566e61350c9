"""Client for the external MTA's configuration endpoints."""

import logging
from typing import Any, Optional

import requests

from mailtrust.common.exceptions import UpstreamUnavailableError

logger = logging.getLogger(__name__)


class MtaClient:
    """
    Hands DKIM signing keys to the mail-transfer-agent and asks it to
    reload its configuration. Calls are not retried.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Any) -> "MtaClient":
        return cls(settings.mta.service_url, timeout=settings.mta.timeout)

    def _post(self, path: str, payload: Optional[dict[str, Any]] = None) -> None:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.post(url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise UpstreamUnavailableError(f"MTA request to {path} failed: {e}") from e

    def configure_dkim(
        self, domain: str, selector: str, private_key_b64: str, algorithm: str
    ) -> None:
        """Start signing ``domain`` with the given key."""
        self._post("/config/dkim", {
            "domain": domain,
            "selector": selector,
            "privateKey": private_key_b64,
            "algorithm": algorithm,
        })
        logger.info("Configured MTA signing for %s with selector %s", domain, selector)

    def trigger_reload(self) -> None:
        """Ask the MTA to reload its configuration."""
        self._post("/config/reload")
        logger.info("Triggered MTA config reload")
