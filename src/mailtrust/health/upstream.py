"""Aggregated health of upstream services (the MTA and friends)."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)

STATUS_UP = "UP"
STATUS_DOWN = "DOWN"
STATUS_DEGRADED = "DEGRADED"


@dataclass
class ServiceHealth:
    name: str
    url: str
    status: str
    response: Any = None
    error: Optional[str] = None


@dataclass
class AggregateHealth:
    status: str
    timestamp: float
    services: dict[str, ServiceHealth] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "services": {
                name: {k: v for k, v in vars(s).items() if v is not None}
                for name, s in self.services.items()
            },
        }


class UpstreamHealthChecker:
    """
    Probes ``<url>/health`` for each configured service in parallel.

    Each probe is bounded by ``timeout``; a slow or failing service is
    reported DOWN rather than holding up the aggregate.
    """

    def __init__(
        self,
        services: dict[str, str],
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.services = {name: url.rstrip("/") for name, url in services.items()}
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Any) -> "UpstreamHealthChecker":
        return cls(settings.upstream.services, timeout=settings.upstream.timeout)

    def probe(self, name: str, url: str) -> ServiceHealth:
        try:
            response = self.session.get(f"{url}/health", timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning("%s health check failed: %s", name, e)
            return ServiceHealth(name=name, url=url, status=STATUS_DOWN, error=str(e))

        try:
            body = response.json()
        except ValueError:
            body = response.text
        return ServiceHealth(name=name, url=url, status=STATUS_UP, response=body)

    def check(self) -> AggregateHealth:
        """Probe all services and aggregate: UP if all are UP, else DEGRADED."""
        logger.debug("Aggregating health from %d services", len(self.services))
        results: dict[str, ServiceHealth] = {}
        if self.services:
            with ThreadPoolExecutor(max_workers=len(self.services)) as pool:
                futures = {
                    name: pool.submit(self.probe, name, url)
                    for name, url in self.services.items()
                }
                results = {name: future.result() for name, future in futures.items()}

        healthy = all(s.status == STATUS_UP for s in results.values())
        return AggregateHealth(
            status=STATUS_UP if healthy else STATUS_DEGRADED,
            timestamp=time.time(),
            services=results,
        )
