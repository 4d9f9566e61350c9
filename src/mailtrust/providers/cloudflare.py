"""
Cloudflare DNS and Workers backend.

Talks to the Cloudflare v4 REST API with bearer-token authentication.
Every response is a JSON envelope ``{success, result, errors}``; a false
``success`` is raised as ProviderAPIError carrying the ``errors`` payload.
"""

import json
import logging
from typing import Any, Optional

import requests

from mailtrust.common.exceptions import (
    ProviderAPIError,
    UpstreamUnavailableError,
    ZoneNotFoundError,
)
from mailtrust.common.models import ProviderType
from mailtrust.dns.resolver import normalize_domain

from .base import (
    Credentials,
    DnsProviderBackend,
    EdgeWorkerCapability,
    ProviderRecord,
    txt_value_replaces,
)

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.cloudflare.com/client/v4"
# TTL of 1 means "automatic" to Cloudflare
AUTO_TTL = 1
WORKER_MAIN_MODULE = "worker.js"
WORKER_COMPATIBILITY_DATE = "2024-09-23"
PAGE_SIZE = 100


def _txt_content(record: dict[str, Any]) -> str:
    content = record.get("content") or ""
    if len(content) >= 2 and content[0] == content[-1] == '"':
        return content[1:-1]
    return content


class CloudflareBackend(DnsProviderBackend, EdgeWorkerCapability):
    """Cloudflare implementation of DNS records and edge workers."""

    provider_type = ProviderType.CLOUDFLARE
    required_credentials = ("apiToken",)

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    def _call(
        self,
        method: str,
        path: str,
        credentials: Credentials,
        operation: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Issue one API call and return the decoded envelope."""
        self.validate_credentials(credentials)
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {"Authorization": f"Bearer {credentials['apiToken']}"}
        headers.update(kwargs.pop("headers", {}))

        try:
            response = self.session.request(
                method, url, headers=headers, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            raise UpstreamUnavailableError(
                f"Cloudflare request failed: {e}", {"operation": operation}
            ) from e

        try:
            payload = response.json()
        except ValueError:
            raise ProviderAPIError(
                self.provider_type.value, operation,
                f"HTTP {response.status_code} with non-JSON body",
            )

        if not isinstance(payload, dict) or not payload.get("success"):
            errors = payload.get("errors") if isinstance(payload, dict) else None
            raise ProviderAPIError(
                self.provider_type.value, operation,
                errors or f"HTTP {response.status_code}",
            )
        return payload

    def _request(self, method: str, path: str, credentials: Credentials,
                 operation: str, **kwargs: Any) -> Any:
        return self._call(method, path, credentials, operation, **kwargs).get("result")

    # DNS

    def list_zones(self, credentials: Credentials) -> list[str]:
        result = self._request(
            "GET", "zones", credentials, "list zones", params={"per_page": 50}
        )
        return [zone["name"] for zone in result or []]

    def resolve_zone_id(self, domain: str, credentials: Credentials) -> str:
        wanted = normalize_domain(domain)
        result = self._request(
            "GET", "zones", credentials, "look up zone", params={"name": wanted}
        )
        for zone in result or []:
            if normalize_domain(zone.get("name", "")) == wanted:
                logger.debug("Resolved Cloudflare zone %s for %s", zone["id"], wanted)
                return zone["id"]
        raise ZoneNotFoundError(wanted)

    def _find_record(
        self, zone_id: str, record_type: str, name: str, value: str, credentials: Credentials
    ) -> Optional[dict[str, Any]]:
        result = self._request(
            "GET", f"zones/{zone_id}/dns_records", credentials, "look up DNS record",
            params={"type": record_type, "name": name},
        ) or []
        if record_type != "TXT":
            return result[0] if result else None
        # Several TXT records share a name; only the one for the same policy is replaced
        return next(
            (r for r in result if txt_value_replaces(_txt_content(r), value)), None
        )

    def upsert_record(
        self,
        zone_id: str,
        record_type: str,
        name: str,
        value: str,
        ttl: int,
        credentials: Credentials,
        priority: Optional[int] = None,
    ) -> str:
        record_type = record_type.upper()
        name = normalize_domain(name)
        body: dict[str, Any] = {
            "type": record_type,
            "name": name,
            "content": value,
            "ttl": ttl or AUTO_TTL,
        }
        if priority is not None:
            body["priority"] = priority

        existing = self._find_record(zone_id, record_type, name, value, credentials)
        if existing is not None:
            self._request(
                "PUT", f"zones/{zone_id}/dns_records/{existing['id']}", credentials,
                "update DNS record", json=body,
            )
            logger.info("Updated Cloudflare %s record %s", record_type, name)
            return existing["id"]

        result = self._request(
            "POST", f"zones/{zone_id}/dns_records", credentials,
            "create DNS record", json=body,
        )
        logger.info("Created Cloudflare %s record %s", record_type, name)
        return result["id"]

    def delete_record(
        self, zone_id: str, provider_record_id: str, credentials: Credentials
    ) -> None:
        self._request(
            "DELETE", f"zones/{zone_id}/dns_records/{provider_record_id}", credentials,
            "delete DNS record",
        )
        logger.info("Deleted Cloudflare record %s", provider_record_id)

    def list_records(self, zone_id: str, credentials: Credentials) -> list[ProviderRecord]:
        records: list[ProviderRecord] = []
        page = 1
        while True:
            payload = self._call(
                "GET", f"zones/{zone_id}/dns_records", credentials, "list DNS records",
                params={"page": page, "per_page": PAGE_SIZE},
            )
            for item in payload.get("result") or []:
                records.append(ProviderRecord(
                    id=item["id"],
                    record_type=item["type"],
                    name=item["name"],
                    value=item.get("content", ""),
                    ttl=item.get("ttl", AUTO_TTL),
                    priority=item.get("priority"),
                ))
            total_pages = (payload.get("result_info") or {}).get("total_pages", 1)
            if page >= total_pages:
                return records
            page += 1

    # Workers

    def create_worker_script(
        self,
        account_id: str,
        script_name: str,
        script: str,
        credentials: Credentials,
        kv_bindings: Optional[dict[str, str]] = None,
    ) -> str:
        metadata = {
            "main_module": WORKER_MAIN_MODULE,
            "compatibility_date": WORKER_COMPATIBILITY_DATE,
            "bindings": [
                {"type": "kv_namespace", "name": binding, "namespace_id": namespace_id}
                for binding, namespace_id in (kv_bindings or {}).items()
            ],
        }
        files = {
            "metadata": (None, json.dumps(metadata), "application/json"),
            WORKER_MAIN_MODULE: (
                WORKER_MAIN_MODULE, script.encode("utf-8"), "application/javascript+module"
            ),
        }
        result = self._request(
            "PUT", f"accounts/{account_id}/workers/scripts/{script_name}", credentials,
            "upload worker script", files=files,
        )
        logger.info("Uploaded Cloudflare worker script %s", script_name)
        return (result or {}).get("id") or script_name

    def create_worker_route(
        self, zone_id: str, pattern: str, script_name: str, credentials: Credentials
    ) -> Optional[str]:
        routes = self._request(
            "GET", f"zones/{zone_id}/workers/routes", credentials, "list worker routes"
        )
        body = {"pattern": pattern, "script": script_name}
        for route in routes or []:
            if route.get("pattern") != pattern:
                continue
            if route.get("script") != script_name:
                self._request(
                    "PUT", f"zones/{zone_id}/workers/routes/{route['id']}", credentials,
                    "update worker route", json=body,
                )
            return route.get("id")

        result = self._request(
            "POST", f"zones/{zone_id}/workers/routes", credentials,
            "create worker route", json=body,
        )
        logger.info("Bound worker route %s to %s", pattern, script_name)
        return (result or {}).get("id")

    def create_kv_namespace(
        self, account_id: str, title: str, credentials: Credentials
    ) -> str:
        existing = self._request(
            "GET", f"accounts/{account_id}/storage/kv/namespaces", credentials,
            "list KV namespaces", params={"per_page": PAGE_SIZE},
        )
        for namespace in existing or []:
            if namespace.get("title") == title:
                return namespace["id"]

        result = self._request(
            "POST", f"accounts/{account_id}/storage/kv/namespaces", credentials,
            "create KV namespace", json={"title": title},
        )
        logger.info("Created KV namespace %s", title)
        return result["id"]

    def write_kv_value(
        self,
        account_id: str,
        namespace_id: str,
        key: str,
        value: str,
        credentials: Credentials,
    ) -> None:
        self._request(
            "PUT",
            f"accounts/{account_id}/storage/kv/namespaces/{namespace_id}/values/{key}",
            credentials,
            "write KV value",
            data=value.encode("utf-8"),
            headers={"Content-Type": "text/plain"},
        )
