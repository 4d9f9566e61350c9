"""
AWS Route53 DNS backend.

Route53 has no per-record identifiers, so records are addressed by the
composite id ``"<fqdn>|<TYPE>"``. A client is built per call from the
credentials ``{accessKeyId, secretAccessKey, region}``.

TXT upserts merge into the record set at that name, replacing only the
value of the same ``v=`` policy. Deleting a ``|TXT`` id removes the set.
"""

import logging
from typing import Any, Callable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from mailtrust.common.exceptions import (
    InvalidInputError,
    NotFoundError,
    ProviderAPIError,
    ZoneNotFoundError,
)
from mailtrust.common.models import ProviderType
from mailtrust.dns.resolver import normalize_domain

from .base import Credentials, DnsProviderBackend, ProviderRecord, txt_value_replaces

logger = logging.getLogger(__name__)

TXT_CHUNK_SIZE = 255


def quote_txt_value(value: str) -> str:
    """Quote a TXT value for Route53, splitting it into 255-byte strings."""
    data = value.encode("utf-8")
    chunks = [data[i:i + TXT_CHUNK_SIZE] for i in range(0, len(data), TXT_CHUNK_SIZE)] or [b""]
    quoted = []
    for chunk in chunks:
        text = chunk.decode("utf-8", errors="ignore")
        text = text.replace("\\", "\\\\").replace('"', '\\"')
        quoted.append(f'"{text}"')
    return " ".join(quoted)


def unquote_txt_value(value: str) -> str:
    """Reverse ``quote_txt_value``: join the quoted strings of one record."""
    parts: list[str] = []
    current: list[str] = []
    in_quotes = False
    escaped = False
    for ch in value:
        if escaped:
            current.append(ch)
            escaped = False
        elif ch == "\\" and in_quotes:
            escaped = True
        elif ch == '"':
            if in_quotes:
                parts.append("".join(current))
                current = []
            in_quotes = not in_quotes
        elif in_quotes:
            current.append(ch)
    if not parts and not in_quotes:
        return value
    return "".join(parts)


def make_record_id(name: str, record_type: str) -> str:
    return f"{normalize_domain(name)}|{record_type.upper()}"


def split_record_id(record_id: str) -> tuple[str, str]:
    name, sep, record_type = record_id.rpartition("|")
    if not sep or not name or not record_type:
        raise InvalidInputError(
            "provider_record_id", record_id, "expected '<name>|<TYPE>'"
        )
    return name, record_type.upper()


class Route53Backend(DnsProviderBackend):
    """AWS Route53 implementation of the DNS provider interface."""

    provider_type = ProviderType.AWS_ROUTE53
    required_credentials = ("accessKeyId", "secretAccessKey")

    def __init__(
        self,
        default_region: str = "us-east-1",
        client_factory: Optional[Callable[[Credentials], Any]] = None,
    ) -> None:
        self.default_region = default_region
        self._client_factory = client_factory or self._build_client

    def _build_client(self, credentials: Credentials) -> Any:
        return boto3.client(
            "route53",
            aws_access_key_id=credentials["accessKeyId"],
            aws_secret_access_key=credentials["secretAccessKey"],
            region_name=credentials.get("region") or self.default_region,
        )

    def _client(self, credentials: Credentials) -> Any:
        self.validate_credentials(credentials)
        return self._client_factory(credentials)

    def _wrap(self, operation: str, error: Exception) -> ProviderAPIError:
        if isinstance(error, ClientError):
            err = error.response.get("Error", {})
            payload = f"{err.get('Code', 'Unknown')}: {err.get('Message', '')}"
        else:
            payload = str(error)
        return ProviderAPIError(self.provider_type.value, operation, payload)

    def list_zones(self, credentials: Credentials) -> list[str]:
        client = self._client(credentials)
        try:
            response = client.list_hosted_zones(MaxItems="50")
        except (ClientError, BotoCoreError) as e:
            raise self._wrap("list hosted zones", e) from e
        return [normalize_domain(z["Name"]) for z in response.get("HostedZones", [])]

    def resolve_zone_id(self, domain: str, credentials: Credentials) -> str:
        wanted = normalize_domain(domain)
        client = self._client(credentials)
        try:
            response = client.list_hosted_zones_by_name(DNSName=wanted, MaxItems="1")
        except (ClientError, BotoCoreError) as e:
            raise self._wrap("look up hosted zone", e) from e

        zones = response.get("HostedZones", [])
        if zones and zones[0]["Name"] in (wanted, wanted + "."):
            zone_id = zones[0]["Id"]
            return zone_id.rsplit("/", 1)[-1]
        raise ZoneNotFoundError(wanted)

    def _format_values(
        self, record_type: str, value: str, priority: Optional[int]
    ) -> list[dict[str, str]]:
        if record_type == "TXT":
            value = quote_txt_value(value)
        elif record_type == "MX" and priority is not None:
            head = value.split(" ", 1)[0]
            if not head.isdigit():
                value = f"{priority} {value}"
        return [{"Value": value}]

    def _change(self, client: Any, zone_id: str, action: str,
                record_set: dict[str, Any], operation: str) -> None:
        try:
            client.change_resource_record_sets(
                HostedZoneId=zone_id,
                ChangeBatch={"Changes": [{"Action": action, "ResourceRecordSet": record_set}]},
            )
        except (ClientError, BotoCoreError) as e:
            raise self._wrap(operation, e) from e

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
        fqdn = normalize_domain(name)
        client = self._client(credentials)
        resource_records = self._format_values(record_type, value, priority)
        if record_type == "TXT":
            # UPSERT replaces the whole set, so keep values of other policies
            current = self._find_record_set(client, zone_id, fqdn, record_type)
            kept = [
                rr for rr in (current or {}).get("ResourceRecords", [])
                if not txt_value_replaces(unquote_txt_value(rr["Value"]), value)
            ]
            resource_records = kept + resource_records
        record_set = {
            "Name": fqdn + ".",
            "Type": record_type,
            "TTL": ttl,
            "ResourceRecords": resource_records,
        }
        self._change(client, zone_id, "UPSERT", record_set, "upsert record")
        logger.info("Upserted Route53 %s record %s", record_type, fqdn)
        return make_record_id(fqdn, record_type)

    def _find_record_set(
        self, client: Any, zone_id: str, name: str, record_type: str
    ) -> Optional[dict[str, Any]]:
        try:
            response = client.list_resource_record_sets(
                HostedZoneId=zone_id,
                StartRecordName=name + ".",
                StartRecordType=record_type,
                MaxItems="1",
            )
        except (ClientError, BotoCoreError) as e:
            raise self._wrap("look up record set", e) from e

        for record_set in response.get("ResourceRecordSets", []):
            if normalize_domain(record_set["Name"]) == name and record_set["Type"] == record_type:
                return record_set
        return None

    def delete_record(
        self, zone_id: str, provider_record_id: str, credentials: Credentials
    ) -> None:
        name, record_type = split_record_id(provider_record_id)
        client = self._client(credentials)
        record_set = self._find_record_set(client, zone_id, name, record_type)
        if record_set is None:
            raise NotFoundError("DNS record", provider_record_id)
        self._change(client, zone_id, "DELETE", record_set, "delete record")
        logger.info("Deleted Route53 %s record %s", record_type, name)

    def list_records(self, zone_id: str, credentials: Credentials) -> list[ProviderRecord]:
        client = self._client(credentials)
        records: list[ProviderRecord] = []
        try:
            paginator = client.get_paginator("list_resource_record_sets")
            for page in paginator.paginate(HostedZoneId=zone_id):
                for record_set in page.get("ResourceRecordSets", []):
                    records.extend(self._to_records(record_set))
        except (ClientError, BotoCoreError) as e:
            raise self._wrap("list record sets", e) from e
        return records

    def _to_records(self, record_set: dict[str, Any]) -> list[ProviderRecord]:
        name = normalize_domain(record_set["Name"])
        record_type = record_set["Type"]
        records = []
        # Alias records carry no ResourceRecords
        for rr in record_set.get("ResourceRecords", []):
            value = rr["Value"]
            priority = None
            if record_type == "TXT":
                value = unquote_txt_value(value)
            elif record_type == "MX":
                head, _, tail = value.partition(" ")
                if head.isdigit():
                    priority, value = int(head), tail
            records.append(ProviderRecord(
                id=make_record_id(name, record_type),
                record_type=record_type,
                name=name,
                value=value,
                ttl=record_set.get("TTL", 0),
                priority=priority,
            ))
        return records
