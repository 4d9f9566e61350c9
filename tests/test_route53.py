"""Tests for the Route53 backend using botocore's Stubber."""

import datetime

import boto3
import pytest
from botocore.stub import Stubber

from mailtrust.common.exceptions import (
    InvalidInputError,
    NotFoundError,
    ProviderAPIError,
    ZoneNotFoundError,
)
from mailtrust.providers.route53 import (
    Route53Backend,
    quote_txt_value,
    split_record_id,
    unquote_txt_value,
)

CREDS = {"accessKeyId": "AKIATEST", "secretAccessKey": "secret", "region": "us-east-1"}
CHANGE_INFO = {
    "ChangeInfo": {
        "Id": "/change/C1",
        "Status": "PENDING",
        "SubmittedAt": datetime.datetime(2025, 3, 14, tzinfo=datetime.timezone.utc),
    }
}


@pytest.fixture
def client():
    return boto3.client(
        "route53",
        aws_access_key_id="AKIATEST",
        aws_secret_access_key="secret",
        region_name="us-east-1",
    )


@pytest.fixture
def stubber(client):
    with Stubber(client) as stub:
        yield stub
        stub.assert_no_pending_responses()


@pytest.fixture
def backend(client):
    built = []

    def factory(credentials):
        built.append(credentials)
        return client

    backend = Route53Backend(client_factory=factory)
    backend.built = built
    return backend


def _zone(name, zone_id="/hostedzone/Z123"):
    return {"Id": zone_id, "Name": name, "CallerReference": "ref"}


def test_txt_quoting_splits_long_values():
    value = "v=DKIM1; k=rsa; p=" + "B" * 300
    quoted = quote_txt_value(value)

    assert quoted.count('"') == 4
    assert quoted.startswith('"v=DKIM1; k=rsa; p=')
    assert unquote_txt_value(quoted) == value


def test_txt_quoting_escapes_quotes():
    assert quote_txt_value('say "hi"') == '"say \\"hi\\""'
    assert unquote_txt_value('"say \\"hi\\""') == 'say "hi"'


def test_split_record_id():
    assert split_record_id("_dmarc.example.com|txt") == ("_dmarc.example.com", "TXT")
    with pytest.raises(InvalidInputError):
        split_record_id("no-separator")


def test_list_zones(backend, stubber):
    stubber.add_response(
        "list_hosted_zones",
        {"HostedZones": [_zone("example.com."), _zone("example.org.", "/hostedzone/Z9")],
         "Marker": "", "IsTruncated": False, "MaxItems": "50"},
        {"MaxItems": "50"},
    )

    assert backend.list_zones(CREDS) == ["example.com", "example.org"]
    assert backend.built == [CREDS]


def test_resolve_zone_id_strips_prefix(backend, stubber):
    stubber.add_response(
        "list_hosted_zones_by_name",
        {"HostedZones": [_zone("example.com.")], "IsTruncated": False, "MaxItems": "1"},
        {"DNSName": "example.com", "MaxItems": "1"},
    )

    assert backend.resolve_zone_id("Example.com", CREDS) == "Z123"


def test_resolve_zone_id_rejects_neighbouring_zone(backend, stubber):
    stubber.add_response(
        "list_hosted_zones_by_name",
        {"HostedZones": [_zone("example.net.")], "IsTruncated": False, "MaxItems": "1"},
        {"DNSName": "example.com", "MaxItems": "1"},
    )

    with pytest.raises(ZoneNotFoundError):
        backend.resolve_zone_id("example.com", CREDS)


def test_upsert_txt_record(backend, stubber):
    stubber.add_response(
        "list_resource_record_sets",
        {"ResourceRecordSets": [], "IsTruncated": False, "MaxItems": "1"},
        {"HostedZoneId": "Z123", "StartRecordName": "_dmarc.example.com.",
         "StartRecordType": "TXT", "MaxItems": "1"},
    )
    stubber.add_response(
        "change_resource_record_sets",
        CHANGE_INFO,
        {
            "HostedZoneId": "Z123",
            "ChangeBatch": {"Changes": [{
                "Action": "UPSERT",
                "ResourceRecordSet": {
                    "Name": "_dmarc.example.com.",
                    "Type": "TXT",
                    "TTL": 3600,
                    "ResourceRecords": [{"Value": '"v=DMARC1; p=none"'}],
                },
            }]},
        },
    )

    record_id = backend.upsert_record(
        "Z123", "txt", "_dmarc.example.com", "v=DMARC1; p=none", 3600, CREDS
    )

    assert record_id == "_dmarc.example.com|TXT"


def test_upsert_txt_keeps_other_policies(backend, stubber):
    stubber.add_response(
        "list_resource_record_sets",
        {"ResourceRecordSets": [{
            "Name": "example.com.", "Type": "TXT", "TTL": 300,
            "ResourceRecords": [
                {"Value": '"google-site-verification=abc123"'},
                {"Value": '"v=spf1 ~all"'},
            ],
        }], "IsTruncated": False, "MaxItems": "1"},
        {"HostedZoneId": "Z123", "StartRecordName": "example.com.",
         "StartRecordType": "TXT", "MaxItems": "1"},
    )
    stubber.add_response(
        "change_resource_record_sets",
        CHANGE_INFO,
        {
            "HostedZoneId": "Z123",
            "ChangeBatch": {"Changes": [{
                "Action": "UPSERT",
                "ResourceRecordSet": {
                    "Name": "example.com.",
                    "Type": "TXT",
                    "TTL": 3600,
                    "ResourceRecords": [
                        {"Value": '"google-site-verification=abc123"'},
                        {"Value": '"v=spf1 -all"'},
                    ],
                },
            }]},
        },
    )

    backend.upsert_record("Z123", "TXT", "example.com", "v=spf1 -all", 3600, CREDS)


def test_upsert_mx_record_prefixes_priority(backend, stubber):
    stubber.add_response(
        "change_resource_record_sets",
        CHANGE_INFO,
        {
            "HostedZoneId": "Z123",
            "ChangeBatch": {"Changes": [{
                "Action": "UPSERT",
                "ResourceRecordSet": {
                    "Name": "example.com.",
                    "Type": "MX",
                    "TTL": 300,
                    "ResourceRecords": [{"Value": "10 mx.example.com"}],
                },
            }]},
        },
    )

    backend.upsert_record("Z123", "MX", "example.com", "mx.example.com", 300, CREDS, priority=10)


def test_delete_record_looks_up_record_set(backend, stubber):
    record_set = {
        "Name": "mta-sts.example.com.",
        "Type": "A",
        "TTL": 3600,
        "ResourceRecords": [{"Value": "192.0.2.1"}],
    }
    stubber.add_response(
        "list_resource_record_sets",
        {"ResourceRecordSets": [record_set], "IsTruncated": False, "MaxItems": "1"},
        {"HostedZoneId": "Z123", "StartRecordName": "mta-sts.example.com.",
         "StartRecordType": "A", "MaxItems": "1"},
    )
    stubber.add_response(
        "change_resource_record_sets",
        CHANGE_INFO,
        {"HostedZoneId": "Z123",
         "ChangeBatch": {"Changes": [{"Action": "DELETE", "ResourceRecordSet": record_set}]}},
    )

    backend.delete_record("Z123", "mta-sts.example.com|A", CREDS)


def test_delete_missing_record(backend, stubber):
    stubber.add_response(
        "list_resource_record_sets",
        {"ResourceRecordSets": [{
            "Name": "www.example.com.", "Type": "A", "TTL": 60,
            "ResourceRecords": [{"Value": "192.0.2.9"}],
        }], "IsTruncated": False, "MaxItems": "1"},
        {"HostedZoneId": "Z123", "StartRecordName": "mta-sts.example.com.",
         "StartRecordType": "A", "MaxItems": "1"},
    )

    with pytest.raises(NotFoundError):
        backend.delete_record("Z123", "mta-sts.example.com|A", CREDS)


def test_list_records_decodes_values(backend, stubber):
    stubber.add_response(
        "list_resource_record_sets",
        {"ResourceRecordSets": [
            {"Name": "example.com.", "Type": "MX", "TTL": 300,
             "ResourceRecords": [{"Value": "10 mx1.example.com."}, {"Value": "20 mx2.example.com."}]},
            {"Name": "example.com.", "Type": "TXT", "TTL": 300,
             "ResourceRecords": [{"Value": '"v=spf1 " "-all"'}]},
            {"Name": "alias.example.com.", "Type": "A",
             "AliasTarget": {"HostedZoneId": "Z2", "DNSName": "lb.example.net.",
                             "EvaluateTargetHealth": False}},
        ], "IsTruncated": False, "MaxItems": "100"},
        {"HostedZoneId": "Z123"},
    )

    records = backend.list_records("Z123", CREDS)

    assert [(r.record_type, r.value, r.priority) for r in records] == [
        ("MX", "mx1.example.com.", 10),
        ("MX", "mx2.example.com.", 20),
        ("TXT", "v=spf1 -all", None),
    ]
    assert records[0].id == "example.com|MX"


def test_client_errors_become_provider_errors(backend, stubber):
    stubber.add_client_error(
        "list_hosted_zones",
        service_error_code="AccessDenied",
        service_message="User is not authorized",
        http_status_code=403,
    )

    with pytest.raises(ProviderAPIError, match="AccessDenied"):
        backend.list_zones(CREDS)


def test_missing_credentials_build_no_client(backend):
    with pytest.raises(InvalidInputError):
        backend.list_zones({"accessKeyId": "AKIATEST"})
    assert backend.built == []
