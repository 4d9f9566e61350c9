"""Tests for MTA-STS worker deployment."""

import pytest

from mailtrust.common.exceptions import (
    ConflictError,
    InvalidInputError,
    NotFoundError,
    ProviderAPIError,
)
from mailtrust.common.models import (
    DnsProviderCredential,
    Domain,
    MtaStsPolicyMode,
    MtaStsWorkerStatus,
    ProviderType,
)
from mailtrust.mtasts.manager import WORKER_SCRIPT, MtaStsManager, worker_name_for
from mailtrust.providers.gateway import ProviderGateway
from mailtrust.providers.route53 import Route53Backend

from conftest import FIXED_NOW

POLICY_ID = str(int(FIXED_NOW.timestamp()))
NAMESPACE = "ns-mta-sts-example.com"


@pytest.fixture
def mtasts(storage, vault, gateway, resolver, clock):
    return MtaStsManager(storage, vault, gateway, resolver, now=clock)


def _managed(storage, domain_id):
    return {(r.record_type, r.name): r for r in storage.list_dns_records(domain_id) if r.managed}


def test_worker_name():
    assert worker_name_for("Mail.Example.com.") == "mta-sts-mail-example-com"


class TestPolicy:

    def test_policy_lists_mx_hosts(self, mtasts, dns_backend):
        dns_backend.add("example.com", "MX", "10 mx1.example.com.", "20 mx2.example.com.")

        assert mtasts.generate_policy("example.com", "enforce") == (
            "version: STSv1\n"
            "mode: enforce\n"
            "max_age: 86400\n"
            "mx: mx1.example.com\n"
            "mx: mx2.example.com\n"
        )

    def test_policy_falls_back_without_mx(self, mtasts):
        policy = mtasts.generate_policy("example.com", MtaStsPolicyMode.TESTING)
        assert policy.endswith("mode: testing\nmax_age: 86400\nmx: mx.example.com\n")


class TestDeployment:

    def test_full_deployment(self, storage, managed_domain, mtasts, provider_backend, dns_backend):
        dns_backend.add("example.com", "MX", "10 mx.example.com.")

        worker = mtasts.initiate_deployment(managed_domain.id)

        assert worker.status == MtaStsWorkerStatus.DEPLOYED
        assert worker.deployed_at == FIXED_NOW
        assert worker.worker_name == "mta-sts-example-com"
        assert worker.worker_id == "script-mta-sts-example-com"
        assert worker.kv_namespace_id == NAMESPACE
        assert worker.policy_version == POLICY_ID
        assert worker.policy_mode == MtaStsPolicyMode.TESTING

        assert provider_backend.call_names() == [
            "create_kv_namespace",
            "write_kv_value",
            "create_worker_script",
            "resolve_zone_id",
            "create_worker_route",
            "resolve_zone_id",
            "upsert_record",
            "resolve_zone_id",
            "upsert_record",
        ]
        script, bindings = provider_backend.scripts["mta-sts-example-com"]
        assert script == WORKER_SCRIPT
        assert bindings == {"POLICY_KV": NAMESPACE}
        assert provider_backend.routes == {
            "mta-sts.example.com/.well-known/mta-sts.txt": "mta-sts-example-com"
        }
        assert provider_backend.kv[(NAMESPACE, "policy")].startswith("version: STSv1\nmode: testing\n")

        managed = _managed(storage, managed_domain.id)
        assert managed[("TXT", "_mta-sts.example.com")].value == f"v=STSv1; id={POLICY_ID}"
        assert managed[("A", "mta-sts.example.com")].value == "192.0.2.1"
        assert storage.get_mta_sts_worker(managed_domain.id) == worker

    def test_redeploy_reuses_namespace(self, storage, managed_domain, mtasts, provider_backend):
        first = mtasts.initiate_deployment(managed_domain.id)
        provider_backend.calls.clear()

        second = mtasts.initiate_deployment(managed_domain.id)

        assert second.id == first.id
        assert "create_kv_namespace" not in provider_backend.call_names()
        assert len(_managed(storage, managed_domain.id)) == 2

    def test_placeholder_a_failure_is_tolerated(self, managed_domain, mtasts, provider_backend):
        provider_backend.failing["upsert_record:A"] = ProviderAPIError(
            "CLOUDFLARE", "create DNS record", "record already exists"
        )

        worker = mtasts.initiate_deployment(managed_domain.id)

        assert worker.status == MtaStsWorkerStatus.DEPLOYED

    def test_provider_failure_marks_worker_error(self, storage, managed_domain, mtasts,
                                                 provider_backend):
        provider_backend.failing["create_worker_route"] = ProviderAPIError(
            "CLOUDFLARE", "create worker route", [{"code": 10020, "message": "zone not active"}]
        )

        with pytest.raises(ProviderAPIError):
            mtasts.initiate_deployment(managed_domain.id)

        worker = storage.get_mta_sts_worker(managed_domain.id)
        assert worker.status == MtaStsWorkerStatus.ERROR
        assert worker.kv_namespace_id == NAMESPACE

    def test_domain_without_provider(self, storage, domain, mtasts):
        with pytest.raises(ConflictError):
            mtasts.initiate_deployment(domain.id)
        assert storage.get_mta_sts_worker(domain.id) is None

    def test_requires_cloudflare(self, storage, vault, resolver, clock):
        route53 = storage.save_provider(DnsProviderCredential(
            name="AWS", type=ProviderType.AWS_ROUTE53,
            encrypted_credentials=vault.encrypt_json({"accessKeyId": "a", "secretAccessKey": "b"}),
        ))
        domain = storage.save_domain(Domain(name="example.com", dns_provider_id=route53.id))
        manager = MtaStsManager(
            storage, vault, ProviderGateway([Route53Backend()]), resolver, now=clock
        )

        with pytest.raises(ConflictError):
            manager.initiate_deployment(domain.id)

    def test_requires_account_id(self, storage, vault, mtasts):
        provider = storage.save_provider(DnsProviderCredential(
            name="CF", type=ProviderType.CLOUDFLARE,
            encrypted_credentials=vault.encrypt_json({"apiToken": "t"}),
        ))
        domain = storage.save_domain(Domain(name="example.com", dns_provider_id=provider.id))

        with pytest.raises(InvalidInputError):
            mtasts.initiate_deployment(domain.id)

    def test_unknown_domain(self, mtasts):
        with pytest.raises(NotFoundError):
            mtasts.initiate_deployment(12)


class TestPolicyMode:

    def test_update_requires_worker(self, managed_domain, mtasts):
        with pytest.raises(NotFoundError):
            mtasts.update_policy_mode(managed_domain.id, "enforce")

    def test_update_republishes_deployed_policy(self, managed_domain, mtasts, provider_backend):
        mtasts.initiate_deployment(managed_domain.id)

        worker = mtasts.update_policy_mode(managed_domain.id, "enforce")

        assert worker.policy_mode == MtaStsPolicyMode.ENFORCE
        assert "mode: enforce\n" in provider_backend.kv[(NAMESPACE, "policy")]
        assert mtasts.get_worker(managed_domain.id).policy_mode == "enforce"

    def test_update_invalid_mode(self, managed_domain, mtasts):
        mtasts.initiate_deployment(managed_domain.id)
        with pytest.raises(InvalidInputError):
            mtasts.update_policy_mode(managed_domain.id, "strict")
