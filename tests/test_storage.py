"""Tests for the in-memory storage backend."""

import pytest

from mailtrust.common.exceptions import ConflictError, NotFoundError
from mailtrust.common.models import (
    CheckType,
    DetectedDkimSelector,
    DkimAlgorithm,
    DkimKey,
    DkimKeyStatus,
    Domain,
    DomainHealthRecord,
    HealthStatus,
    MtaStsWorker,
)


def _key(domain_id, selector, status=DkimKeyStatus.ACTIVE):
    return DkimKey(
        domain_id=domain_id,
        selector=selector,
        algorithm=DkimAlgorithm.RSA_2048,
        encrypted_private_key="v1.a.b",
        public_key="MIIB",
        status=status,
    )


class TestDomains:

    def test_names_are_normalized_and_unique(self, storage):
        saved = storage.save_domain(Domain(name="Example.COM."))

        assert saved.id == 1
        assert saved.name == "example.com"
        assert storage.get_domain_by_name("EXAMPLE.com").id == saved.id
        with pytest.raises(ConflictError):
            storage.save_domain(Domain(name="example.com"))

    def test_returns_copies(self, storage):
        saved = storage.save_domain(Domain(name="example.com"))
        saved.name = "changed.example"

        assert storage.get_domain(saved.id).name == "example.com"

    def test_require_domain(self, storage):
        with pytest.raises(NotFoundError):
            storage.require_domain(42)
        with pytest.raises(NotFoundError):
            storage.require_provider(42)


class TestDkimKeys:

    def test_selector_unique_per_domain(self, storage):
        storage.save_dkim_key(_key(1, "mt1"))
        storage.save_dkim_key(_key(2, "mt1"))

        with pytest.raises(ConflictError):
            storage.save_dkim_key(_key(1, "mt1"))

    def test_list_filters_by_status(self, storage):
        storage.save_dkim_key(_key(1, "mt1", DkimKeyStatus.RETIRED))
        storage.save_dkim_key(_key(1, "mt2"))

        active = storage.list_dkim_keys(1, DkimKeyStatus.ACTIVE)

        assert [k.selector for k in active] == ["mt2"]
        assert len(storage.list_dkim_keys(1)) == 2

    def test_expected_status_guards_transition(self, storage):
        key = storage.save_dkim_key(_key(1, "mt1"))

        key.status = DkimKeyStatus.ROTATING
        storage.save_dkim_key(key, expected_status=DkimKeyStatus.ACTIVE)

        key.status = DkimKeyStatus.RETIRED
        with pytest.raises(ConflictError) as exc_info:
            storage.save_dkim_key(key, expected_status=DkimKeyStatus.ACTIVE)
        assert exc_info.value.details == {"current_status": "ROTATING"}
        assert storage.get_dkim_key(key.id).status == DkimKeyStatus.ROTATING

    def test_expected_status_requires_stored_key(self, storage):
        with pytest.raises(ConflictError):
            storage.save_dkim_key(_key(1, "mt1"), expected_status=DkimKeyStatus.ACTIVE)


class TestUniqueness:

    def test_one_health_record_per_check(self, storage):
        first = storage.save_health_record(
            DomainHealthRecord(domain_id=1, check_type=CheckType.SPF)
        )
        first.status = HealthStatus.OK
        storage.save_health_record(first)

        with pytest.raises(ConflictError):
            storage.save_health_record(
                DomainHealthRecord(domain_id=1, check_type=CheckType.SPF)
            )
        assert storage.get_health_record(1, CheckType.SPF).status == "OK"

    def test_one_detected_selector_per_domain(self, storage):
        storage.save_detected_selector(DetectedDkimSelector(domain="example.com", selector="k1"))
        storage.save_detected_selector(DetectedDkimSelector(domain="example.com", selector="a1"))

        with pytest.raises(ConflictError):
            storage.save_detected_selector(
                DetectedDkimSelector(domain="example.com", selector="k1")
            )
        assert [s.selector for s in storage.list_detected_selectors("example.com")] == [
            "a1", "k1"
        ]

    def test_one_worker_per_domain(self, storage):
        worker = storage.save_mta_sts_worker(MtaStsWorker(domain_id=1, worker_name="w"))
        worker.worker_id = "script-w"
        storage.save_mta_sts_worker(worker)

        with pytest.raises(ConflictError):
            storage.save_mta_sts_worker(MtaStsWorker(domain_id=1, worker_name="other"))
        assert storage.get_mta_sts_worker(1).worker_id == "script-w"
        assert storage.get_mta_sts_worker(2) is None
