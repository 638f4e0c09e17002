"""
Unit tests for the in-memory registry and request store.

These exercise the registry invariants: one record per identity,
active-domain uniqueness, single-use email commitments and
at-most-once proof consumption.
"""

import threading

import pytest

from medreg.adapters.prover.local import LocalProofService
from medreg.adapters.repository.memory import InMemoryRegistry, InMemoryRequestStore
from medreg.domain.exceptions import (
    AlreadyProcessedError,
    DomainTakenError,
    DuplicateIdentityError,
    EmailCommitmentUsedError,
    NotRegisteredError,
    ProofAlreadyConsumedError,
    ProofRejectedError,
    RequestNotFound,
)
from medreg.domain.models import (
    AdminAccessRequest,
    AdminRole,
    OrganizationRecord,
    Permission,
    RequestStatus,
    RequestType,
    Role,
)
from tests.helpers import prove


class TestRegisterPatient:
    """Tests for patient registration."""

    def test_register_and_read_back(
        self, registry: InMemoryRegistry, prover: LocalProofService
    ) -> None:
        proof, payload = prove(prover, "0xaaa", "alice@example.com")

        receipt = registry.register_patient(proof, payload)

        assert receipt.identity == "0xaaa"
        assert receipt.role is Role.PATIENT
        assert receipt.proof_digest == proof.digest
        record = registry.get_role("0xaaa")
        assert record.role is Role.PATIENT
        assert record.is_active
        assert record.originating_request_id is None
        assert registry.get_organization_record("0xaaa") is None
        assert record.email_commitment == payload.email_commitment

    def test_same_proof_twice_changes_nothing(
        self, registry: InMemoryRegistry, prover: LocalProofService
    ) -> None:
        """Second submission of a consumed proof fails without a state change."""
        proof, payload = prove(prover, "0xaaa", "alice@example.com")
        registry.register_patient(proof, payload)
        before = registry.get_role("0xaaa")

        with pytest.raises(ProofAlreadyConsumedError):
            registry.register_patient(proof, payload)

        assert registry.get_role("0xaaa") == before
        assert registry.registration_stats().total_users == 1

    def test_invalid_proof_rejected(
        self, registry: InMemoryRegistry, prover: LocalProofService
    ) -> None:
        proof, _ = prove(prover, "0xaaa", "alice@example.com")
        _, other = prove(prover, "0xeve", "alice@example.com")

        with pytest.raises(ProofRejectedError):
            registry.register_patient(proof, other)

        assert registry.get_role("0xeve") is None

    def test_duplicate_identity(
        self, registry: InMemoryRegistry, prover: LocalProofService
    ) -> None:
        registry.register_patient(*prove(prover, "0xaaa", "alice@example.com"))
        with pytest.raises(DuplicateIdentityError):
            registry.register_patient(*prove(prover, "0xaaa", "alice2@example.com"))

    def test_email_commitment_single_use(
        self, registry: InMemoryRegistry, prover: LocalProofService
    ) -> None:
        """One email address cannot register two wallets."""
        registry.register_patient(*prove(prover, "0xaaa", "alice@example.com"))
        with pytest.raises(EmailCommitmentUsedError):
            registry.register_patient(*prove(prover, "0xbbb", "alice@example.com"))

    def test_reads_proceed_while_proof_is_verified(self, prover: LocalProofService) -> None:
        """A slow verifier must not block other callers of the registry."""
        reads_blocked: list[bool] = []

        class ReadingVerifier:
            def verify(self, proof, payload) -> bool:
                reader = threading.Thread(target=registry.registration_stats)
                reader.start()
                reader.join(1.0)
                reads_blocked.append(reader.is_alive())
                return prover.verify(proof, payload)

        registry = InMemoryRegistry(ReadingVerifier())
        registry.register_patient(*prove(prover, "0xaaa", "alice@example.com"))

        assert reads_blocked == [False]
        assert registry.get_role("0xaaa").role is Role.PATIENT


class TestRegisterOrganization:
    """Tests for hospital and insurer registration."""

    def test_register_hospital(
        self, registry: InMemoryRegistry, prover: LocalProofService
    ) -> None:
        proof, payload = prove(prover, "0xbbb", "it@hospital.com", "hospital.com", "General")

        registry.register_hospital(proof, payload, request_id=3)

        record = registry.get_organization_record("0xbbb")
        assert isinstance(record, OrganizationRecord)
        assert record.organization_type is Role.HOSPITAL
        assert record.domain == "hospital.com"
        assert record.organization_name == "General"
        assert record.originating_request_id == 3
        assert registry.is_domain_taken("hospital.com")

    def test_domain_taken_by_other_organization(
        self, registry: InMemoryRegistry, prover: LocalProofService
    ) -> None:
        registry.register_hospital(
            *prove(prover, "0xbbb", "it@hospital.com", "hospital.com", "General")
        )
        with pytest.raises(DomainTakenError):
            registry.register_insurer(
                *prove(prover, "0xccc", "ops@hospital.com", "hospital.com", "Clone")
            )
        assert registry.get_role("0xccc") is None
        assert registry.get_organization_record("0xbbb").organization_name == "General"

    def test_organization_requires_domain_and_name(
        self, registry: InMemoryRegistry, prover: LocalProofService
    ) -> None:
        proof, payload = prove(prover, "0xbbb", "it@hospital.com", "hospital.com", "")
        with pytest.raises(ProofRejectedError):
            registry.register_hospital(proof, payload)

    def test_deactivation_releases_domain(
        self, registry: InMemoryRegistry, prover: LocalProofService
    ) -> None:
        registry.register_hospital(
            *prove(prover, "0xbbb", "it@hospital.com", "hospital.com", "General")
        )
        registry.set_user_active("0xbbb", False)

        assert not registry.is_domain_taken("hospital.com")
        registry.register_hospital(
            *prove(prover, "0xccc", "new@hospital.com", "hospital.com", "New General")
        )

        # The old owner cannot take the domain back while the new one is active
        with pytest.raises(DomainTakenError):
            registry.set_user_active("0xbbb", True)


class TestActivationAndStats:
    """Tests for user activation toggles and counts."""

    def test_set_user_active_unknown(self, registry: InMemoryRegistry) -> None:
        with pytest.raises(NotRegisteredError):
            registry.set_user_active("0xnobody", False)

    def test_stats_count_active_records(
        self, registry: InMemoryRegistry, prover: LocalProofService
    ) -> None:
        registry.register_patient(*prove(prover, "0xaaa", "alice@example.com"))
        registry.register_patient(*prove(prover, "0xabc", "bob@example.com"))
        registry.register_hospital(
            *prove(prover, "0xbbb", "it@hospital.com", "hospital.com", "General")
        )
        registry.register_insurer(*prove(prover, "0xccc", "ops@insure.com", "insure.com", "Ins"))
        registry.set_user_active("0xabc", False)

        stats = registry.registration_stats()

        assert (stats.total_users, stats.patients, stats.hospitals, stats.insurers) == (3, 1, 1, 1)


class TestAdmins:
    """Tests for admin records."""

    def test_grant_and_upgrade(self, registry: InMemoryRegistry) -> None:
        registry.grant_admin("0xadm", AdminRole.BASIC, Permission.VIEW_REQUESTS)
        upgraded = registry.grant_admin("0xadm", AdminRole.MODERATOR, Permission.MANAGE_USERS)

        assert upgraded.role is AdminRole.MODERATOR
        assert upgraded.has(Permission.VIEW_REQUESTS | Permission.MANAGE_USERS)
        assert registry.get_admin_record("0xadm") == upgraded

    def test_grant_never_downgrades(self, registry: InMemoryRegistry) -> None:
        registry.grant_admin("0xadm", AdminRole.SUPER_ADMIN, Permission.MANAGE_ADMINS)
        record = registry.grant_admin("0xadm", AdminRole.BASIC, Permission.VIEW_REQUESTS)
        assert record.role is AdminRole.SUPER_ADMIN


class TestInMemoryRequestStore:
    """Tests for the request store compare-and-swap."""

    @pytest.fixture
    def request_id(self, store: InMemoryRequestStore) -> int:
        return store.add("0xreq", AdminAccessRequest(AdminRole.BASIC, "need access")).request_id

    def test_add_assigns_increasing_ids(self, store: InMemoryRequestStore) -> None:
        first = store.add("0xa", AdminAccessRequest(AdminRole.BASIC, "r"))
        second = store.add("0xb", AdminAccessRequest(AdminRole.BASIC, "r"))
        assert second.request_id > first.request_id
        assert first.status is RequestStatus.PENDING
        assert first.request_type is RequestType.ADMIN_ACCESS

    def test_process_sets_audit_fields(self, store: InMemoryRequestStore, request_id: int) -> None:
        seen = []
        processed = store.process(request_id, RequestStatus.APPROVED, "0xadmin", seen.append)

        assert processed.status is RequestStatus.APPROVED
        assert processed.processed_by == "0xadmin"
        assert processed.processed_time is not None
        assert [r.request_id for r in seen] == [request_id]
        assert store.list_pending() == []

    def test_second_process_fails(self, store: InMemoryRequestStore, request_id: int) -> None:
        store.process(request_id, RequestStatus.REJECTED, "0xadmin", lambda r: None, reason="no")
        with pytest.raises(AlreadyProcessedError):
            store.process(request_id, RequestStatus.APPROVED, "0xadmin", lambda r: None)
        assert store.get(request_id).rejection_reason == "no"

    def test_failing_effect_keeps_pending(
        self, store: InMemoryRequestStore, request_id: int
    ) -> None:
        def effect(_request):
            raise DomainTakenError("hospital.com")

        with pytest.raises(DomainTakenError):
            store.process(request_id, RequestStatus.APPROVED, "0xadmin", effect)

        assert store.get(request_id).status is RequestStatus.PENDING

    def test_cannot_process_to_pending(self, store: InMemoryRequestStore, request_id: int) -> None:
        with pytest.raises(ValueError):
            store.process(request_id, RequestStatus.PENDING, "0xadmin", lambda r: None)

    def test_unknown_request(self, store: InMemoryRequestStore) -> None:
        with pytest.raises(RequestNotFound):
            store.get(999)

    def test_list_filters(self, store: InMemoryRequestStore, request_id: int) -> None:
        assert [r.request_id for r in store.list_pending(RequestType.ADMIN_ACCESS)] == [request_id]
        assert store.list_pending(RequestType.PATIENT_REGISTRATION) == []
        assert [r.request_id for r in store.list_by_requester("0xreq")] == [request_id]
        assert store.list_by_requester("0xother") == []
