"""
Unit tests for RegistryClient.

Tests verify role dispatch, the submission timeout, reconciliation
once a timed-out write settles, and shutdown.
"""

import threading
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from medreg.adapters.prover.local import LocalProofService
from medreg.domain.exceptions import DuplicateIdentityError, SubmissionOutcomeUnknown
from medreg.domain.models import BaseRecord, Proof, Receipt, RegistrationPayload, Role
from medreg.domain.registry import RegistryClient
from tests.helpers import SlowRegistry, prove

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)
PAYLOAD = RegistrationPayload(wallet_address="0xaaa", email_commitment="0xc0ffee")


def receipt(role: Role) -> Receipt:
    return Receipt("0xaaa", role, "sub-1", "0xdigest", NOW)


class TestSubmitDispatch:
    """Each role goes to its own registry write."""

    @pytest.mark.parametrize(
        ("role", "method"),
        [
            (Role.PATIENT, "register_patient"),
            (Role.HOSPITAL, "register_hospital"),
            (Role.INSURER, "register_insurer"),
        ],
    )
    def test_dispatch_by_role(self, role: Role, method: str) -> None:
        registry = Mock()
        getattr(registry, method).return_value = receipt(role)

        result = RegistryClient(registry).submit(Proof("seal"), PAYLOAD, role, request_id=7)

        assert result.role is role
        getattr(registry, method).assert_called_once_with(Proof("seal"), PAYLOAD, 7)

    def test_registry_errors_propagate(self) -> None:
        registry = Mock()
        registry.register_patient.side_effect = DuplicateIdentityError("0xaaa")

        with pytest.raises(DuplicateIdentityError):
            RegistryClient(registry).submit(Proof("seal"), PAYLOAD, Role.PATIENT)


class TestTimeout:
    """A slow registry yields an unknown outcome, never a retry."""

    def test_timeout_raises_outcome_unknown(self) -> None:
        release = threading.Event()
        registry = Mock()

        def slow(*_args):
            release.wait(5)
            return receipt(Role.PATIENT)

        registry.register_patient.side_effect = slow
        client = RegistryClient(registry, timeout_seconds=0.05)

        try:
            with pytest.raises(SubmissionOutcomeUnknown):
                client.submit(Proof("seal"), PAYLOAD, Role.PATIENT)
        finally:
            release.set()

        assert registry.register_patient.call_count == 1

    def test_outcome_carries_the_pending_write(self) -> None:
        release = threading.Event()
        registry = Mock()

        def slow(*_args):
            release.wait(5)
            return receipt(Role.PATIENT)

        registry.register_patient.side_effect = slow
        client = RegistryClient(registry, timeout_seconds=0.05)

        with pytest.raises(SubmissionOutcomeUnknown) as excinfo:
            client.submit(Proof("seal"), PAYLOAD, Role.PATIENT)
        outcome = excinfo.value
        assert outcome.pending is not None
        assert not outcome.pending.done()
        assert outcome.write_error is None

        release.set()
        assert outcome.pending.result(timeout=5).role is Role.PATIENT
        assert outcome.write_error is None

    def test_write_error_after_settling(self) -> None:
        release = threading.Event()
        registry = Mock()

        def refuse(*_args):
            release.wait(5)
            raise DuplicateIdentityError("0xaaa")

        registry.register_patient.side_effect = refuse
        client = RegistryClient(registry, timeout_seconds=0.05)

        with pytest.raises(SubmissionOutcomeUnknown) as excinfo:
            client.submit(Proof("seal"), PAYLOAD, Role.PATIENT)
        release.set()
        excinfo.value.pending.exception(timeout=5)

        assert isinstance(excinfo.value.write_error, DuplicateIdentityError)


class TestReconcile:
    """Tests for reading back an unknown outcome."""

    def test_matching_active_record(self) -> None:
        record = BaseRecord("0xaaa", Role.PATIENT, "0xc0ffee", NOW)
        registry = Mock()
        registry.get_role.return_value = record

        assert RegistryClient(registry).reconcile("0xAAA", Role.PATIENT) is record
        registry.get_role.assert_called_once_with("0xaaa")

    def test_other_role_is_not_a_match(self) -> None:
        registry = Mock()
        registry.get_role.return_value = BaseRecord("0xaaa", Role.PATIENT, "0xc0ffee", NOW)
        assert RegistryClient(registry).reconcile("0xaaa", Role.HOSPITAL) is None

    def test_inactive_record_is_not_a_match(self) -> None:
        registry = Mock()
        registry.get_role.return_value = BaseRecord(
            "0xaaa", Role.PATIENT, "0xc0ffee", NOW, is_active=False
        )
        assert RegistryClient(registry).reconcile("0xaaa", Role.PATIENT) is None

    def test_no_record(self) -> None:
        registry = Mock()
        registry.get_role.return_value = None
        assert RegistryClient(registry).reconcile("0xaaa", Role.PATIENT) is None

    def test_reads_only_after_the_write_settles(self, prover: LocalProofService) -> None:
        """A late write is seen by reconcile, not reported as missing."""
        registry = SlowRegistry(prover, delay=0.3)
        client = RegistryClient(registry, timeout_seconds=0.05)
        proof, payload = prove(prover, "0xaaa", "alice@example.com")

        with pytest.raises(SubmissionOutcomeUnknown) as excinfo:
            client.submit(proof, payload, Role.PATIENT)
        assert registry.get_role("0xaaa") is None

        record = client.reconcile("0xaaa", Role.PATIENT, excinfo.value)

        assert record is not None
        assert record.role is Role.PATIENT


class TestClose:
    def test_close_refuses_new_submissions(self) -> None:
        client = RegistryClient(Mock())
        client.close()

        with pytest.raises(RuntimeError):
            client.submit(Proof("seal"), PAYLOAD, Role.PATIENT)


class TestLookups:
    """Read-side calls normalize their input."""

    def test_get_role_normalizes_identity(self) -> None:
        registry = Mock()
        RegistryClient(registry).get_role("  0xABC ")
        registry.get_role.assert_called_once_with("0xabc")

    def test_is_domain_taken_normalizes_domain(self) -> None:
        registry = Mock()
        registry.is_domain_taken.return_value = True
        assert RegistryClient(registry).is_domain_taken(" Hospital.COM ")
        registry.is_domain_taken.assert_called_once_with("hospital.com")
