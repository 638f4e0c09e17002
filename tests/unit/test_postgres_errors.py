"""
Unit tests for mapping PostgreSQL unique violations to domain errors.

A writer that loses a race past the pre-checks must see the same error,
naming the same value, as one refused by the pre-checks.
"""

import pytest

from medreg.adapters.repository.postgres import unique_violation_error
from medreg.domain.exceptions import (
    DomainTakenError,
    DuplicateIdentityError,
    EmailCommitmentUsedError,
    ProofAlreadyConsumedError,
    RegistryInvariantError,
)
from medreg.domain.models import Proof, RegistrationPayload

PAYLOAD = RegistrationPayload("0xbbb", "0xc0ffee", "hospital.com", "General")
PROOF = Proof("seal")


class TestUniqueViolationError:
    @pytest.mark.parametrize(
        ("constraint", "error", "value"),
        [
            ("participants_pkey", DuplicateIdentityError, "0xbbb"),
            ("participants_active_domain_key", DomainTakenError, "hospital.com"),
            ("participants_email_commitment_key", EmailCommitmentUsedError, "0xc0ffee"),
            ("consumed_proofs_pkey", ProofAlreadyConsumedError, PROOF.digest),
        ],
    )
    def test_constraint_names_the_conflicting_value(
        self, constraint: str, error: type, value: str
    ) -> None:
        exc = unique_violation_error(constraint, PAYLOAD, PROOF)

        assert type(exc) is error
        assert str(exc) == value

    @pytest.mark.parametrize("constraint", [None, "some_other_key"])
    def test_unknown_constraint(self, constraint: str | None) -> None:
        exc = unique_violation_error(constraint, PAYLOAD, PROOF)

        assert type(exc) is RegistryInvariantError
        assert "0xbbb" in str(exc)
