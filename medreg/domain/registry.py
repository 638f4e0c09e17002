"""
Registry client - Submission and lookups against the authoritative registry.

Submission dispatches on the closed Role enum to the registry's
role-specific write operation and applies a bounded timeout. A timeout
does not mean failure: the write may still land, so it is reported as
SubmissionOutcomeUnknown carrying the pending write. Callers reconcile
once that write has settled instead of resubmitting the same proof.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from concurrent.futures import wait
from dataclasses import dataclass, field
from typing import assert_never

from .exceptions import SubmissionOutcomeUnknown
from .models import (
    AdminRecord,
    AdminRole,
    BaseRecord,
    OrganizationRecord,
    Permission,
    Proof,
    Receipt,
    RegistrationPayload,
    RegistrationStats,
    Role,
    normalize_identity,
)
from .ports import Registry

logger = logging.getLogger(__name__)


@dataclass
class RegistryClient:
    """Typed access to the registry with at-most-once submission semantics."""

    registry: Registry
    timeout_seconds: float = 12.0
    _executor: ThreadPoolExecutor = field(
        default_factory=lambda: ThreadPoolExecutor(thread_name_prefix="registry-submit"),
        init=False,
        repr=False,
    )

    def submit(
        self,
        proof: Proof,
        payload: RegistrationPayload,
        requested_role: Role,
        request_id: int | None = None,
    ) -> Receipt:
        """
        Submit a proof and payload for the requested role.

        Args:
            proof: Proof from the proving service
            payload: Registration payload bound by the proof
            requested_role: Role to register
            request_id: Originating admin request, if approved through the queue

        Returns:
            Receipt of the registration

        Raises:
            DuplicateIdentityError: identity already holds an active role
            DomainTakenError: domain claimed by another active organization
            EmailCommitmentUsedError: email already used by another registration
            ProofRejectedError: proof invalid or already consumed
            SubmissionOutcomeUnknown: no answer within timeout_seconds
        """
        write = self._writer_for(requested_role)
        logger.info(
            f"Submitting {requested_role.value} registration for "
            f"{payload.wallet_address} (proof {proof.digest})"
        )
        future = self._executor.submit(write, proof, payload, request_id)
        try:
            receipt = future.result(timeout=self.timeout_seconds)
        except FutureTimeout:
            logger.error(
                f"Submission for {payload.wallet_address} timed out after "
                f"{self.timeout_seconds:.1f}s, outcome unknown"
            )
            raise SubmissionOutcomeUnknown(
                f"Registry did not answer within {self.timeout_seconds:g}s", pending=future
            ) from None

        logger.info(f"Registered {receipt.identity} as {receipt.role.value}")
        return receipt

    def reconcile(
        self,
        identity: str,
        requested_role: Role,
        outcome: SubmissionOutcomeUnknown | None = None,
    ) -> BaseRecord | None:
        """
        Read back the outcome of a submission whose result is unknown.

        When `outcome` carries the write that timed out, this waits for
        that write to settle before reading, so None means the write
        finished without recording anything.

        Returns:
            The active record if the identity holds requested_role, else None
        """
        if outcome is not None and outcome.pending is not None:
            logger.info(f"Waiting for the outstanding write for {identity} to settle")
            wait([outcome.pending])
        record = self.get_role(identity)
        if record is not None and record.is_active and record.role is requested_role:
            return record
        return None

    def close(self) -> None:
        """Stop accepting submissions. Writes already running still finish."""
        self._executor.shutdown(wait=False)

    def _writer_for(self, role: Role):
        if role is Role.PATIENT:
            return self.registry.register_patient
        if role is Role.HOSPITAL:
            return self.registry.register_hospital
        if role is Role.INSURER:
            return self.registry.register_insurer
        assert_never(role)

    # Read side: pure lookups, safe without authentication

    def get_role(self, identity: str) -> BaseRecord | None:
        return self.registry.get_role(normalize_identity(identity))

    def get_organization_record(self, identity: str) -> OrganizationRecord | None:
        return self.registry.get_organization_record(normalize_identity(identity))

    def is_domain_taken(self, domain: str) -> bool:
        return self.registry.is_domain_taken(domain.strip().lower())

    def registration_stats(self) -> RegistrationStats:
        return self.registry.registration_stats()

    def get_admin_record(self, identity: str) -> AdminRecord | None:
        return self.registry.get_admin_record(normalize_identity(identity))

    # Admin-side writes, authorized by the caller

    def set_user_active(self, identity: str, active: bool) -> BaseRecord:
        return self.registry.set_user_active(normalize_identity(identity), active)

    def grant_admin(
        self, identity: str, role: AdminRole, permissions: Permission
    ) -> AdminRecord:
        record = self.registry.grant_admin(normalize_identity(identity), role, permissions)
        logger.info(f"Admin {record.wallet_address} now holds {record.role.name}")
        return record
