"""
Port interfaces - Protocol definitions for infrastructure abstraction.

This module defines the interfaces (ports) that the domain requires
from infrastructure. Adapters implement these protocols.
"""

from collections.abc import Callable
from enum import Enum
from typing import Protocol

from .models import (
    AdminRecord,
    AdminRole,
    BaseRecord,
    EmailContent,
    OrganizationRecord,
    Permission,
    Proof,
    Receipt,
    RegistrationPayload,
    RegistrationStats,
    Request,
    RequestPayload,
    RequestStatus,
    RequestType,
)


class SessionState(str, Enum):
    """
    Registration session states.

    State Transitions (forward-only):
    - ROLE_SELECTION -> DETAILS          (organization roles only)
    - ROLE_SELECTION -> EMAIL_SENT       (patient)
    - DETAILS -> EMAIL_SENT
    - EMAIL_SENT -> EMAIL_COLLECTED      (inbox poller found the email)
    - EMAIL_COLLECTED -> PROOF_GENERATED (proof binder succeeded)
    - PROOF_GENERATED -> SUBMITTED       (registry call outstanding)
    - SUBMITTED -> COMPLETE
    - any non-terminal -> ERROR

    Terminal States:
    - COMPLETE: registration done (or filed for admin approval)
    - ERROR: failure reason recorded, restart needs a new session
    """

    ROLE_SELECTION = "ROLE_SELECTION"
    DETAILS = "DETAILS"
    EMAIL_SENT = "EMAIL_SENT"
    EMAIL_COLLECTED = "EMAIL_COLLECTED"
    PROOF_GENERATED = "PROOF_GENERATED"
    SUBMITTED = "SUBMITTED"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETE, SessionState.ERROR)


class Mailbox(Protocol):
    """Port interface for the mail delivery service."""

    def fetch(self, correlation_id: str) -> EmailContent | None:
        """
        Fetch the email delivered for a correlation id.

        Returns:
            EmailContent if an email arrived, None if not yet arrived

        Raises:
            MailboxUnavailableError: any failure other than "not yet arrived"
        """
        ...


class ProofGenerator(Protocol):
    """Port interface for the external proving service."""

    def generate_proof(self, email: EmailContent, identity: str, domain: str) -> Proof:
        """
        Produce a proof binding the email, the identity and the domain.

        Raises:
            ProofGenerationError: the service refused or failed
        """
        ...


class ProofVerifier(Protocol):
    """Port interface for proof verification, used by registry stores."""

    def verify(self, proof: Proof, payload: RegistrationPayload) -> bool:
        """Return True if the proof binds exactly this payload."""
        ...


class InstructionNotifier(Protocol):
    """Port interface for telling the user where to send the email."""

    def send_instructions(self, identity: str, target_mailbox: str, subject: str) -> None:
        ...


class Registry(Protocol):
    """
    Port interface for the authoritative registry (ledger).

    Read operations are pure lookups. Write operations are serializable
    per identity and enforce, inside the same transaction:
    1. One active role per identity
    2. Domain uniqueness across active organizations of either type
    3. Each proof is consumed at most once
    4. Each email commitment is used at most once
    """

    def get_role(self, identity: str) -> BaseRecord | None: ...

    def get_organization_record(self, identity: str) -> OrganizationRecord | None: ...

    def is_domain_taken(self, domain: str) -> bool: ...

    def registration_stats(self) -> RegistrationStats: ...

    def register_patient(
        self, proof: Proof, payload: RegistrationPayload, request_id: int | None = None
    ) -> Receipt: ...

    def register_hospital(
        self, proof: Proof, payload: RegistrationPayload, request_id: int | None = None
    ) -> Receipt: ...

    def register_insurer(
        self, proof: Proof, payload: RegistrationPayload, request_id: int | None = None
    ) -> Receipt: ...

    def set_user_active(self, identity: str, active: bool) -> BaseRecord:
        """
        Toggle a participant's active flag. Records are never deleted.

        Raises:
            NotRegisteredError: identity has no record
            DomainTakenError: reactivating an organization whose domain was
                claimed by another organization meanwhile
        """
        ...

    def get_admin_record(self, identity: str) -> AdminRecord | None: ...

    def grant_admin(
        self, identity: str, role: AdminRole, permissions: Permission
    ) -> AdminRecord:
        """Create or upgrade an admin record. Never downgrades the role."""
        ...


class RequestStore(Protocol):
    """Port interface for admin request persistence."""

    def add(self, requester: str, payload: RequestPayload) -> Request: ...

    def get(self, request_id: int) -> Request:
        """
        Raises:
            RequestNotFound: unknown id
        """
        ...

    def list_pending(self, request_type: RequestType | None = None) -> list[Request]: ...

    def list_by_requester(self, requester: str) -> list[Request]: ...

    def process(
        self,
        request_id: int,
        status: RequestStatus,
        processed_by: str,
        effect: Callable[[Request], None],
        reason: str | None = None,
    ) -> Request:
        """
        Atomically move a PENDING request to a terminal status.

        The request is locked, `effect` runs against the locked snapshot,
        then the status is compare-and-swapped from PENDING. If `effect`
        raises, the request stays PENDING and the error propagates.

        Raises:
            RequestNotFound: unknown id
            AlreadyProcessedError: request is not PENDING
        """
        ...
