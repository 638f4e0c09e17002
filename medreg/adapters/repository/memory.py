"""
In-memory repository adapters - Implement Registry and RequestStore protocols.

Process-local stores for tests and single-process development. Every
write runs under one lock, which makes each write a serializable
transaction: the same invariants the PostgreSQL adapter enforces with
constraints and row locks hold here. Proof verification happens before
the lock is taken and the consumed-proof check is repeated under it.
"""

import itertools
import threading
import uuid
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone

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
    AdminRecord,
    AdminRole,
    BaseRecord,
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
    Role,
)
from medreg.domain.ports import ProofVerifier


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryRegistry:
    """
    Implements Registry protocol with process-local state.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self, verifier: ProofVerifier) -> None:
        self._verifier = verifier
        self._lock = threading.Lock()
        self._records: dict[str, BaseRecord] = {}
        self._consumed_proofs: dict[str, str] = {}
        self._admins: dict[str, AdminRecord] = {}

    # Reads

    def get_role(self, identity: str) -> BaseRecord | None:
        with self._lock:
            return self._records.get(identity)

    def get_organization_record(self, identity: str) -> OrganizationRecord | None:
        with self._lock:
            record = self._records.get(identity)
        return record if isinstance(record, OrganizationRecord) else None

    def is_domain_taken(self, domain: str) -> bool:
        with self._lock:
            return self._domain_owner(domain) is not None

    def registration_stats(self) -> RegistrationStats:
        with self._lock:
            active = [r for r in self._records.values() if r.is_active]
        return RegistrationStats(
            total_users=len(active),
            patients=sum(1 for r in active if r.role is Role.PATIENT),
            hospitals=sum(1 for r in active if r.role is Role.HOSPITAL),
            insurers=sum(1 for r in active if r.role is Role.INSURER),
        )

    def get_admin_record(self, identity: str) -> AdminRecord | None:
        with self._lock:
            return self._admins.get(identity)

    # Writes

    def register_patient(
        self, proof: Proof, payload: RegistrationPayload, request_id: int | None = None
    ) -> Receipt:
        return self._register(Role.PATIENT, proof, payload, request_id)

    def register_hospital(
        self, proof: Proof, payload: RegistrationPayload, request_id: int | None = None
    ) -> Receipt:
        return self._register(Role.HOSPITAL, proof, payload, request_id)

    def register_insurer(
        self, proof: Proof, payload: RegistrationPayload, request_id: int | None = None
    ) -> Receipt:
        return self._register(Role.INSURER, proof, payload, request_id)

    def set_user_active(self, identity: str, active: bool) -> BaseRecord:
        with self._lock:
            record = self._records.get(identity)
            if record is None:
                raise NotRegisteredError(identity)
            if active and isinstance(record, OrganizationRecord) and not record.is_active:
                owner = self._domain_owner(record.domain)
                if owner is not None and owner != identity:
                    raise DomainTakenError(record.domain)
            updated = replace(record, is_active=active)
            self._records[identity] = updated
            return updated

    def grant_admin(
        self, identity: str, role: AdminRole, permissions: Permission
    ) -> AdminRecord:
        with self._lock:
            existing = self._admins.get(identity)
            if existing is None:
                record = AdminRecord(
                    wallet_address=identity,
                    is_active=True,
                    role=role,
                    permissions=permissions,
                    admin_since=_now(),
                )
            else:
                record = replace(
                    existing,
                    is_active=True,
                    role=max(existing.role, role),
                    permissions=existing.permissions | permissions,
                )
            self._admins[identity] = record
            return record

    def _register(
        self, role: Role, proof: Proof, payload: RegistrationPayload, request_id: int | None
    ) -> Receipt:
        identity = payload.wallet_address
        # Consumed-proof check comes first so a resubmission changes nothing
        if self._proof_consumed(proof):
            raise ProofAlreadyConsumedError(proof.digest)
        if role.is_organization and not (payload.domain and payload.organization_name):
            raise ProofRejectedError("Organization registration requires a domain and name")
        # Verification may be a network call, so it runs without the store lock
        if not self._verifier.verify(proof, payload):
            raise ProofRejectedError("Proof does not match the registration payload")

        with self._lock:
            if proof.digest in self._consumed_proofs:
                raise ProofAlreadyConsumedError(proof.digest)
            if identity in self._records:
                raise DuplicateIdentityError(identity)
            if role.is_organization and self._domain_owner(payload.domain) is not None:
                raise DomainTakenError(payload.domain)
            if any(r.email_commitment == payload.email_commitment for r in self._records.values()):
                raise EmailCommitmentUsedError(payload.email_commitment)

            registered_at = _now()
            if role.is_organization:
                record: BaseRecord = OrganizationRecord(
                    wallet_address=identity,
                    role=role,
                    email_commitment=payload.email_commitment,
                    registration_time=registered_at,
                    originating_request_id=request_id,
                    organization_type=role,
                    domain=payload.domain,
                    organization_name=payload.organization_name,
                )
            else:
                record = BaseRecord(
                    wallet_address=identity,
                    role=role,
                    email_commitment=payload.email_commitment,
                    registration_time=registered_at,
                    originating_request_id=request_id,
                )
            self._records[identity] = record
            self._consumed_proofs[proof.digest] = identity

        return Receipt(
            identity=identity,
            role=role,
            submission_id=uuid.uuid4().hex,
            proof_digest=proof.digest,
            registered_at=registered_at,
        )

    def _proof_consumed(self, proof: Proof) -> bool:
        with self._lock:
            return proof.digest in self._consumed_proofs

    def _domain_owner(self, domain: str) -> str | None:
        for record in self._records.values():
            if not (isinstance(record, OrganizationRecord) and record.is_active):
                continue
            if record.domain == domain:
                return record.wallet_address
        return None


class InMemoryRequestStore:
    """
    Implements RequestStore protocol with process-local state.

    process() holds the store lock while the effect runs, so the status
    compare-and-swap and its side effect are one atomic step.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._requests: dict[int, Request] = {}
        self._ids = itertools.count(1)

    def add(self, requester: str, payload: RequestPayload) -> Request:
        with self._lock:
            request = Request(
                request_id=next(self._ids),
                requester=requester,
                status=RequestStatus.PENDING,
                request_time=_now(),
                payload=payload,
            )
            self._requests[request.request_id] = request
            return request

    def get(self, request_id: int) -> Request:
        with self._lock:
            return self._get(request_id)

    def list_pending(self, request_type: RequestType | None = None) -> list[Request]:
        with self._lock:
            return [
                r
                for _, r in sorted(self._requests.items())
                if r.status is RequestStatus.PENDING
                and (request_type is None or r.request_type is request_type)
            ]

    def list_by_requester(self, requester: str) -> list[Request]:
        with self._lock:
            return [r for _, r in sorted(self._requests.items()) if r.requester == requester]

    def process(
        self,
        request_id: int,
        status: RequestStatus,
        processed_by: str,
        effect: Callable[[Request], None],
        reason: str | None = None,
    ) -> Request:
        if status is RequestStatus.PENDING:
            raise ValueError("Requests can only move to APPROVED or REJECTED")

        with self._lock:
            request = self._get(request_id)
            if request.status is not RequestStatus.PENDING:
                raise AlreadyProcessedError(
                    f"Request {request_id} is already {request.status.value}"
                )
            effect(request)
            processed = replace(
                request,
                status=status,
                processed_by=processed_by,
                processed_time=_now(),
                rejection_reason=reason,
            )
            self._requests[request_id] = processed
            return processed

    def _get(self, request_id: int) -> Request:
        request = self._requests.get(request_id)
        if request is None:
            raise RequestNotFound(request_id)
        return request
