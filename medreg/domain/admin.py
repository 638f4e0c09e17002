"""
Admin request queue - Human review of registrations and admin access.

Request lifecycle (forward-only):
    PENDING -> APPROVED
    PENDING -> REJECTED

Processing is a compare-and-swap on status performed by the request
store under a row lock, with the approval side effect (registry
submission or admin grant) executed inside that lock. Two admins racing
on the same request cannot both succeed: the loser gets
AlreadyProcessedError. If the side effect fails the request stays
PENDING so it can still be rejected or retried.

The side effect and the status change are not one transaction in the
PostgreSQL store. A registration that landed while its request stayed
PENDING carries the request id in originating_request_id: approving it
again only closes the request, and rejecting it is refused.
"""

import logging
from dataclasses import dataclass

from .exceptions import (
    AlreadyProcessedError,
    NotAuthorizedError,
    RegistrationError,
    SubmissionOutcomeUnknown,
)
from .models import (
    DEFAULT_PERMISSIONS,
    AdminAccessRequest,
    AdminRecord,
    AdminRole,
    BaseRecord,
    BoundProof,
    OrganizationRegistrationRequest,
    PatientRegistrationRequest,
    Permission,
    RegistrationPayload,
    Request,
    RequestStatus,
    RequestType,
    Role,
    normalize_identity,
)
from .ports import RequestStore
from .registry import RegistryClient

logger = logging.getLogger(__name__)

# Lowest admin tier allowed to process each request type
MINIMUM_ROLE = {
    RequestType.PATIENT_REGISTRATION: AdminRole.BASIC,
    RequestType.ORGANIZATION_REGISTRATION: AdminRole.BASIC,
    RequestType.ADMIN_ACCESS: AdminRole.MODERATOR,
}


@dataclass
class AdminRequestQueue:
    """Domain service for filing and processing admin requests."""

    store: RequestStore
    registry: RegistryClient

    # Filing

    def submit_registration_request(
        self, requester: str, role: Role, bound: BoundProof
    ) -> Request:
        """File a patient or organization registration for review."""
        payload = bound.payload
        if role.is_organization:
            request_payload = OrganizationRegistrationRequest(
                organization_type=role,
                domain=payload.domain,
                organization_name=payload.organization_name,
                email_commitment=payload.email_commitment,
                proof=bound.proof,
            )
        else:
            request_payload = PatientRegistrationRequest(
                email_commitment=payload.email_commitment,
                proof=bound.proof,
            )
        request = self.store.add(normalize_identity(requester), request_payload)
        logger.info(
            f"Filed {request.request_type.value} request {request.request_id} "
            f"for {request.requester}"
        )
        return request

    def request_admin_access(self, requester: str, admin_role: AdminRole, reason: str) -> Request:
        """File a request for admin privileges."""
        reason = reason.strip()
        if not reason:
            raise ValueError("A reason is required for admin access requests")
        request = self.store.add(
            normalize_identity(requester), AdminAccessRequest(admin_role=admin_role, reason=reason)
        )
        logger.info(
            f"Filed ADMIN_ACCESS request {request.request_id} for {request.requester} "
            f"({admin_role.name})"
        )
        return request

    # Reading

    def list_pending(self, request_type: RequestType | None = None) -> list[Request]:
        return self.store.list_pending(request_type)

    def get_request(self, request_id: int) -> Request:
        return self.store.get(request_id)

    def list_for_requester(self, requester: str) -> list[Request]:
        return self.store.list_by_requester(normalize_identity(requester))

    def require_admin(
        self, admin_identity: str, permission: Permission = Permission.VIEW_REQUESTS
    ) -> AdminRecord:
        """Return the caller's admin record if it is active and holds `permission`."""
        admin_identity = normalize_identity(admin_identity)
        admin = self.registry.get_admin_record(admin_identity)
        if admin is None or not admin.has(permission):
            raise NotAuthorizedError(f"{admin_identity} lacks {permission.name}")
        return admin

    def bootstrap_super_admins(self, identities: list[str]) -> list[AdminRecord]:
        """Grant SUPER_ADMIN to configured wallets. Re-running is harmless."""
        granted = []
        for identity in identities:
            if not identity.strip():
                continue
            granted.append(
                self.registry.grant_admin(
                    identity,
                    AdminRole.SUPER_ADMIN,
                    DEFAULT_PERMISSIONS[AdminRole.SUPER_ADMIN],
                )
            )
        return granted

    # Processing

    def approve(self, request_id: int, admin_identity: str) -> Request:
        """
        Approve a pending request and apply its effect.

        Raises:
            RequestNotFound: unknown request id
            NotAuthorizedError: admin missing, inactive or below the required tier
            AlreadyProcessedError: request already left PENDING
            RegistryInvariantError, ProofRejectedError: registry refused the
                registration; the request stays PENDING
        """
        admin_identity = normalize_identity(admin_identity)
        request = self.store.get(request_id)
        self._authorize(admin_identity, request)

        processed = self.store.process(
            request_id, RequestStatus.APPROVED, admin_identity, self._apply
        )
        logger.info(
            f"Request {request_id} ({processed.request_type.value}) approved by {admin_identity}"
        )
        return processed

    def reject(self, request_id: int, admin_identity: str, reason: str = "") -> Request:
        """
        Reject a pending request. Nothing else changes.

        A registration request whose record already landed cannot be
        rejected; approving it closes it instead.

        Raises:
            RequestNotFound: unknown request id
            NotAuthorizedError: admin missing, inactive or below the required tier
            AlreadyProcessedError: request already left PENDING, or its
                registration already landed
        """
        admin_identity = normalize_identity(admin_identity)
        request = self.store.get(request_id)
        self._authorize(admin_identity, request)

        processed = self.store.process(
            request_id,
            RequestStatus.REJECTED,
            admin_identity,
            self._refuse_if_applied,
            reason=reason.strip() or None,
        )
        logger.info(f"Request {request_id} rejected by {admin_identity}")
        return processed

    def _authorize(self, admin_identity: str, request: Request) -> AdminRecord:
        admin = self.registry.get_admin_record(admin_identity)
        if admin is None or not admin.is_active:
            raise NotAuthorizedError(f"{admin_identity} is not an active admin")

        required = MINIMUM_ROLE[request.request_type]
        if admin.role < required:
            raise NotAuthorizedError(
                f"{request.request_type.value} requests require {required.name}"
            )

        if admin_identity == request.requester:
            raise NotAuthorizedError("Admins cannot process their own requests")

        payload = request.payload
        if isinstance(payload, AdminAccessRequest) and payload.admin_role > admin.role:
            raise NotAuthorizedError(
                f"Granting {payload.admin_role.name} requires {payload.admin_role.name}"
            )
        return admin

    def _apply(self, request: Request) -> None:
        payload = request.payload
        if isinstance(payload, PatientRegistrationRequest):
            self._register(
                request,
                RegistrationPayload(
                    wallet_address=request.requester,
                    email_commitment=payload.email_commitment,
                ),
                Role.PATIENT,
            )
        elif isinstance(payload, OrganizationRegistrationRequest):
            self._register(
                request,
                RegistrationPayload(
                    wallet_address=request.requester,
                    email_commitment=payload.email_commitment,
                    domain=payload.domain,
                    organization_name=payload.organization_name,
                ),
                payload.organization_type,
            )
        elif isinstance(payload, AdminAccessRequest):
            self.registry.grant_admin(
                request.requester, payload.admin_role, DEFAULT_PERMISSIONS[payload.admin_role]
            )

    def _register(self, request: Request, payload: RegistrationPayload, role: Role) -> None:
        if self._applied(request):
            logger.info(f"Request {request.request_id} was already applied, closing it")
            return
        try:
            self.registry.submit(request.payload.proof, payload, role, request.request_id)
        except SubmissionOutcomeUnknown as exc:
            logger.warning(
                f"Request {request.request_id} submission timed out, "
                "waiting for the write to settle"
            )
            if self.registry.reconcile(request.requester, role, exc) is None:
                late = exc.write_error
                if isinstance(late, RegistrationError):
                    raise late from exc
                raise
            logger.info(f"Request {request.request_id} reconciled after submission timeout")

    def _refuse_if_applied(self, request: Request) -> None:
        if self._applied(request):
            raise AlreadyProcessedError(
                f"Request {request.request_id} is already registered; approve it to close it"
            )

    def _applied(self, request: Request) -> bool:
        """True if the registry holds a record created by this request."""
        if request.request_type is RequestType.ADMIN_ACCESS:
            return False
        record = self.registry.get_role(request.requester)
        return record is not None and record.originating_request_id == request.request_id

    # User activation (records are toggled, never deleted)

    def deactivate_user(self, identity: str, admin_identity: str) -> BaseRecord:
        return self._set_active(identity, admin_identity, active=False)

    def activate_user(self, identity: str, admin_identity: str) -> BaseRecord:
        return self._set_active(identity, admin_identity, active=True)

    def _set_active(self, identity: str, admin_identity: str, active: bool) -> BaseRecord:
        admin_identity = normalize_identity(admin_identity)
        admin = self.registry.get_admin_record(admin_identity)
        if admin is None or not admin.has(Permission.MANAGE_USERS):
            raise NotAuthorizedError(f"{admin_identity} may not manage users")

        record = self.registry.set_user_active(normalize_identity(identity), active)
        action = "activated" if active else "deactivated"
        logger.info(f"User {record.wallet_address} {action} by {admin_identity}")
        return record
