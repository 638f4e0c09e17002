"""
API request and response models.

Pydantic models for FastAPI endpoint validation and OpenAPI schema generation.
"""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from medreg.domain.models import (
    AdminAccessRequest,
    AdminRecord,
    AdminRole,
    BaseRecord,
    OrganizationRecord,
    OrganizationRegistrationRequest,
    Request,
    RequestStatus,
    RequestType,
    Role,
)
from medreg.domain.ports import SessionState
from medreg.domain.session import RegistrationSession

# Sessions


class StartSessionRequest(BaseModel):
    """Request model for opening a registration session."""

    identity: str | None = Field(None, description="Connected wallet address")


class SelectRoleRequest(BaseModel):
    """Request model for choosing the role to register."""

    role: Role
    contact_email: EmailStr | None = Field(
        None, description="Address the patient will send the verification email from"
    )


class OrganizationDetailsRequest(BaseModel):
    """Request model for organization details."""

    organization_name: str = Field(..., min_length=1, max_length=200)
    domain: str | None = Field(None, description="Domain the organization will prove")


class SessionResponse(BaseModel):
    """Current view of a registration session."""

    session_id: str
    identity: str | None
    state: SessionState
    history: list[SessionState]
    requested_role: Role | None = None
    organization_name: str | None = None
    domain: str | None = None
    target_mailbox: str | None = None
    expected_subject: str | None = None
    submission_id: str | None = None
    pending_request_id: int | None = None
    error: str | None = None

    @classmethod
    def from_session(cls, session: RegistrationSession) -> "SessionResponse":
        return cls(
            session_id=session.session_id,
            identity=session.identity,
            state=session.state,
            history=list(session.history),
            requested_role=session.requested_role,
            organization_name=session.organization_name,
            domain=session.domain,
            target_mailbox=session.target_mailbox,
            expected_subject=session.expected_subject,
            submission_id=session.receipt.submission_id if session.receipt else None,
            pending_request_id=session.pending_request_id,
            error=session.error,
        )


# Registry


class RecordResponse(BaseModel):
    """Registry record of a participant."""

    wallet_address: str
    role: Role
    is_active: bool
    registration_time: datetime
    originating_request_id: int | None = None
    domain: str | None = None
    organization_name: str | None = None

    @classmethod
    def from_record(cls, record: BaseRecord) -> "RecordResponse":
        organization = isinstance(record, OrganizationRecord)
        return cls(
            wallet_address=record.wallet_address,
            role=record.role,
            is_active=record.is_active,
            registration_time=record.registration_time,
            originating_request_id=record.originating_request_id,
            domain=record.domain if organization else None,
            organization_name=record.organization_name if organization else None,
        )


class DomainResponse(BaseModel):
    domain: str
    taken: bool


class StatsResponse(BaseModel):
    total_users: int
    patients: int
    hospitals: int
    insurers: int


# Admin


class AdminAccessRequestBody(BaseModel):
    """Request model for asking for admin access."""

    admin_role: AdminRole = Field(..., description="0 = BASIC, 1 = MODERATOR, 2 = SUPER_ADMIN")
    reason: str = Field(..., min_length=1, max_length=1000)


class RejectRequestBody(BaseModel):
    reason: str = Field("", max_length=1000)


class RequestResponse(BaseModel):
    """Admin request as seen by admins and requesters."""

    request_id: int
    requester: str
    request_type: RequestType
    status: RequestStatus
    request_time: datetime
    processed_by: str | None = None
    processed_time: datetime | None = None
    rejection_reason: str | None = None
    organization_type: Role | None = None
    domain: str | None = None
    organization_name: str | None = None
    admin_role: AdminRole | None = None
    reason: str | None = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestResponse":
        payload = request.payload
        details: dict = {}
        if isinstance(payload, OrganizationRegistrationRequest):
            details = {
                "organization_type": payload.organization_type,
                "domain": payload.domain,
                "organization_name": payload.organization_name,
            }
        elif isinstance(payload, AdminAccessRequest):
            details = {"admin_role": payload.admin_role, "reason": payload.reason}
        return cls(
            request_id=request.request_id,
            requester=request.requester,
            request_type=request.request_type,
            status=request.status,
            request_time=request.request_time,
            processed_by=request.processed_by,
            processed_time=request.processed_time,
            rejection_reason=request.rejection_reason,
            **details,
        )


class AdminResponse(BaseModel):
    wallet_address: str
    is_active: bool
    role: AdminRole
    permissions: int
    admin_since: datetime

    @classmethod
    def from_record(cls, record: AdminRecord) -> "AdminResponse":
        return cls(
            wallet_address=record.wallet_address,
            is_active=record.is_active,
            role=record.role,
            permissions=int(record.permissions),
            admin_since=record.admin_since,
        )


class ErrorResponse(BaseModel):
    """Standard error response model."""

    detail: str
