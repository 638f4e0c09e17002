"""
Domain models - Roles, registry records and admin requests.

Plain dataclasses and enums shared by the domain services and adapters.
Records are immutable snapshots; stores hand out fresh instances.
"""

import hashlib
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, IntEnum, IntFlag


class Role(str, Enum):
    """Participant role granted by the registry."""

    PATIENT = "PATIENT"
    HOSPITAL = "HOSPITAL"
    INSURER = "INSURER"

    @property
    def is_organization(self) -> bool:
        return self in (Role.HOSPITAL, Role.INSURER)


class AdminRole(IntEnum):
    """Admin tiers, ordered so that comparisons express 'at least'."""

    BASIC = 0
    MODERATOR = 1
    SUPER_ADMIN = 2


class Permission(IntFlag):
    """Admin permission bits."""

    NONE = 0
    VIEW_REQUESTS = 1
    APPROVE_PATIENTS = 2
    APPROVE_ORGANIZATIONS = 4
    MANAGE_USERS = 8
    MANAGE_ADMINS = 16


DEFAULT_PERMISSIONS = {
    AdminRole.BASIC: Permission.VIEW_REQUESTS | Permission.APPROVE_PATIENTS,
    AdminRole.MODERATOR: (
        Permission.VIEW_REQUESTS
        | Permission.APPROVE_PATIENTS
        | Permission.APPROVE_ORGANIZATIONS
        | Permission.MANAGE_USERS
    ),
    AdminRole.SUPER_ADMIN: (
        Permission.VIEW_REQUESTS
        | Permission.APPROVE_PATIENTS
        | Permission.APPROVE_ORGANIZATIONS
        | Permission.MANAGE_USERS
        | Permission.MANAGE_ADMINS
    ),
}


class RequestType(str, Enum):
    PATIENT_REGISTRATION = "PATIENT_REGISTRATION"
    ORGANIZATION_REGISTRATION = "ORGANIZATION_REGISTRATION"
    ADMIN_ACCESS = "ADMIN_ACCESS"


class RequestStatus(str, Enum):
    """
    Admin request lifecycle.

    PENDING -> APPROVED or PENDING -> REJECTED, nothing else.
    """

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


def normalize_identity(identity: str) -> str:
    """Wallet addresses are compared case-insensitively."""
    return identity.strip().lower()


@dataclass(frozen=True)
class EmailContent:
    """Raw .eml bytes fetched for a correlation id."""

    correlation_id: str
    raw: bytes


@dataclass(frozen=True)
class Proof:
    """Opaque proof issued by the proving service."""

    seal: str

    @property
    def digest(self) -> str:
        """Stable fingerprint used to detect proof reuse."""
        return "0x" + hashlib.sha256(self.seal.encode()).hexdigest()


@dataclass(frozen=True)
class RegistrationPayload:
    """Public data the proof is bound to. Never contains the raw email."""

    wallet_address: str
    email_commitment: str
    domain: str = ""
    organization_name: str = ""


@dataclass(frozen=True)
class BoundProof:
    proof: Proof
    payload: RegistrationPayload
    sender_domain: str


@dataclass(frozen=True)
class Receipt:
    identity: str
    role: Role
    submission_id: str
    proof_digest: str
    registered_at: datetime


@dataclass(frozen=True)
class BaseRecord:
    wallet_address: str
    role: Role
    email_commitment: str
    registration_time: datetime
    is_active: bool = True
    originating_request_id: int | None = None


@dataclass(frozen=True)
class OrganizationRecord(BaseRecord):
    organization_type: Role = Role.HOSPITAL
    domain: str = ""
    organization_name: str = ""


@dataclass(frozen=True)
class AdminRecord:
    wallet_address: str
    is_active: bool
    role: AdminRole
    permissions: Permission
    admin_since: datetime

    def has(self, permission: Permission) -> bool:
        return self.is_active and (self.permissions & permission) == permission


@dataclass(frozen=True)
class RegistrationStats:
    total_users: int = 0
    patients: int = 0
    hospitals: int = 0
    insurers: int = 0


@dataclass(frozen=True)
class PatientRegistrationRequest:
    email_commitment: str
    proof: Proof


@dataclass(frozen=True)
class OrganizationRegistrationRequest:
    organization_type: Role
    domain: str
    organization_name: str
    email_commitment: str
    proof: Proof


@dataclass(frozen=True)
class AdminAccessRequest:
    admin_role: AdminRole
    reason: str


RequestPayload = PatientRegistrationRequest | OrganizationRegistrationRequest | AdminAccessRequest


def request_type_of(payload: RequestPayload) -> RequestType:
    if isinstance(payload, PatientRegistrationRequest):
        return RequestType.PATIENT_REGISTRATION
    if isinstance(payload, OrganizationRegistrationRequest):
        return RequestType.ORGANIZATION_REGISTRATION
    if isinstance(payload, AdminAccessRequest):
        return RequestType.ADMIN_ACCESS
    raise TypeError(f"Unknown request payload: {type(payload).__name__}")


@dataclass(frozen=True)
class Request:
    request_id: int
    requester: str
    status: RequestStatus
    request_time: datetime
    payload: RequestPayload
    processed_by: str | None = None
    processed_time: datetime | None = None
    rejection_reason: str | None = None

    @property
    def request_type(self) -> RequestType:
        return request_type_of(self.payload)
