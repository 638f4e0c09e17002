"""
API v1 routes.

Defines REST endpoints for the medical participant registry:

- /v1/sessions           registration sessions (in-process)
- /v1/registry           public registry reads
- /v1/requests           requester side of the admin queue
- /v1/admin              admin review and user activation
"""

from fastapi import APIRouter, Depends, HTTPException, status

from medreg.api.dependencies import (
    get_admin_queue,
    get_caller_identity,
    get_registry_client,
    get_session_manager,
)
from medreg.api.models import (
    AdminAccessRequestBody,
    AdminResponse,
    DomainResponse,
    ErrorResponse,
    OrganizationDetailsRequest,
    RecordResponse,
    RejectRequestBody,
    RequestResponse,
    SelectRoleRequest,
    SessionResponse,
    StartSessionRequest,
    StatsResponse,
)
from medreg.api.sessions import SessionManager, SessionNotFound
from medreg.domain.admin import AdminRequestQueue
from medreg.domain.exceptions import (
    AlreadyProcessedError,
    InvalidTransition,
    NotAuthorizedError,
    NotRegisteredError,
    ProofError,
    RegistrationError,
    RegistryInvariantError,
    RequestNotFound,
    SubmissionOutcomeUnknown,
)
from medreg.domain.models import RequestType
from medreg.domain.registry import RegistryClient
from medreg.domain.session import RegistrationSession

router = APIRouter(tags=["v1"])

NOT_FOUND = {404: {"model": ErrorResponse, "description": "Not found"}}
CONFLICT = {409: {"model": ErrorResponse, "description": "Conflicting state"}}
FORBIDDEN = {
    401: {"model": ErrorResponse, "description": "Caller wallet header missing"},
    403: {"model": ErrorResponse, "description": "Caller is not authorized"},
}


def http_error(exc: RegistrationError) -> HTTPException:
    """Map a domain error to the HTTP status clients act on."""
    if isinstance(exc, (RequestNotFound, NotRegisteredError)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, NotAuthorizedError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, (AlreadyProcessedError, RegistryInvariantError, InvalidTransition)):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, SubmissionOutcomeUnknown):
        code = status.HTTP_504_GATEWAY_TIMEOUT
    elif isinstance(exc, ProofError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(exc) or type(exc).__name__)


def _session(manager: SessionManager, session_id: str) -> RegistrationSession:
    try:
        return manager.get(session_id)
    except SessionNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        ) from None


# Sessions


@router.post(
    "/sessions",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a registration session",
)
async def start_session(
    body: StartSessionRequest,
    manager: SessionManager = Depends(get_session_manager),
) -> SessionResponse:
    return SessionResponse.from_session(manager.open(body.identity))


@router.get(
    "/sessions/{session_id}",
    response_model=SessionResponse,
    responses=NOT_FOUND,
    summary="Get session state",
)
async def get_session(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
) -> SessionResponse:
    return SessionResponse.from_session(_session(manager, session_id))


@router.post(
    "/sessions/{session_id}/role",
    response_model=SessionResponse,
    responses={**NOT_FOUND, **CONFLICT},
    summary="Select the role to register",
    description="Organizations continue to the details step. Patients receive "
    "the mailbox address and subject for their verification email.",
)
async def select_role(
    session_id: str,
    body: SelectRoleRequest,
    manager: SessionManager = Depends(get_session_manager),
) -> SessionResponse:
    session = _session(manager, session_id)
    try:
        manager.service.select_role(session, body.role, body.contact_email)
    except InvalidTransition as e:
        raise http_error(e) from None
    return SessionResponse.from_session(session)


@router.post(
    "/sessions/{session_id}/details",
    response_model=SessionResponse,
    responses={**NOT_FOUND, **CONFLICT},
    summary="Provide organization details",
)
async def provide_details(
    session_id: str,
    body: OrganizationDetailsRequest,
    manager: SessionManager = Depends(get_session_manager),
) -> SessionResponse:
    session = _session(manager, session_id)
    try:
        manager.service.provide_details(session, body.organization_name, body.domain)
    except InvalidTransition as e:
        raise http_error(e) from None
    return SessionResponse.from_session(session)


@router.post(
    "/sessions/{session_id}/run",
    response_model=SessionResponse,
    responses={**NOT_FOUND, **CONFLICT},
    summary="Collect the email, generate the proof and submit",
    description="Blocks while the inbox is polled. The response carries the "
    "terminal state: COMPLETE, or ERROR with a reason.",
)
def run_session(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
) -> SessionResponse:
    # Plain def: FastAPI runs the blocking poll in its threadpool
    session = _session(manager, session_id)
    try:
        manager.service.run(session)
    except InvalidTransition as e:
        raise http_error(e) from None
    return SessionResponse.from_session(session)


@router.delete(
    "/sessions/{session_id}",
    response_model=SessionResponse,
    responses=NOT_FOUND,
    summary="Abandon a session",
)
async def abandon_session(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
) -> SessionResponse:
    session = _session(manager, session_id)
    manager.service.abandon(session)
    return SessionResponse.from_session(session)


# Registry reads


@router.get("/registry/stats", response_model=StatsResponse, summary="Registration counts")
async def registration_stats(
    registry: RegistryClient = Depends(get_registry_client),
) -> StatsResponse:
    stats = registry.registration_stats()
    return StatsResponse(
        total_users=stats.total_users,
        patients=stats.patients,
        hospitals=stats.hospitals,
        insurers=stats.insurers,
    )


@router.get(
    "/registry/domains/{domain}",
    response_model=DomainResponse,
    summary="Check whether an organization domain is taken",
)
async def domain_status(
    domain: str,
    registry: RegistryClient = Depends(get_registry_client),
) -> DomainResponse:
    normalized = domain.strip().lower()
    return DomainResponse(domain=normalized, taken=registry.is_domain_taken(normalized))


@router.get(
    "/registry/{identity}/role",
    response_model=RecordResponse,
    responses=NOT_FOUND,
    summary="Get a wallet's registry record",
)
async def get_role(
    identity: str,
    registry: RegistryClient = Depends(get_registry_client),
) -> RecordResponse:
    record = registry.get_role(identity)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not registered")
    return RecordResponse.from_record(record)


@router.get(
    "/registry/{identity}/organization",
    response_model=RecordResponse,
    responses=NOT_FOUND,
    summary="Get a wallet's organization record",
)
async def get_organization(
    identity: str,
    registry: RegistryClient = Depends(get_registry_client),
) -> RecordResponse:
    record = registry.get_organization_record(identity)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No organization record"
        )
    return RecordResponse.from_record(record)


# Requester side


@router.post(
    "/requests/admin-access",
    response_model=RequestResponse,
    status_code=status.HTTP_201_CREATED,
    responses=FORBIDDEN,
    summary="Request admin privileges",
)
async def request_admin_access(
    body: AdminAccessRequestBody,
    caller: str = Depends(get_caller_identity),
    queue: AdminRequestQueue = Depends(get_admin_queue),
) -> RequestResponse:
    try:
        request = queue.request_admin_access(caller, body.admin_role, body.reason)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        ) from None
    return RequestResponse.from_request(request)


@router.get(
    "/requests/mine",
    response_model=list[RequestResponse],
    responses=FORBIDDEN,
    summary="List the caller's requests",
)
async def my_requests(
    caller: str = Depends(get_caller_identity),
    queue: AdminRequestQueue = Depends(get_admin_queue),
) -> list[RequestResponse]:
    return [RequestResponse.from_request(r) for r in queue.list_for_requester(caller)]


# Admin side


@router.get(
    "/admin/me",
    response_model=AdminResponse,
    responses={**FORBIDDEN, **NOT_FOUND},
    summary="Get the caller's admin record",
)
async def admin_me(
    caller: str = Depends(get_caller_identity),
    registry: RegistryClient = Depends(get_registry_client),
) -> AdminResponse:
    record = registry.get_admin_record(caller)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not an admin")
    return AdminResponse.from_record(record)


@router.get(
    "/admin/requests",
    response_model=list[RequestResponse],
    responses=FORBIDDEN,
    summary="List pending requests",
)
async def list_pending(
    request_type: RequestType | None = None,
    caller: str = Depends(get_caller_identity),
    queue: AdminRequestQueue = Depends(get_admin_queue),
) -> list[RequestResponse]:
    try:
        queue.require_admin(caller)
    except NotAuthorizedError as e:
        raise http_error(e) from None
    return [RequestResponse.from_request(r) for r in queue.list_pending(request_type)]


@router.get(
    "/admin/requests/{request_id}",
    response_model=RequestResponse,
    responses={**FORBIDDEN, **NOT_FOUND},
    summary="Get one request",
)
async def get_request(
    request_id: int,
    caller: str = Depends(get_caller_identity),
    queue: AdminRequestQueue = Depends(get_admin_queue),
) -> RequestResponse:
    try:
        queue.require_admin(caller)
        request = queue.get_request(request_id)
    except (NotAuthorizedError, RequestNotFound) as e:
        raise http_error(e) from None
    return RequestResponse.from_request(request)


@router.post(
    "/admin/requests/{request_id}/approve",
    response_model=RequestResponse,
    responses={**FORBIDDEN, **NOT_FOUND, **CONFLICT},
    summary="Approve a pending request",
    description="Approval applies the request: the registration is submitted "
    "to the registry or admin privileges are granted. If that fails the "
    "request stays PENDING.",
)
def approve_request(
    request_id: int,
    caller: str = Depends(get_caller_identity),
    queue: AdminRequestQueue = Depends(get_admin_queue),
) -> RequestResponse:
    try:
        request = queue.approve(request_id, caller)
    except RegistrationError as e:
        raise http_error(e) from None
    return RequestResponse.from_request(request)


@router.post(
    "/admin/requests/{request_id}/reject",
    response_model=RequestResponse,
    responses={**FORBIDDEN, **NOT_FOUND, **CONFLICT},
    summary="Reject a pending request",
)
def reject_request(
    request_id: int,
    body: RejectRequestBody,
    caller: str = Depends(get_caller_identity),
    queue: AdminRequestQueue = Depends(get_admin_queue),
) -> RequestResponse:
    # Plain def: waits on the request row lock held by a concurrent approval
    try:
        request = queue.reject(request_id, caller, body.reason)
    except RegistrationError as e:
        raise http_error(e) from None
    return RequestResponse.from_request(request)


@router.post(
    "/admin/users/{identity}/deactivate",
    response_model=RecordResponse,
    responses={**FORBIDDEN, **NOT_FOUND},
    summary="Deactivate a participant",
)
def deactivate_user(
    identity: str,
    caller: str = Depends(get_caller_identity),
    queue: AdminRequestQueue = Depends(get_admin_queue),
) -> RecordResponse:
    try:
        record = queue.deactivate_user(identity, caller)
    except RegistrationError as e:
        raise http_error(e) from None
    return RecordResponse.from_record(record)


@router.post(
    "/admin/users/{identity}/activate",
    response_model=RecordResponse,
    responses={**FORBIDDEN, **NOT_FOUND, **CONFLICT},
    summary="Reactivate a participant",
)
def activate_user(
    identity: str,
    caller: str = Depends(get_caller_identity),
    queue: AdminRequestQueue = Depends(get_admin_queue),
) -> RecordResponse:
    try:
        record = queue.activate_user(identity, caller)
    except RegistrationError as e:
        raise http_error(e) from None
    return RecordResponse.from_record(record)
