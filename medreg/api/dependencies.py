"""
FastAPI dependencies - Dependency injection factories.

This module wires domain services to infrastructure adapters at startup
and provides Depends() factories for injecting them into routes.
"""

from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader
from psycopg_pool import ConnectionPool

from medreg.adapters.mailbox import HttpMailbox
from medreg.adapters.notify import ConsoleInstructionNotifier
from medreg.adapters.prover import HttpProofService, LocalProofService
from medreg.adapters.repository import (
    InMemoryRegistry,
    InMemoryRequestStore,
    PostgresRegistry,
    PostgresRequestStore,
)
from medreg.api.sessions import SessionManager
from medreg.config.settings import Settings
from medreg.domain.admin import AdminRequestQueue
from medreg.domain.inbox import InboxPoller, RetryPolicy
from medreg.domain.models import Role, normalize_identity
from medreg.domain.ports import Mailbox
from medreg.domain.proof import ProofBinder
from medreg.domain.registration import RegistrationService
from medreg.domain.registry import RegistryClient


@dataclass
class Components:
    """Application services built once per process."""

    registry: RegistryClient
    queue: AdminRequestQueue
    sessions: SessionManager


def build_components(
    settings: Settings, pool: ConnectionPool | None = None, mailbox: Mailbox | None = None
) -> Components:
    """
    Wire adapters into domain services.

    Args:
        settings: Application settings
        pool: Connection pool, required for the postgres backend
        mailbox: Mailbox override; defaults to the HTTP inbox service
    """
    if settings.prover_url:
        prover = HttpProofService(settings.prover_url)
    else:
        prover = LocalProofService(settings.proof_secret, settings.commitment_key)

    if settings.registry_backend == "postgres":
        if pool is None:
            raise ValueError("The postgres registry backend needs a connection pool")
        registry = PostgresRegistry(pool, prover)
        store = PostgresRequestStore(pool)
    else:
        registry = InMemoryRegistry(prover)
        store = InMemoryRequestStore()

    client = RegistryClient(registry, timeout_seconds=settings.submission_timeout_seconds)
    queue = AdminRequestQueue(store, client)

    approval_roles = set()
    if settings.patient_requires_approval:
        approval_roles.add(Role.PATIENT)
    if settings.organization_requires_approval:
        approval_roles.update({Role.HOSPITAL, Role.INSURER})

    service = RegistrationService(
        poller=InboxPoller(
            mailbox or HttpMailbox(settings.inbox_service_url),
            RetryPolicy(
                interval=settings.inbox_poll_interval_seconds,
                max_attempts=settings.inbox_max_attempts,
            ),
        ),
        binder=ProofBinder(prover, settings.commitment_key),
        registry=client,
        queue=queue,
        notifier=ConsoleInstructionNotifier(),
        mailbox_domain=settings.mailbox_domain,
        mailbox_prefix=settings.mailbox_prefix,
        approval_roles=frozenset(approval_roles),
    )
    return Components(
        registry=client,
        queue=queue,
        sessions=SessionManager(service, ttl_seconds=settings.session_ttl_seconds),
    )


def get_components(request: Request) -> Components:
    """
    Get application components from app state.

    Components are built during app lifespan startup and stored in app.state.
    """
    return request.app.state.components


def get_session_manager(components: Components = Depends(get_components)) -> SessionManager:
    return components.sessions


def get_registry_client(components: Components = Depends(get_components)) -> RegistryClient:
    return components.registry


def get_admin_queue(components: Components = Depends(get_components)) -> AdminRequestQueue:
    return components.queue


# Caller wallet header security scheme for OpenAPI documentation
wallet_header = APIKeyHeader(
    name="X-Wallet-Address", description="Caller wallet address", auto_error=False
)


def get_caller_identity(wallet: str | None = Depends(wallet_header)) -> str:
    """
    Extract and normalize the caller's wallet address.

    Returns 401 when the header is missing or blank.
    Wallet signature checks happen upstream of this service.
    """
    if not wallet or not wallet.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Wallet-Address header required",
        )
    return normalize_identity(wallet)
