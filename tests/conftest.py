"""
Shared test fixtures and configuration.

This module provides pytest fixtures for:
- In-memory registry and request store wired to the local prover
- A scriptable mailbox and a notifier that plays the user sending the email
- Domain services built from them
"""

import pytest

from medreg.adapters.prover.local import LocalProofService
from medreg.adapters.repository.memory import InMemoryRegistry, InMemoryRequestStore
from medreg.domain.admin import AdminRequestQueue
from medreg.domain.inbox import InboxPoller, RetryPolicy
from medreg.domain.models import DEFAULT_PERMISSIONS, AdminRole
from medreg.domain.proof import ProofBinder
from medreg.domain.registration import RegistrationService
from medreg.domain.registry import RegistryClient
from tests.helpers import (
    COMMITMENT_KEY,
    PROOF_SECRET,
    SUPER_ADMIN,
    FakeMailbox,
    UserSimulatingNotifier,
)


@pytest.fixture
def prover() -> LocalProofService:
    return LocalProofService(PROOF_SECRET, COMMITMENT_KEY)


@pytest.fixture
def registry(prover: LocalProofService) -> InMemoryRegistry:
    return InMemoryRegistry(prover)


@pytest.fixture
def store() -> InMemoryRequestStore:
    return InMemoryRequestStore()


@pytest.fixture
def client(registry: InMemoryRegistry) -> RegistryClient:
    return RegistryClient(registry, timeout_seconds=5.0)


@pytest.fixture
def queue(store: InMemoryRequestStore, client: RegistryClient) -> AdminRequestQueue:
    return AdminRequestQueue(store, client)


@pytest.fixture
def super_admin(registry: InMemoryRegistry) -> str:
    """Wallet holding SUPER_ADMIN with default permissions."""
    registry.grant_admin(
        SUPER_ADMIN, AdminRole.SUPER_ADMIN, DEFAULT_PERMISSIONS[AdminRole.SUPER_ADMIN]
    )
    return SUPER_ADMIN


@pytest.fixture
def binder(prover: LocalProofService) -> ProofBinder:
    return ProofBinder(prover, COMMITMENT_KEY)


@pytest.fixture
def mailbox() -> FakeMailbox:
    return FakeMailbox()


@pytest.fixture
def notifier(mailbox: FakeMailbox) -> UserSimulatingNotifier:
    return UserSimulatingNotifier(mailbox)


@pytest.fixture
def service(
    mailbox: FakeMailbox,
    binder: ProofBinder,
    client: RegistryClient,
    queue: AdminRequestQueue,
    notifier: UserSimulatingNotifier,
) -> RegistrationService:
    return RegistrationService(
        poller=InboxPoller(mailbox, RetryPolicy(interval=0.0, max_attempts=3)),
        binder=binder,
        registry=client,
        queue=queue,
        notifier=notifier,
        mailbox_domain="verify.test",
        mailbox_prefix="medreg",
    )
