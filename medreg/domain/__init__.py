"""
Domain layer - Pure business logic with zero framework imports.

This package contains the registration session state machine, the inbox
poller, the proof binder, the registry client and the admin request
queue. It defines its own port interfaces for infrastructure
abstraction, ensuring true hexagonal architecture decoupling.
"""

from .admin import AdminRequestQueue
from .exceptions import RegistrationError
from .inbox import InboxPoller, RetryPolicy
from .models import AdminRole, Permission, RequestStatus, RequestType, Role
from .ports import Mailbox, ProofGenerator, ProofVerifier, Registry, RequestStore, SessionState
from .proof import ProofBinder
from .registration import RegistrationService
from .registry import RegistryClient
from .session import RegistrationSession

__all__ = [
    "AdminRequestQueue",
    "AdminRole",
    "InboxPoller",
    "Mailbox",
    "Permission",
    "ProofBinder",
    "ProofGenerator",
    "ProofVerifier",
    "RegistrationError",
    "RegistrationService",
    "RegistrationSession",
    "Registry",
    "RegistryClient",
    "RequestStatus",
    "RequestStore",
    "RequestType",
    "RetryPolicy",
    "Role",
    "SessionState",
]
