"""
Registration session - Forward-only state machine of one user's registration.

A session is ephemeral and owned by a single client. Each transition is
one-directional and no state is ever entered twice, so the verification
email, the proof and the registry submission each happen at most once
per session. Any failure moves the session to ERROR; recovering means
starting a new session with a new correlation id.
"""

import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .exceptions import InvalidTransition
from .models import BoundProof, EmailContent, Receipt, Role
from .ports import SessionState

_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.ROLE_SELECTION: frozenset({SessionState.DETAILS, SessionState.EMAIL_SENT}),
    SessionState.DETAILS: frozenset({SessionState.EMAIL_SENT}),
    SessionState.EMAIL_SENT: frozenset({SessionState.EMAIL_COLLECTED}),
    SessionState.EMAIL_COLLECTED: frozenset({SessionState.PROOF_GENERATED}),
    SessionState.PROOF_GENERATED: frozenset({SessionState.SUBMITTED}),
    SessionState.SUBMITTED: frozenset({SessionState.COMPLETE}),
    SessionState.COMPLETE: frozenset(),
    SessionState.ERROR: frozenset(),
}


@dataclass
class RegistrationSession:
    """State and collected artifacts of one registration attempt."""

    identity: str | None
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: SessionState = SessionState.ROLE_SELECTION
    requested_role: Role | None = None
    contact_email: str | None = None
    organization_name: str | None = None
    domain: str | None = None
    correlation_id: str | None = None
    target_mailbox: str | None = None
    expected_subject: str | None = None
    email: EmailContent | None = None
    bound: BoundProof | None = None
    receipt: Receipt | None = None
    pending_request_id: int | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    history: list[SessionState] = field(default_factory=lambda: [SessionState.ROLE_SELECTION])
    cancel: threading.Event = field(default_factory=threading.Event, repr=False)
    _step_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def require(self, *states: SessionState) -> None:
        """Raise InvalidTransition unless the session is in one of `states`."""
        if self.state not in states:
            expected = ", ".join(s.value for s in states)
            raise InvalidTransition(
                f"Session {self.session_id} is {self.state.value}, expected {expected}"
            )

    def advance(self, new_state: SessionState) -> None:
        """Move forward to `new_state`; backward moves and repeats are refused."""
        if new_state is SessionState.ERROR:
            raise InvalidTransition("Use fail() to move a session to ERROR")
        if new_state not in _TRANSITIONS[self.state] or new_state in self.history:
            raise InvalidTransition(
                f"Session {self.session_id} cannot go from {self.state.value} to {new_state.value}"
            )
        self.state = new_state
        self.history.append(new_state)

    def fail(self, reason: str) -> None:
        """Absorb the session into ERROR with a human-readable reason."""
        if self.is_terminal:
            raise InvalidTransition(f"Session {self.session_id} is already {self.state.value}")
        self.state = SessionState.ERROR
        self.error = reason
        self.history.append(SessionState.ERROR)

    @contextmanager
    def step(self) -> Iterator["RegistrationSession"]:
        """Guard that keeps two steps of this session from running at once."""
        if not self._step_lock.acquire(blocking=False):
            raise InvalidTransition(f"Session {self.session_id} has a step in progress")
        try:
            yield self
        finally:
            self._step_lock.release()
