"""
In-process session manager.

Registration sessions are client-local and ephemeral: they live only in
the process that opened them and are lost on restart. Sessions older
than the configured TTL are dropped on access.
"""

import threading
from datetime import datetime, timedelta, timezone

from medreg.domain.registration import RegistrationService
from medreg.domain.session import RegistrationSession


class SessionNotFound(KeyError):
    pass


class SessionManager:
    def __init__(self, service: RegistrationService, ttl_seconds: int = 3600) -> None:
        self.service = service
        self._ttl = timedelta(seconds=ttl_seconds)
        self._lock = threading.Lock()
        self._sessions: dict[str, RegistrationSession] = {}

    def open(self, identity: str | None) -> RegistrationSession:
        session = self.service.start(identity)
        with self._lock:
            self._expire()
            self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str) -> RegistrationSession:
        with self._lock:
            self._expire()
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _expire(self) -> None:
        cutoff = datetime.now(timezone.utc) - self._ttl
        expired = [sid for sid, s in self._sessions.items() if s.created_at < cutoff]
        for session_id in expired:
            self._sessions[session_id].cancel.set()
            del self._sessions[session_id]
