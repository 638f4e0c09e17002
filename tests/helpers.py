"""
Test doubles and builders shared across test packages.
"""

import threading
import time
from email.message import EmailMessage

import pytest
from psycopg_pool import ConnectionPool, PoolTimeout

from medreg.adapters.prover.local import LocalProofService
from medreg.adapters.repository.memory import InMemoryRegistry
from medreg.adapters.repository.postgres import run_migrations
from medreg.config.settings import Settings
from medreg.domain.models import EmailContent, Proof, Receipt, RegistrationPayload, Role
from medreg.domain.proof import commit_email

PROOF_SECRET = "test-proof-secret"
COMMITMENT_KEY = "test-commitment-key"
SUPER_ADMIN = "0xadmin"


def make_email(sender: str, subject: str = "Register", to: str = "inbox@verify.test") -> bytes:
    """Build raw RFC 5322 bytes with the given From and Subject."""
    message = EmailMessage()
    message["From"] = sender
    message["To"] = to
    message["Subject"] = subject
    message.set_content("Please register me.")
    return bytes(message)


class FakeMailbox:
    """Mailbox that serves pre-delivered emails and counts fetches."""

    def __init__(self) -> None:
        self.messages: dict[str, bytes] = {}
        self.fetches: list[str] = []
        self._lock = threading.Lock()

    def deliver(self, correlation_id: str, raw: bytes) -> None:
        with self._lock:
            self.messages[correlation_id] = raw

    def fetch(self, correlation_id: str) -> EmailContent | None:
        with self._lock:
            self.fetches.append(correlation_id)
            raw = self.messages.get(correlation_id)
        return EmailContent(correlation_id, raw) if raw is not None else None


class SlowRegistry(InMemoryRegistry):
    """In-memory registry whose writes land `delay` seconds after they are made."""

    def __init__(self, verifier: LocalProofService, delay: float) -> None:
        super().__init__(verifier)
        self.delay = delay

    def _register(
        self, role: Role, proof: Proof, payload: RegistrationPayload, request_id: int | None
    ) -> Receipt:
        time.sleep(self.delay)
        return super()._register(role, proof, payload, request_id)


class UserSimulatingNotifier:
    """
    Notifier that sends the requested email on the user's behalf.

    `senders` maps wallet -> From address. Wallets without an entry
    never send anything.
    """

    def __init__(self, mailbox: FakeMailbox) -> None:
        self.mailbox = mailbox
        self.senders: dict[str, str] = {}
        self.subjects: dict[str, str] = {}
        self.sent: list[tuple[str, str, str]] = []

    def send_instructions(self, identity: str, target_mailbox: str, subject: str) -> None:
        self.sent.append((identity, target_mailbox, subject))
        sender = self.senders.get(identity)
        if sender is not None:
            correlation_id = target_mailbox.split("@", 1)[0]
            sent_subject = self.subjects.get(identity, subject)
            self.mailbox.deliver(correlation_id, make_email(sender, sent_subject, target_mailbox))


def open_test_pool() -> ConnectionPool:
    """
    Open a pool on the configured database and apply migrations.

    Skips the calling test module when PostgreSQL is not reachable.
    """
    settings = Settings()
    pool = ConnectionPool(conninfo=settings.database_url, min_size=1, max_size=10, open=True)
    try:
        pool.wait(timeout=5.0)
    except PoolTimeout:
        pool.close()
        pytest.skip("PostgreSQL is not reachable")
    run_migrations(pool)
    return pool


def clean_tables(pool: ConnectionPool) -> None:
    """Delete all registry and request rows."""
    with pool.connection() as conn:
        conn.execute("DELETE FROM consumed_proofs")
        conn.execute("DELETE FROM participants")
        conn.execute("DELETE FROM admins")
        conn.execute("DELETE FROM admin_requests")
        conn.commit()


def prove(
    prover: LocalProofService,
    wallet: str,
    sender: str,
    domain: str = "",
    name: str = "",
) -> tuple[Proof, RegistrationPayload]:
    """Proof and payload for `wallet`, as the binder would produce them."""
    email = EmailContent(f"cid-{wallet}", make_email(sender))
    proof = prover.generate_proof(email, wallet, domain)
    payload = RegistrationPayload(
        wallet_address=wallet,
        email_commitment=commit_email(sender, COMMITMENT_KEY),
        domain=domain,
        organization_name=name,
    )
    return proof, payload
