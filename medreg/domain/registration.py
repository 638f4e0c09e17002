"""
Registration domain service - Drives registration sessions end to end.

Session flow
============

    ROLE_SELECTION -> DETAILS (organizations) -> EMAIL_SENT
        -> EMAIL_COLLECTED -> PROOF_GENERATED -> SUBMITTED -> COMPLETE

Each step delegates to one collaborator:

- EMAIL_SENT: a single-use correlation id, mailbox address and subject are
  issued and handed to the instruction notifier
- EMAIL_COLLECTED: InboxPoller.await_email()
- PROOF_GENERATED: ProofBinder.bind()
- SUBMITTED/COMPLETE: RegistryClient.submit(), or a filed admin request
  when the role is configured to need approval

Lower layers raise typed errors. This service is the only place that
turns them into user-facing messages and moves a session to ERROR.
Misuse (calling a step from the wrong state) raises InvalidTransition
and leaves the session untouched.
"""

import logging
import secrets
from dataclasses import dataclass, field

from .admin import AdminRequestQueue
from .exceptions import (
    CorrelationError,
    DomainMismatchError,
    DomainTakenError,
    DuplicateIdentityError,
    EmailCommitmentUsedError,
    EmailParsingError,
    InvalidTransition,
    MailboxUnavailableError,
    NotArrivedError,
    PollingCancelled,
    ProofError,
    RegistrationError,
    SubmissionOutcomeUnknown,
)
from .inbox import InboxPoller
from .models import Role, normalize_identity
from .ports import InstructionNotifier, SessionState
from .proof import ProofBinder, is_valid_address, normalize_domain
from .registry import RegistryClient
from .session import RegistrationSession

logger = logging.getLogger(__name__)

ABANDONED = "Registration abandoned"


def describe_failure(exc: RegistrationError) -> str:
    """User-facing message for a failed session step."""
    if isinstance(exc, PollingCancelled):
        return ABANDONED
    if isinstance(exc, NotArrivedError):
        return (
            "No verification email arrived in time. "
            "Start a new registration to get a fresh address."
        )
    if isinstance(exc, MailboxUnavailableError):
        return f"The mailbox service is unavailable: {exc}"
    if isinstance(exc, CorrelationError):
        return f"The verification email could not be collected: {exc}"
    if isinstance(exc, DomainMismatchError):
        return f"{exc}. Start again and send the email from your organization's domain."
    if isinstance(exc, EmailParsingError):
        return f"The verification email could not be read: {exc}. Start again and resend it."
    if isinstance(exc, ProofError):
        return f"Proof failed: {exc}"
    if isinstance(exc, DuplicateIdentityError):
        return "This wallet is already registered."
    if isinstance(exc, DomainTakenError):
        return "This domain is already registered by another organization. Contact support."
    if isinstance(exc, EmailCommitmentUsedError):
        return "This email address was already used for a registration. Contact support."
    if isinstance(exc, SubmissionOutcomeUnknown):
        return (
            f"{exc}. The registration was not recorded; "
            "start a new registration to try again."
        )
    return str(exc) or type(exc).__name__


@dataclass
class RegistrationService:
    """
    Domain service for participant registration.

    Orchestrates inbox polling, proof binding and registry submission
    for each session, and files admin requests where approval is needed.
    """

    poller: InboxPoller
    binder: ProofBinder
    registry: RegistryClient
    queue: AdminRequestQueue
    notifier: InstructionNotifier
    mailbox_domain: str = "verify.medreg.local"
    mailbox_prefix: str = "medreg"
    approval_roles: frozenset[Role] = field(default_factory=frozenset)

    def start(self, identity: str | None) -> RegistrationSession:
        """Open a session for a (possibly not yet connected) wallet."""
        session = RegistrationSession(identity=normalize_identity(identity) if identity else None)
        logger.info(f"Session {session.session_id} started for {session.identity}")
        return session

    def select_role(
        self, session: RegistrationSession, role: Role, contact_email: str | None = None
    ) -> RegistrationSession:
        """
        Choose the role to register.

        Organizations continue to DETAILS. Patients give the address they
        will send from and go straight to EMAIL_SENT.
        """
        with session.step():
            session.require(SessionState.ROLE_SELECTION)
            session.requested_role = role

            if not session.identity:
                session.fail("Connect a wallet before registering")
                return session

            existing = self.registry.get_role(session.identity)
            if existing is not None:
                if existing.is_active:
                    session.fail(f"This wallet is already registered as {existing.role.value}.")
                else:
                    session.fail("This wallet's registration is deactivated. Contact support.")
                return session

            if role.is_organization:
                session.advance(SessionState.DETAILS)
                return session

            if not contact_email or not is_valid_address(contact_email):
                session.fail("A valid email address is required")
                return session
            session.contact_email = contact_email.strip().lower()
            self._send_instructions(session, session.contact_email)
            return session

    def provide_details(
        self, session: RegistrationSession, organization_name: str, domain: str | None = None
    ) -> RegistrationSession:
        """Record organization details and issue the email instructions."""
        with session.step():
            session.require(SessionState.DETAILS)

            name = (organization_name or "").strip()
            if not name:
                session.fail("Organization name is required")
                return session
            session.organization_name = name

            if domain and domain.strip():
                session.domain = normalize_domain(domain)
                if self.registry.is_domain_taken(session.domain):
                    session.fail(describe_failure(DomainTakenError(session.domain)))
                    return session

            self._send_instructions(session, name)
            return session

    def collect_email(self, session: RegistrationSession) -> RegistrationSession:
        """Wait for the verification email. Blocks up to the poller's budget."""
        with session.step():
            session.require(SessionState.EMAIL_SENT)
            try:
                session.email = self.poller.await_email(session.correlation_id, session.cancel)
            except RegistrationError as exc:
                self._fail(session, exc)
                return session
            except Exception:
                session.fail("Unexpected error while collecting the email")
                raise
            session.advance(SessionState.EMAIL_COLLECTED)
            return session

    def generate_proof(self, session: RegistrationSession) -> RegistrationSession:
        """Bind the collected email to the session's identity and domain."""
        with session.step():
            session.require(SessionState.EMAIL_COLLECTED)
            try:
                session.bound = self.binder.bind(
                    session.email,
                    session.identity,
                    session.requested_role,
                    claimed_domain=session.domain,
                    organization_name=session.organization_name or "",
                    expected_subject=session.expected_subject,
                    expected_sender=session.contact_email,
                )
            except RegistrationError as exc:
                self._fail(session, exc)
                return session
            except Exception:
                session.fail("Unexpected error while generating the proof")
                raise
            if session.requested_role.is_organization and not session.domain:
                session.domain = session.bound.payload.domain
            session.advance(SessionState.PROOF_GENERATED)
            return session

    def submit(self, session: RegistrationSession) -> RegistrationSession:
        """
        Submit the proof once.

        A timed-out submission is reconciled by reading the registry back
        once the outstanding write has settled, never by resubmitting the
        same proof.
        """
        with session.step():
            session.require(SessionState.PROOF_GENERATED)
            role = session.requested_role
            bound = session.bound
            session.advance(SessionState.SUBMITTED)

            try:
                if role in self.approval_roles:
                    request = self.queue.submit_registration_request(session.identity, role, bound)
                    session.pending_request_id = request.request_id
                else:
                    session.receipt = self.registry.submit(bound.proof, bound.payload, role)
            except SubmissionOutcomeUnknown as exc:
                logger.warning(
                    f"Session {session.session_id} submission timed out, "
                    "waiting for the write to settle"
                )
                if self.registry.reconcile(session.identity, role, exc) is None:
                    late = exc.write_error
                    self._fail(session, late if isinstance(late, RegistrationError) else exc)
                    return session
                logger.info(f"Session {session.session_id} reconciled after timeout")
            except RegistrationError as exc:
                self._fail(session, exc)
                return session
            except Exception:
                session.fail("Unexpected error while submitting the registration")
                raise

            session.advance(SessionState.COMPLETE)
            logger.info(
                f"Session {session.session_id} complete for {session.identity} as {role.value}"
            )
            return session

    def run(self, session: RegistrationSession) -> RegistrationSession:
        """Drive a session from EMAIL_SENT to a terminal state."""
        steps = {
            SessionState.EMAIL_SENT: self.collect_email,
            SessionState.EMAIL_COLLECTED: self.generate_proof,
            SessionState.PROOF_GENERATED: self.submit,
        }
        while session.state in steps:
            steps[session.state](session)
        return session

    def abandon(self, session: RegistrationSession) -> RegistrationSession:
        """
        Stop the session. A running poll sees the cancel signal and ends the
        session itself; an idle session is ended here.
        """
        session.cancel.set()
        try:
            with session.step():
                if not session.is_terminal:
                    session.fail(ABANDONED)
                    logger.info(f"Session {session.session_id} abandoned")
        except InvalidTransition:
            logger.info(f"Session {session.session_id} has a step running, cancel signalled")
        return session

    def _send_instructions(self, session: RegistrationSession, subject_name: str) -> None:
        role = session.requested_role
        token = secrets.token_hex(8)
        session.correlation_id = f"{self.mailbox_prefix}-{role.value.lower()}-{token}"
        session.target_mailbox = f"{session.correlation_id}@{self.mailbox_domain}"
        kind = "organization" if role.is_organization else "patient"
        session.expected_subject = (
            f"Register {kind} {subject_name} as {role.value} with wallet: {session.identity}"
        )
        session.advance(SessionState.EMAIL_SENT)
        self.notifier.send_instructions(
            session.identity, session.target_mailbox, session.expected_subject
        )

    def _fail(self, session: RegistrationSession, exc: RegistrationError) -> None:
        message = describe_failure(exc)
        logger.warning(
            f"Session {session.session_id} failed in {session.state.value}: "
            f"{message} ({type(exc).__name__})"
        )
        session.fail(message)
