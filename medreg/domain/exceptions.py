"""
Domain exceptions - Semantic error types for registration.

This module defines domain-specific exceptions that communicate
business rule violations without leaking infrastructure details.

Hierarchy (grouped by how a caller can recover):

- CorrelationError: the verification email could not be collected.
  Recoverable by starting a new session (fresh correlation id).
- EmailParsingError: the collected email is unusable.
  Recoverable by sending a correct email from a new session.
- ProofError: proof generation or verification was rejected. Fatal for
  the session; retrying with the same inputs reproduces the failure.
- RegistryInvariantError: the registry refused the submission because of an
  existing record. Fatal; the underlying conflict must be resolved.
- RequestQueueError: admin request processing failures.
"""

from concurrent.futures import Future


class RegistrationError(Exception):
    """Base class for registration domain errors."""

    pass


class InvalidTransition(RegistrationError):
    """Session step invoked from a state that does not allow it."""

    pass


# Correlation errors


class CorrelationError(RegistrationError):
    """Verification email could not be correlated with the session."""

    pass


class NotArrivedError(CorrelationError):
    """No email arrived for the correlation id within the retry budget."""

    def __init__(self, correlation_id: str, attempts: int) -> None:
        super().__init__(
            f"No verification email for {correlation_id} after {attempts} attempts"
        )
        self.correlation_id = correlation_id
        self.attempts = attempts


class PollingCancelled(CorrelationError):
    """Polling was stopped by the caller before an email arrived."""

    pass


class MailboxUnavailableError(CorrelationError):
    """Mailbox service failed with something other than 'not yet arrived'."""

    pass


# Parsing errors


class EmailParsingError(RegistrationError):
    """Collected email cannot be turned into a registration payload."""

    pass


class MalformedEmailError(EmailParsingError):
    """Sender header is missing or not a valid address."""

    pass


class DomainMismatchError(EmailParsingError):
    """Sender domain differs from the domain claimed by the organization."""

    def __init__(self, claimed_domain: str, sender_domain: str) -> None:
        super().__init__(
            f"Email was sent from {sender_domain}, expected {claimed_domain}"
        )
        self.claimed_domain = claimed_domain
        self.sender_domain = sender_domain


# Proof errors


class ProofError(RegistrationError):
    """Base class for proof generation and verification failures."""

    pass


class ProofGenerationError(ProofError):
    """Proving service could not produce a proof."""

    pass


class ProofRejectedError(ProofError):
    """Registry refused the proof during verification."""

    pass


class ProofAlreadyConsumedError(ProofRejectedError):
    """Proof was already used by a successful submission."""

    pass


# Registry invariant errors


class RegistryInvariantError(RegistrationError):
    """Registry refused the submission because of an existing record."""

    pass


class DuplicateIdentityError(RegistryInvariantError):
    """Identity already holds an active role."""

    pass


class DomainTakenError(RegistryInvariantError):
    """Domain is already claimed by a different active organization."""

    pass


class EmailCommitmentUsedError(RegistryInvariantError):
    """Email commitment was already used for another registration."""

    pass


class NotRegisteredError(RegistrationError):
    """Identity has no registry record."""

    pass


class SubmissionOutcomeUnknown(RegistrationError):
    """
    Registry submission timed out; outcome must be read back, not retried.

    `pending` is the write still in flight, if any. Reading the registry
    back is only meaningful once it has settled.
    """

    def __init__(self, message: str, pending: Future | None = None) -> None:
        super().__init__(message)
        self.pending = pending

    @property
    def write_error(self) -> BaseException | None:
        """Error the pending write settled with, None while it runs or if it succeeded."""
        if self.pending is None or not self.pending.done() or self.pending.cancelled():
            return None
        return self.pending.exception()


# Request queue errors


class RequestQueueError(RegistrationError):
    """Base class for admin request queue failures."""

    pass


class RequestNotFound(RequestQueueError):
    """No request exists with the given id."""

    pass


class AlreadyProcessedError(RequestQueueError):
    """Request already left PENDING."""

    pass


class NotAuthorizedError(RequestQueueError):
    """Acting identity lacks the admin role required for the action."""

    pass
