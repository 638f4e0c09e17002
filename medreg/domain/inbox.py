"""
Inbox poller - Waits for the verification email of a session.

The mail round-trip is human-paced, so the poller uses a fixed interval
with a bounded number of attempts and no backoff growth. Cancellation is
a threading.Event: setting it stops further attempts immediately, and
because nothing external was mutated no compensation is needed.
"""

import logging
import threading
from dataclasses import dataclass

from .exceptions import NotArrivedError, PollingCancelled
from .models import EmailContent
from .ports import Mailbox

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay retry budget. Defaults: 6 attempts, 10 seconds apart."""

    interval: float = 10.0
    max_attempts: int = 6

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval < 0:
            raise ValueError("interval must not be negative")


@dataclass
class InboxPoller:
    """Polls the mailbox service until the email arrives or the budget runs out."""

    mailbox: Mailbox
    policy: RetryPolicy = RetryPolicy()

    def await_email(
        self, correlation_id: str, cancel: threading.Event | None = None
    ) -> EmailContent:
        """
        Return the first email observed for the correlation id.

        Args:
            correlation_id: Single-use token of the session's mailbox
            cancel: Optional event; once set, no further attempt is scheduled

        Returns:
            EmailContent of the first matching email

        Raises:
            NotArrivedError: no email after policy.max_attempts attempts
            PollingCancelled: cancel was set before an email arrived
            MailboxUnavailableError: mailbox failed with a hard error
        """
        cancel = cancel or threading.Event()

        for attempt in range(1, self.policy.max_attempts + 1):
            if cancel.is_set():
                logger.info(f"Polling cancelled for {correlation_id} before attempt {attempt}")
                raise PollingCancelled(correlation_id)

            email = self.mailbox.fetch(correlation_id)
            if email is not None:
                logger.info(f"Email for {correlation_id} arrived on attempt {attempt}")
                return email

            logger.debug(
                f"Email for {correlation_id} not yet arrived "
                f"(attempt {attempt}/{self.policy.max_attempts})"
            )
            # No wait after the final attempt
            if attempt < self.policy.max_attempts and cancel.wait(self.policy.interval):
                logger.info(f"Polling cancelled for {correlation_id} after attempt {attempt}")
                raise PollingCancelled(correlation_id)

        logger.warning(
            f"Email for {correlation_id} never arrived after {self.policy.max_attempts} attempts"
        )
        raise NotArrivedError(correlation_id, self.policy.max_attempts)
