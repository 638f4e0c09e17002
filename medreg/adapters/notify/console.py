"""
Console instruction notifier adapter - Implements InstructionNotifier protocol.

This module provides a console-based implementation of the domain's
notifier port, logging the mailbox address and subject the user must
send their verification email to.
"""

import logging

logger = logging.getLogger(__name__)


class ConsoleInstructionNotifier:
    """
    Implements InstructionNotifier protocol via console logging.

    Uses structural subtyping - no explicit inheritance from Protocol.
    For demo/development purposes - the instructions are also returned
    to the client by the sessions API.
    """

    def send_instructions(self, identity: str, target_mailbox: str, subject: str) -> None:
        """
        Log registration instructions to console.

        Logged at INFO level to be visible in docker-compose logs.

        Args:
            identity: Wallet address being registered
            target_mailbox: Address the verification email must be sent to
            subject: Exact subject the verification email must carry
        """
        logger.info(
            "[INSTRUCTIONS] Wallet: %s Send to: %s Subject: %s", identity, target_mailbox, subject
        )
