"""
HTTP mailbox adapter - Implements Mailbox protocol.

The inbox service stores one raw RFC 5322 message per correlation id and
serves it at GET {base_url}/{correlation_id}.eml. A 404 means the email
has not arrived yet; any other failure is a hard error.
"""

import logging
from http import HTTPStatus

import httpx

from medreg.domain.exceptions import MailboxUnavailableError
from medreg.domain.models import EmailContent

logger = logging.getLogger(__name__)


class HttpMailbox:
    """
    Implements Mailbox protocol via httpx.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    DEFAULT_TIMEOUT = 10.0

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"), timeout=timeout, transport=transport
        )

    def fetch(self, correlation_id: str) -> EmailContent | None:
        """
        Fetch the raw email for a correlation id.

        Returns:
            EmailContent, or None if nothing has arrived yet

        Raises:
            MailboxUnavailableError: transport failure or unexpected status
        """
        try:
            response = self._client.get(f"/{correlation_id}.eml")
        except httpx.HTTPError as e:
            raise MailboxUnavailableError(f"Inbox service unreachable: {e}") from e

        if response.status_code == HTTPStatus.NOT_FOUND:
            return None
        if response.status_code != HTTPStatus.OK:
            raise MailboxUnavailableError(
                f"Inbox service returned {response.status_code} for {correlation_id}"
            )

        logger.debug(f"Fetched {len(response.content)} bytes for {correlation_id}")
        return EmailContent(correlation_id=correlation_id, raw=response.content)

    def close(self) -> None:
        self._client.close()
