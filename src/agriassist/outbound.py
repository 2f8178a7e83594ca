"""Single-slot outbound message holder."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from agriassist.protocol import encode_chat_message

if TYPE_CHECKING:
    from agriassist.transport import ChannelAdapter, Connection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingMessage:
    """A user message waiting for an open socket."""

    content: str
    language: str

    def to_frame(self) -> str:
        """The JSON text frame sent to the server."""
        return encode_chat_message(self.content, self.language)


class OutboundQueue:
    """Holds at most one pending message; the latest write wins.

    This is not a durable outbox. If two messages are enqueued before a
    socket opens, only the second one is ever delivered.
    """

    __slots__ = ("_pending",)

    def __init__(self) -> None:
        self._pending: PendingMessage | None = None

    @property
    def pending(self) -> PendingMessage | None:
        return self._pending

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def enqueue(self, content: str, language: str) -> PendingMessage:
        if self._pending is not None:
            logger.debug("Replacing undelivered pending message")
        self._pending = PendingMessage(content=content, language=language)
        return self._pending

    def clear(self) -> None:
        self._pending = None

    async def flush_if_ready(
        self, connection: Connection | None, adapter: ChannelAdapter
    ) -> PendingMessage | None:
        """Send the pending message if ``connection`` is open.

        Returns:
            The message that was sent, or None if nothing was sent.
        """
        message = self._pending
        if message is None or connection is None or not connection.is_open:
            return None
        self._pending = None
        try:
            await adapter.send(connection, message.to_frame())
        except Exception:
            if self._pending is None:
                self._pending = message
            raise
        logger.debug("Flushed pending message", extra=connection.log_context())
        return message
