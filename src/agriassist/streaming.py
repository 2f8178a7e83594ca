"""Streaming data types and the token aggregator for AgriAssist."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from agriassist.exceptions import ProtocolError
from agriassist.models import EventType
from agriassist.protocol import ServerEvent, decode_event

logger = logging.getLogger(__name__)


@dataclass
class StreamChunk:
    """A signal emitted while a reply streams in."""

    type: str  # "token", "complete", "error"
    delta: str = ""
    content: str | None = None  # Full buffer when type == "complete"
    error: str | None = None


@dataclass
class StreamingMetrics:
    """Lightweight metrics captured during a single streamed reply."""

    first_token_time: float | None = None
    last_token_time: float | None = None
    total_tokens: int = 0
    total_chars: int = 0
    _start_time: float = 0.0

    @property
    def time_to_first_token_ms(self) -> float | None:
        if self._start_time and self.first_token_time is not None:
            return (self.first_token_time - self._start_time) * 1000
        return None

    @property
    def tokens_per_second(self) -> float:
        if self.first_token_time is None or self.last_token_time is None:
            return 0.0
        elapsed = self.last_token_time - self.first_token_time
        if elapsed <= 0:
            return float(self.total_tokens)
        return self.total_tokens / elapsed

    def record_token(self, delta: str) -> None:
        now = time.monotonic()
        if self.first_token_time is None:
            self.first_token_time = now
        self.last_token_time = now
        self.total_tokens += 1
        self.total_chars += len(delta)


class StreamAggregator:
    """Accumulates ``ai_token`` fragments into the reply buffer.

    Purely reactive: it performs no I/O and keeps no retry state. Malformed
    frames are logged and dropped without touching the buffer.
    """

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._streaming = False
        self._error: str | None = None
        self.metrics = StreamingMetrics()

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def is_streaming(self) -> bool:
        return self._streaming

    @property
    def error(self) -> str | None:
        return self._error

    def begin_turn(self) -> None:
        """Start a new turn: empty buffer, streaming on."""
        self._parts.clear()
        self._streaming = True
        self._error = None
        self.metrics = StreamingMetrics(_start_time=time.monotonic())

    def feed(self, raw: str | bytes) -> StreamChunk | None:
        """Decode and apply one inbound frame."""
        try:
            event = decode_event(raw)
        except ProtocolError as e:
            logger.warning(f"Dropping unparseable chat frame: {e}")
            return None
        return self.apply(event)

    def apply(self, event: ServerEvent) -> StreamChunk | None:
        if event.type == EventType.AI_TOKEN.value:
            if not event.content:
                return None
            self._parts.append(event.content)
            self._streaming = True
            self.metrics.record_token(event.content)
            return StreamChunk(type="token", delta=event.content)

        if event.type == EventType.AI_COMPLETE.value:
            self._streaming = False
            logger.debug(
                "Reply complete: %d tokens, %d chars",
                self.metrics.total_tokens,
                self.metrics.total_chars,
            )
            return StreamChunk(type="complete", content=self.text)

        if event.type == EventType.ERROR.value:
            self._error = event.detail or "Unknown error"
            self._streaming = False
            logger.error(f"Chat server reported an error: {self._error}")
            return StreamChunk(type="error", error=self._error)

        logger.debug(f"Ignoring chat frame of type {event.type!r}")
        return None

    def clear(self) -> None:
        """Empty the buffer once the caller has stored the reply."""
        self._parts.clear()

    def reset(self) -> None:
        """Abandon the current turn entirely."""
        self._parts.clear()
        self._streaming = False
