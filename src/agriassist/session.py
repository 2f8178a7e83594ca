"""Chat session orchestration.

``ChatSession`` is the public face of the streaming client. It owns:
- the single current ``Connection`` (older ones are closed and ignored)
- the one-slot outbound queue
- the reply buffer, via ``StreamAggregator``
- the reconnect schedule, via ``ReconnectController``

Every connection carries a generation number. Callbacks from any connection
other than the current one return before touching session state, so a
superseded socket that is still draining cannot write into a newer turn.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from agriassist.backoff import BackoffStrategy, ReconnectController, Scheduler
from agriassist.config import ChatConfig
from agriassist.exceptions import ConnectionError, SessionError, ValidationError
from agriassist.models import CloseCode, ConnectionState, Language, parse_language
from agriassist.outbound import OutboundQueue, PendingMessage
from agriassist.streaming import StreamAggregator, StreamChunk
from agriassist.transport import ChannelAdapter, Connection, ConnectionCallbacks

logger = logging.getLogger(__name__)


@dataclass
class SessionContext:
    """Caller-owned conversation context.

    The session reads this holder every time it opens a socket, so the caller
    can switch conversations or refresh the token between calls without
    rebuilding the session.
    """

    conversation_id: str | None = None
    auth_token: str | None = None


@dataclass(frozen=True)
class SessionSnapshot:
    """Caller-visible session state at one instant."""

    is_connected: bool
    is_connecting: bool
    is_streaming: bool
    stream_buffer: str
    last_error: str | None
    conversation_id: str | None
    reconnect_attempts: int


Listener = Callable[[SessionSnapshot], None]


class ChatSession:
    """Streaming chat session over a reconnecting WebSocket.

    Usage:
        context = SessionContext(conversation_id="c-1", auth_token=token)
        async with ChatSession(context, config) as session:
            await session.send("When should I irrigate?", "en")
    """

    def __init__(
        self,
        context: SessionContext,
        config: ChatConfig | None = None,
        *,
        adapter: ChannelAdapter | None = None,
        scheduler: Scheduler | None = None,
        on_chunk: Callable[[StreamChunk], None] | None = None,
    ) -> None:
        self.context = context
        self.config = config or ChatConfig()
        self._adapter = adapter or ChannelAdapter(
            self.config.ws_base_url, open_timeout=self.config.open_timeout
        )
        self._reconnect = ReconnectController(
            BackoffStrategy(
                base_delay=self.config.reconnect.base_delay,
                max_attempts=self.config.reconnect.max_attempts,
                max_delay=self.config.reconnect.max_delay,
            ),
            scheduler=scheduler,
        )
        self._outbound = OutboundQueue()
        self._stream = StreamAggregator()
        self._on_chunk = on_chunk
        self._listeners: list[Listener] = []

        self._connection: Connection | None = None
        self._generation = 0
        self._bound_conversation_id: str | None = None
        self._retired: list[Connection] = []
        self._connected = False
        self._connecting = False
        self._last_error: str | None = None
        self._closed = False

        self._callbacks = ConnectionCallbacks(
            on_open=self._handle_open,
            on_message=self._handle_message,
            on_close=self._handle_close,
            on_error=self._handle_error,
        )

    # ------------------------------------------------------------------
    # Caller-visible state
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def is_connecting(self) -> bool:
        return self._connecting

    @property
    def is_streaming(self) -> bool:
        return self._stream.is_streaming

    @property
    def stream_buffer(self) -> str:
        return self._stream.text

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def connection(self) -> Connection | None:
        return self._connection

    @property
    def pending_message(self) -> PendingMessage | None:
        return self._outbound.pending

    @property
    def reconnect(self) -> ReconnectController:
        return self._reconnect

    @property
    def metrics(self):
        return self._stream.metrics

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            is_connected=self._connected,
            is_connecting=self._connecting,
            is_streaming=self._stream.is_streaming,
            stream_buffer=self._stream.text,
            last_error=self._last_error,
            conversation_id=self._bound_conversation_id,
            reconnect_attempts=self._reconnect.attempt_count,
        )

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a state-change listener; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.debug("Session listener failed", exc_info=True)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def connect(self) -> Connection | None:
        """Deliberately (re)connect to the context's current conversation.

        Resets the reconnect counter and supersedes any existing socket.
        A missing conversation id or token makes this a no-op.
        """
        self._ensure_usable()
        self._reconnect.reset()
        return self._open(self.context.conversation_id)

    async def send(self, content: str, language: str | Language | None = None) -> None:
        """Send a user message, queueing it if no socket is open.

        When nothing is open, the message is held (replacing any earlier
        pending one), the reconnect counter is reset and a fresh socket is
        opened unless one is already mid-handshake.
        """
        self._ensure_usable()
        lang = self._resolve_language(content, language)
        self._outbound.enqueue(content, lang)

        connection = self._connection
        if connection is not None and connection.is_open:
            await self._flush(connection)
            return

        logger.debug("Chat socket not open; message queued")
        self._reconnect.reset()
        if connection is not None and connection.state is ConnectionState.CONNECTING:
            self._notify()
            return
        self._open(self._target_conversation())

    async def connect_and_send(
        self,
        conversation_id: str,
        content: str,
        language: str | Language | None = None,
    ) -> None:
        """Queue ``content`` and open a socket bound to ``conversation_id``.

        Used right after a conversation is created, before the caller's
        context reflects the new id. Queueing and opening happen without an
        intervening suspension point, so the socket can never open against a
        stale conversation.
        """
        self._ensure_usable()
        lang = self._resolve_language(content, language)
        self._outbound.enqueue(content, lang)
        self._reconnect.reset()
        self._open(conversation_id)

    async def disconnect(self) -> None:
        """Close the current socket without opening another one."""
        self._ensure_usable()
        self._reconnect.reset()
        self._outbound.clear()
        self._supersede()
        self._notify()

    def clear_stream(self) -> None:
        """Empty the reply buffer once the caller has stored the reply."""
        self._stream.clear()
        self._notify()

    async def close(self) -> None:
        """Tear down: cancel the reconnect timer and close the socket.

        No session state changes after this returns.
        """
        if self._closed:
            return
        self._closed = True
        self._reconnect.cancel()
        connection = self._connection
        self._connection = None
        self._generation = 0
        self._connected = False
        self._connecting = False
        self._outbound.clear()
        if connection is not None:
            self._adapter.close(connection, CloseCode.NORMAL)
            self._retired.append(connection)
        retired, self._retired = self._retired, []
        for old in retired:
            await old.wait_closed()
        logger.debug("Chat session closed")

    async def __aenter__(self) -> "ChatSession":
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_usable(self) -> None:
        if self._closed:
            raise SessionError("Chat session is closed")

    def _resolve_language(self, content: str, language: str | Language | None) -> str:
        if not content or not content.strip():
            raise ValidationError("Message content is empty", field_name="content")
        try:
            return parse_language(language, default=self.config.default_language).value
        except ValueError:
            raise ValidationError(
                f"Unsupported language '{language}'", field_name="language", value=language
            ) from None

    def _target_conversation(self) -> str | None:
        return self.context.conversation_id or self._bound_conversation_id

    def _is_current(self, connection: Connection) -> bool:
        return not self._closed and connection.generation == self._generation

    def _supersede(self) -> None:
        old = self._connection
        if old is None:
            return
        self._connection = None
        self._generation = 0
        self._connected = False
        self._connecting = False
        if self._stream.is_streaming:
            logger.debug("Abandoning in-flight reply from superseded connection")
            self._stream.reset()
        self._adapter.close(old, CloseCode.NORMAL)
        self._retired = [c for c in self._retired if c.state is not ConnectionState.CLOSED]
        self._retired.append(old)

    def _open(self, conversation_id: str | None) -> Connection | None:
        self._reconnect.cancel()
        self._supersede()
        connection = self._adapter.open(conversation_id, self.context.auth_token, self._callbacks)
        if connection is None:
            self._notify()
            return None
        self._connection = connection
        self._generation = connection.generation
        self._bound_conversation_id = conversation_id
        self._connecting = True
        self._notify()
        return connection

    def _reconnect_now(self) -> None:
        if self._closed:
            return
        self._open(self._target_conversation())

    async def _flush(self, connection: Connection) -> None:
        if not self._outbound.has_pending or not connection.is_open:
            return
        self._stream.begin_turn()
        self._last_error = None
        self._notify()
        try:
            await self._outbound.flush_if_ready(connection, self._adapter)
        except ConnectionError as e:
            # The reader task sees the same closure and schedules a reconnect;
            # the message stays queued for the next open.
            logger.warning(f"Send failed, message kept for retry: {e}", extra=connection.log_context())
            if self._is_current(connection):
                self._stream.reset()
                self._notify()

    async def _handle_open(self, connection: Connection) -> None:
        if not self._is_current(connection):
            return
        self._connected = True
        self._connecting = False
        self._last_error = None
        self._reconnect.on_open()
        self._notify()
        await self._flush(connection)

    async def _handle_message(self, connection: Connection, raw: str | bytes) -> None:
        if not self._is_current(connection):
            logger.debug("Ignoring frame from superseded connection", extra=connection.log_context())
            return
        chunk = self._stream.feed(raw)
        if chunk is None:
            return
        if chunk.type == "error":
            self._last_error = chunk.error
        if self._on_chunk:
            self._on_chunk(chunk)
        self._notify()

    async def _handle_error(self, connection: Connection, error: Exception) -> None:
        if not self._is_current(connection):
            return
        self._connected = False
        self._notify()

    async def _handle_close(self, connection: Connection, code: int, reason: str) -> None:
        if not self._is_current(connection):
            return
        self._connected = False
        self._connecting = False
        if self._stream.is_streaming:
            self._stream.reset()

        if code == CloseCode.POLICY_VIOLATION:
            detail = f": {reason}" if reason else ""
            self._last_error = f"Connection rejected by server{detail}"

        delay = self._reconnect.on_close(code, self._reconnect_now)
        if delay is None and self._reconnect.exhausted:
            self._last_error = (
                f"Unable to reach the chat server after "
                f"{self._reconnect.attempt_count} attempts"
            )
        self._notify()
