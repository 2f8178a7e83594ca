"""Chat socket transport.

Owns the WebSocket handshake, the receive loop and close-code reporting for one
connection at a time. Parsing and state updates live in the session layer;
this module only moves frames and reports lifecycle events.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed

from agriassist.exceptions import ConnectionError
from agriassist.models import CloseCode, ConnectionState

logger = logging.getLogger(__name__)

ConnectFactory = Callable[[str], Awaitable[Any]]


@dataclass
class ConnectionCallbacks:
    """Lifecycle hooks awaited from the connection's reader task."""

    on_open: Callable[["Connection"], Awaitable[None]]
    on_message: Callable[["Connection", str | bytes], Awaitable[None]]
    on_close: Callable[["Connection", int, str], Awaitable[None]]
    on_error: Callable[["Connection", Exception], Awaitable[None]]


class Connection:
    """One WebSocket bound to a conversation and credential at open time."""

    def __init__(self, conversation_id: str, generation: int, url: str, safe_url: str) -> None:
        self.conversation_id = conversation_id
        self.generation = generation
        self.url = url
        self.safe_url = safe_url
        self.state = ConnectionState.IDLE
        self.close_code: int | None = None
        self.websocket: Any = None
        self._requested_code: int | None = None
        self._task: asyncio.Task[None] | None = None
        self._close_task: asyncio.Task[None] | None = None

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN and self.websocket is not None

    def log_context(self) -> dict[str, Any]:
        """Structured ``extra`` fields for log records about this connection."""
        return {"conversation_id": self.conversation_id, "generation": self.generation}

    async def wait_closed(self) -> None:
        """Wait for the reader task (and any pending close) to finish."""
        for task in (self._close_task, self._task):
            if task is None or task is asyncio.current_task():
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass

    def __repr__(self) -> str:
        return (
            f"Connection(conversation_id={self.conversation_id!r}, "
            f"generation={self.generation}, state={self.state.value})"
        )


def _default_connect(url: str) -> Awaitable[Any]:
    return websockets.connect(url, max_size=None)


class ChannelAdapter:
    """Opens, feeds and closes chat sockets.

    Args:
        base_url: WebSocket base address, e.g. ``ws://localhost:8001/ws``
        open_timeout: Handshake timeout in seconds
        connect: Coroutine factory returning a connected socket for a URL
            (defaults to :func:`websockets.connect`)
    """

    def __init__(
        self,
        base_url: str,
        *,
        open_timeout: float = 10.0,
        connect: ConnectFactory | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.open_timeout = open_timeout
        self._connect = connect or _default_connect
        self._generations = itertools.count(1)

    def build_url(self, conversation_id: str, token: str) -> str:
        query = urlencode({"session_id": conversation_id, "token": token})
        return f"{self.base_url}/chat?{query}"

    def redacted_url(self, conversation_id: str) -> str:
        """URL for logs and errors, with the token masked."""
        query = urlencode({"session_id": conversation_id})
        return f"{self.base_url}/chat?{query}&token=***"

    def open(
        self,
        conversation_id: str | None,
        token: str | None,
        callbacks: ConnectionCallbacks,
    ) -> Connection | None:
        """Start connecting; returns None when the id or token is missing."""
        if not conversation_id or not token:
            logger.debug("Not opening chat socket: conversation id or token missing")
            return None

        url = self.build_url(conversation_id, token)
        safe_url = self.redacted_url(conversation_id)
        connection = Connection(conversation_id, next(self._generations), url, safe_url)
        connection.state = ConnectionState.CONNECTING
        logger.info(
            f"Opening chat socket {safe_url} (generation {connection.generation})",
            extra=connection.log_context(),
        )
        connection._task = asyncio.create_task(self._run(connection, callbacks))
        return connection

    async def send(self, connection: Connection, payload: dict[str, Any] | str) -> None:
        """Send a JSON payload over an open connection.

        Raises:
            ConnectionError: If the connection is not open or drops mid-send.
        """
        if not connection.is_open:
            raise ConnectionError(
                "Chat socket is not open",
                url=connection.safe_url,
                context={"state": connection.state.value},
            )
        data = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
        try:
            await connection.websocket.send(data)
        except ConnectionClosed as e:
            code = e.rcvd.code if e.rcvd is not None else None
            raise ConnectionError("Chat socket closed during send", url=connection.safe_url, code=code) from e

    def close(self, connection: Connection, code: int = CloseCode.NORMAL) -> None:
        """Begin closing ``connection``; use ``wait_closed()`` to await it."""
        if connection.state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return
        connection._requested_code = int(code)
        connection.state = ConnectionState.CLOSING
        if connection.websocket is not None:
            connection._close_task = asyncio.create_task(self._close_socket(connection, int(code)))
        elif connection._task is not None:
            # Still handshaking: nothing to close politely.
            connection._task.cancel()

    async def _close_socket(self, connection: Connection, code: int) -> None:
        try:
            await connection.websocket.close(code=code)
        except ConnectionClosed as e:
            logger.debug(f"Chat socket close ended after disconnect: {e}", extra=connection.log_context())
        except Exception as e:
            logger.warning(
                f"Chat socket close failed: {type(e).__name__}: {e}", extra=connection.log_context()
            )
            # No close frame will reach the reader; stop it so wait_closed() returns.
            task = connection._task
            if task is not None and task is not asyncio.current_task() and not task.done():
                task.cancel()

    async def _run(self, connection: Connection, callbacks: ConnectionCallbacks) -> None:
        try:
            websocket = await asyncio.wait_for(
                self._connect(connection.url), timeout=self.open_timeout
            )
        except asyncio.CancelledError:
            connection.state = ConnectionState.CLOSED
            raise
        except Exception as e:
            logger.warning(
                f"Chat socket connect failed for {connection.safe_url}: {type(e).__name__}: {e}"
            )
            connection.state = ConnectionState.CLOSED
            connection.close_code = CloseCode.ABNORMAL.value
            await callbacks.on_error(connection, e)
            await callbacks.on_close(connection, CloseCode.ABNORMAL.value, str(e))
            return

        connection.websocket = websocket
        if connection.state is ConnectionState.CLOSING:
            # close() raced with the handshake
            await self._close_socket(connection, connection._requested_code or CloseCode.NORMAL.value)
            connection.state = ConnectionState.CLOSED
            connection.close_code = connection._requested_code
            return

        connection.state = ConnectionState.OPEN
        logger.info(
            f"Chat socket open for conversation {connection.conversation_id}",
            extra=connection.log_context(),
        )

        code: int = CloseCode.ABNORMAL.value
        reason = ""
        try:
            await callbacks.on_open(connection)
            while True:
                raw = await websocket.recv()
                await callbacks.on_message(connection, raw)
        except ConnectionClosed as e:
            if e.rcvd is not None:
                code, reason = e.rcvd.code, e.rcvd.reason
            elif connection._requested_code is not None:
                code = connection._requested_code
        except asyncio.CancelledError:
            connection.state = ConnectionState.CLOSED
            raise
        except Exception:
            logger.exception("Chat socket handler failed; closing connection")
            code = CloseCode.INTERNAL_ERROR.value
            await self._close_socket(connection, code)

        connection.state = ConnectionState.CLOSED
        connection.close_code = code
        logger.info(
            f"Chat socket closed (code {code}{', ' + reason if reason else ''})",
            extra={**connection.log_context(), "close_code": code},
        )
        await callbacks.on_close(connection, code, reason)
