"""Caller-side chat flow: conversation list, history and turn bookkeeping.

``ChatController`` is what a front end drives. It creates conversations lazily
on the first message, keeps the visible message list, and folds each finished
streamed reply into that list.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone

from agriassist.api import ChatAPI
from agriassist.exceptions import AgriAssistError, ReconnectExhausted, ServerError
from agriassist.models import ChatMessage, Conversation, Language, MessageType, Sender
from agriassist.session import ChatSession, SessionContext, SessionSnapshot

logger = logging.getLogger(__name__)


def _local_message(conversation_id: str, sender: Sender, text: str) -> ChatMessage:
    """Optimistic message shown until history is reloaded from the server."""
    return ChatMessage(
        id=f"local-{uuid.uuid4().hex[:12]}",
        conversation_id=conversation_id,
        sender=sender,
        message_type=MessageType.TEXT,
        text_content=text,
        created_at=datetime.now(timezone.utc),
    )


class ChatController:
    """Drives a ``ChatSession`` the way the chat screen does."""

    def __init__(self, api: ChatAPI, session: ChatSession, *, auto_finalize: bool = True) -> None:
        self.api = api
        self.session = session
        self.messages: list[ChatMessage] = []
        self.conversations: list[Conversation] = []
        self.auto_finalize = auto_finalize
        self._turn_active = False
        self._turn_done = asyncio.Event()
        self._last_reply: ChatMessage | None = None
        self._submitted = False
        self._unsubscribe = session.add_listener(self._on_update)

    @property
    def context(self) -> SessionContext:
        return self.session.context

    @property
    def active_conversation_id(self) -> str | None:
        return self.context.conversation_id

    async def refresh_conversations(self) -> list[Conversation]:
        page = await self.api.list_conversations(1, self.session.config.conversations_page_size)
        self.conversations = list(page.data)
        return self.conversations

    async def submit(self, text: str, language: str | Language | None = None) -> ChatMessage | None:
        """Send ``text``, creating the conversation first if none is active.

        Blank input is ignored and returns None.
        """
        if not text.strip():
            return None

        target = self.context.conversation_id
        is_new = target is None
        if is_new:
            conversation = await self.api.create_conversation()
            target = conversation.id
            self.context.conversation_id = target
            try:
                await self.refresh_conversations()
            except AgriAssistError as e:
                logger.warning(f"Could not refresh conversation list: {e}")

        user_message = _local_message(target, Sender.USER, text)
        self.messages.append(user_message)
        self._last_reply = None
        self._turn_done.clear()
        self._turn_active = True
        self._submitted = True

        if is_new:
            await self.session.connect_and_send(target, text, language)
        else:
            await self.session.send(text, language)
        return user_message

    def finalize_turn(self) -> ChatMessage | None:
        """Move a finished streamed reply into the message list."""
        if self.session.is_streaming or not self.session.stream_buffer:
            return None
        conversation_id = self.context.conversation_id or self.session.snapshot().conversation_id
        reply = _local_message(conversation_id or "", Sender.AI, self.session.stream_buffer)
        self.messages.append(reply)
        self._last_reply = reply
        self.session.clear_stream()
        return reply

    async def wait_for_reply(
        self, timeout: float | None = None, *, raise_on_error: bool = False
    ) -> ChatMessage | None:
        """Wait until the current turn finishes or fails.

        Returns:
            The finalized AI reply, or None when the turn ended in an error
            (see ``session.last_error``).

        Raises:
            ReconnectExhausted: With ``raise_on_error``, when reconnects ran out.
            ServerError: With ``raise_on_error``, for any other failed turn,
                including a socket that closed for good before the reply.
            asyncio.TimeoutError: If ``timeout`` elapses first.
        """
        if self._turn_active:
            await asyncio.wait_for(self._turn_done.wait(), timeout=timeout)
        if self._last_reply is None and raise_on_error:
            error = self.session.last_error
            if error is None and self._submitted:
                error = "Chat connection closed before a reply arrived"
            if error:
                reconnect = self.session.reconnect
                if reconnect.exhausted:
                    raise ReconnectExhausted(
                        error,
                        attempts=reconnect.attempt_count,
                        last_code=reconnect.state.last_code,
                    )
                raise ServerError(error)
        return self._last_reply

    def _on_update(self, snap: SessionSnapshot) -> None:
        if self.auto_finalize and not snap.is_streaming and snap.stream_buffer:
            self.finalize_turn()
            self._finish_turn()
            return
        if not self._turn_active or snap.is_streaming or snap.is_connecting:
            return
        if snap.last_error:
            self._finish_turn()
        elif not snap.is_connected and not self.session.reconnect.pending:
            # Closed for good (or never opened): no reply is coming.
            self._finish_turn()

    def _finish_turn(self) -> None:
        if self._turn_active:
            self._turn_active = False
            self._turn_done.set()

    async def select(self, conversation_id: str) -> list[ChatMessage]:
        """Switch to an existing conversation and load its history."""
        self.context.conversation_id = conversation_id
        self.messages = []
        self.session.clear_stream()
        await self.session.connect()
        page = await self.api.get_messages(
            conversation_id, 1, self.session.config.history_page_size
        )
        if self.context.conversation_id == conversation_id:
            self.messages = list(page.data)
        return self.messages

    async def new_chat(self) -> None:
        """Leave the active conversation; the next submit creates a new one."""
        self.context.conversation_id = None
        self.messages = []
        self.session.clear_stream()
        await self.session.disconnect()

    async def delete(self, conversation_id: str) -> None:
        await self.api.delete_conversation(conversation_id)
        self.conversations = [c for c in self.conversations if c.id != conversation_id]
        if self.context.conversation_id == conversation_id:
            await self.new_chat()

    def close(self) -> None:
        self._unsubscribe()
