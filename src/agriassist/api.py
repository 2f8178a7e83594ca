"""HTTP client for the AgriAssist chat REST endpoints."""

from __future__ import annotations

import json
import logging
from typing import Any

import aiohttp

from agriassist.config import ChatConfig
from agriassist.exceptions import APIError, AuthenticationError, ConnectionError, ValidationError
from agriassist.models import ChatMessage, Conversation, Page

logger = logging.getLogger(__name__)


class ChatAPI:
    """Conversation and history calls made around the chat socket.

    Args:
        token: Bearer token for the signed-in user
        config: Client configuration (``api_base_url``, ``http_timeout``)
        session: Optional shared ``aiohttp.ClientSession``; one is created
            (and owned) on ``__aenter__`` otherwise
    """

    def __init__(
        self,
        token: str,
        config: ChatConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.token = token
        self.config = config or ChatConfig()
        self._session = session
        self._owns_session = False

    async def __aenter__(self) -> "ChatAPI":
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.http_timeout)
            )
            self._owns_session = True
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        if self._owns_session:
            self._session = None
            self._owns_session = False

    def _make_url(self, path: str) -> str:
        return f"{self.config.api_base_url}{path}"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    async def request_json(self, method: str, path: str, **kwargs: Any) -> Any:
        if self._session is None:
            raise RuntimeError("ChatAPI used outside 'async with'")
        url = self._make_url(path)
        headers = {**self._headers(), **kwargs.pop("headers", {})}
        try:
            async with self._session.request(method, url, headers=headers, **kwargs) as resp:
                if resp.status == 204:
                    return None
                text = await resp.text()
                if resp.status >= 400:
                    raise self._error_for(resp.status, text, method, path)
                if not text:
                    return None
                try:
                    return json.loads(text)
                except json.JSONDecodeError:
                    return text
        except aiohttp.ClientError as e:
            raise ConnectionError(f"Request to {path} failed: {e}", url=url) from e

    @staticmethod
    def _error_for(status: int, text: str, method: str, path: str) -> APIError:
        message = text.strip()
        try:
            body = json.loads(text)
        except json.JSONDecodeError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("message"), str):
            message = body["message"]
        message = message or f"HTTP {status}"
        if status in (401, 403):
            return AuthenticationError(message, status, method=method, path=path)
        return APIError(message, status, method=method, path=path)

    @staticmethod
    def _check_paging(page: int, limit: int) -> None:
        if page < 1:
            raise ValidationError("page must be >= 1", field_name="page", value=page)
        if limit < 1:
            raise ValidationError("limit must be >= 1", field_name="limit", value=limit)

    async def create_conversation(
        self,
        field_id: str | None = None,
        crop_assignment_id: str | None = None,
    ) -> Conversation:
        """Create a conversation record and return it."""
        payload: dict[str, Any] = {}
        if field_id:
            payload["fieldId"] = field_id
        if crop_assignment_id:
            payload["cropAssignmentId"] = crop_assignment_id
        data = await self.request_json("POST", "/chat/conversations", json=payload)
        record = data.get("conversation") if isinstance(data, dict) else None
        if not isinstance(record, dict) or not record.get("id"):
            raise APIError("Conversation creation returned no id", 502, method="POST", path="/chat/conversations")
        conversation = Conversation.model_validate(record)
        logger.info(f"Created conversation {conversation.id}")
        return conversation

    async def list_conversations(self, page: int = 1, limit: int = 20) -> Page[Conversation]:
        self._check_paging(page, limit)
        data = await self.request_json(
            "GET", "/chat/conversations", params={"page": page, "limit": limit}
        )
        return Page[Conversation].model_validate(data or {})

    async def get_messages(
        self, conversation_id: str, page: int = 1, limit: int = 50
    ) -> Page[ChatMessage]:
        """Return one page of a conversation's stored messages."""
        self._check_paging(page, limit)
        data = await self.request_json(
            "GET", f"/chat/messages/{conversation_id}", params={"page": page, "limit": limit}
        )
        return Page[ChatMessage].model_validate(data or {})

    async def add_message(self, conversation_id: str, message: dict[str, Any]) -> Any:
        return await self.request_json(
            "POST", f"/chat/conversations/{conversation_id}/messages", json=message
        )

    async def delete_conversation(self, conversation_id: str) -> None:
        await self.request_json("DELETE", f"/chat/conversations/{conversation_id}")
        logger.info(f"Deleted conversation {conversation_id}")
