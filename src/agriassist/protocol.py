"""JSON codec for chat socket frames."""

from __future__ import annotations

import json
from dataclasses import dataclass

from agriassist.exceptions import ProtocolError
from agriassist.models import EventType

_PREVIEW_CHARS = 120


@dataclass(frozen=True)
class ServerEvent:
    """A decoded inbound frame."""

    type: str
    content: str = ""
    detail: str | None = None


def encode_chat_message(content: str, language: str) -> str:
    """Encode an outbound user message."""
    return json.dumps(
        {"type": EventType.CHAT_MESSAGE.value, "content": content, "language": language},
        ensure_ascii=False,
    )


def _preview(raw: str | bytes) -> str:
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, (bytes, bytearray)) else raw
    if len(text) > _PREVIEW_CHARS:
        return text[:_PREVIEW_CHARS] + "..."
    return text


def decode_event(raw: str | bytes) -> ServerEvent:
    """Decode an inbound frame.

    Raises:
        ProtocolError: If the frame is not a JSON object with a string ``type``.
    """
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
        raise ProtocolError(f"Invalid JSON frame: {e}", payload_preview=_preview(raw)) from e

    if not isinstance(payload, dict):
        raise ProtocolError("Frame is not a JSON object", payload_preview=_preview(raw))

    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise ProtocolError("Frame has no type", payload_preview=_preview(raw))

    content = payload.get("content")
    detail = payload.get("detail")
    return ServerEvent(
        type=event_type,
        content=content if isinstance(content, str) else "",
        detail=detail if isinstance(detail, str) else None,
    )
