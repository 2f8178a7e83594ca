"""
AgriAssist Exception Hierarchy.

All custom exceptions inherit from AgriAssistError for unified error handling.
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)


class AgriAssistError(Exception):
    """Base exception for AgriAssist errors.

    All AgriAssist exceptions inherit from this class to allow catching
    any client-related error with a single except clause.

    Attributes:
        message: Human-readable error description
        context: Additional context for debugging
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self._log_error()

    def _log_error(self) -> None:
        """Log the error creation at debug level.

        Errors are logged at debug to avoid noise from expected/retried errors.
        Callers should log at appropriate level when handling the exception.
        """
        logger.debug(
            f"{self.__class__.__name__}: {self.message}",
            extra={"error_context": self.context},
        )

    def __str__(self) -> str:
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} [{ctx}]"
        return self.message


class ConfigError(AgriAssistError):
    """Raised for configuration errors.

    Examples:
        - Malformed config file
        - Unsupported language code
        - Invalid WebSocket or API base URL
    """


class ValidationError(AgriAssistError):
    """Raised for input validation errors.

    Examples:
        - Empty chat message
        - Invalid page or limit value
    """

    def __init__(
        self,
        message: str,
        field_name: str | None = None,
        value: Any = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        ctx = context or {}
        if field_name:
            ctx["field"] = field_name
        if value is not None:
            ctx["value"] = repr(value)
        super().__init__(message, ctx)
        self.field_name = field_name
        self.value = value


class ConnectionError(AgriAssistError):
    """Raised when the chat socket is unavailable for an operation.

    Attributes:
        url: The socket address involved (credentials stripped)
        code: WebSocket close code, when one was received
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        ctx = context or {}
        if url:
            ctx["url"] = url
        if code is not None:
            ctx["code"] = code
        super().__init__(message, ctx)
        self.url = url
        self.code = code


class ProtocolError(AgriAssistError):
    """Malformed or invalid frame received from the chat server."""

    def __init__(
        self,
        message: str,
        payload_preview: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        ctx = context or {}
        if payload_preview:
            ctx["payload"] = payload_preview
        super().__init__(message, ctx)
        self.payload_preview = payload_preview


class ServerError(AgriAssistError):
    """An explicit ``error`` event sent by the chat backend."""


class ReconnectExhausted(AgriAssistError):
    """Raised when all reconnect attempts have been used.

    Attributes:
        attempts: Number of attempts made
        last_code: The close code of the final failure
    """

    def __init__(
        self,
        message: str,
        attempts: int,
        last_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        ctx = context or {}
        ctx["attempts"] = attempts
        if last_code is not None:
            ctx["last_code"] = last_code
        super().__init__(message, ctx)
        self.attempts = attempts
        self.last_code = last_code


class SessionError(AgriAssistError):
    """Raised when a chat session is used after it has been closed."""


class APIError(AgriAssistError):
    """HTTP error returned by the AgriAssist REST API.

    Attributes:
        status: HTTP status code
        method: HTTP method of the failed request
        path: Request path relative to the API base
    """

    def __init__(
        self,
        message: str,
        status: int,
        method: str | None = None,
        path: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        ctx = context or {}
        ctx["status"] = status
        if method:
            ctx["method"] = method
        if path:
            ctx["path"] = path
        super().__init__(message, ctx)
        self.status = int(status)
        self.method = method
        self.path = path


class AuthenticationError(APIError):
    """Raised for 401/403 responses from the REST API.

    Examples:
        - Bearer token expired
        - Token missing from the request
    """
