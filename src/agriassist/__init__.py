"""AgriAssist chat client: streaming farm-assistant chat over a reconnecting WebSocket."""

__version__ = "0.4.0"

# Re-export core components for convenience
from .api import ChatAPI
from .backoff import AsyncioScheduler, BackoffStrategy, ReconnectController, should_retry
from .chat import ChatController
from .config import ChatConfig, ReconnectConfig, configure_logging
from .exceptions import (
    AgriAssistError,
    APIError,
    AuthenticationError,
    ConfigError,
    ConnectionError,
    ProtocolError,
    ReconnectExhausted,
    ServerError,
    SessionError,
    ValidationError,
)
from .models import (
    ChatMessage,
    CloseCode,
    ConnectionState,
    Conversation,
    EventType,
    Language,
    MessageType,
    Page,
    Sender,
)
from .outbound import OutboundQueue, PendingMessage
from .protocol import ServerEvent, decode_event, encode_chat_message
from .session import ChatSession, SessionContext, SessionSnapshot
from .streaming import StreamAggregator, StreamChunk, StreamingMetrics
from .transport import ChannelAdapter, Connection, ConnectionCallbacks

__all__ = [
    # Session
    "ChatSession",
    "SessionContext",
    "SessionSnapshot",
    "ChatController",
    # Transport
    "ChannelAdapter",
    "Connection",
    "ConnectionCallbacks",
    # Reconnect
    "AsyncioScheduler",
    "BackoffStrategy",
    "ReconnectController",
    "should_retry",
    # Queue and stream
    "OutboundQueue",
    "PendingMessage",
    "StreamAggregator",
    "StreamChunk",
    "StreamingMetrics",
    # Wire format
    "ServerEvent",
    "decode_event",
    "encode_chat_message",
    # REST
    "ChatAPI",
    # Config
    "ChatConfig",
    "ReconnectConfig",
    "configure_logging",
    # Models
    "ChatMessage",
    "CloseCode",
    "ConnectionState",
    "Conversation",
    "EventType",
    "Language",
    "MessageType",
    "Page",
    "Sender",
    # Exceptions
    "AgriAssistError",
    "APIError",
    "AuthenticationError",
    "ConfigError",
    "ConnectionError",
    "ProtocolError",
    "ReconnectExhausted",
    "ServerError",
    "SessionError",
    "ValidationError",
]
