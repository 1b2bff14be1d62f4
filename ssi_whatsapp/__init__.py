"""
SSI WhatsApp Server

HTTP façade around a headless WhatsApp Web session: status and QR polling,
logout and text message sending.
"""

from .config import ServerSettings
from .client import WhatsAppWebClient, WhatsAppClientError, LocalAuth, WebVersionCache
from .session_manager import ConnectionManager, ConnectionState, ReconnectPolicy
from .formatters import normalize_phone, to_chat_id

__all__ = [
    "ServerSettings",
    "WhatsAppWebClient",
    "WhatsAppClientError",
    "LocalAuth",
    "WebVersionCache",
    "ConnectionManager",
    "ConnectionState",
    "ReconnectPolicy",
    "normalize_phone",
    "to_chat_id",
]

__version__ = "1.0.0"
