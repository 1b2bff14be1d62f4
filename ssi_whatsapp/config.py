"""
Server Configuration

Reads the environment (optionally seeded from a .env file) and derives the
listen address, the session storage path and the browser settings used by
the WhatsApp Web client.
"""

import os
import logging
from pathlib import Path
from typing import Optional, Mapping

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3001
DEFAULT_HOST = "0.0.0.0"
DEFAULT_CLIENT_ID = "ssi-session"
SESSION_DIR_NAME = "ssi_whatsapp_auth"
LOCAL_SESSION_DIR_NAME = ".wwebjs_auth"
DEFAULT_WEB_VERSION_URL = (
    "https://raw.githubusercontent.com/wppconnect-team/wa-version/main/html/"
    "2.3000.1014590913-alpha.html"
)

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def resolve_session_path(environ: Mapping[str, str], base_dir: Path = PROJECT_ROOT) -> str:
    """
    Pick where the client keeps its session data.

    Uses the TEMP directory when the environment provides one, otherwise a
    directory next to the project.
    """
    temp_dir = environ.get("TEMP")
    if temp_dir:
        return os.path.join(temp_dir, SESSION_DIR_NAME)
    return os.path.join(str(base_dir), LOCAL_SESSION_DIR_NAME)


def _env_flag(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() not in ("0", "false", "no", "off")


def _env_number(environ: Mapping[str, str], name: str, default, cast):
    raw = environ.get(name)
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


class ServerSettings(BaseModel):
    """Runtime settings for the WhatsApp server."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    session_path: str = Field(default_factory=lambda: resolve_session_path({}))
    client_id: str = DEFAULT_CLIENT_ID
    executable_path: Optional[str] = None
    headless: bool = True
    web_version_url: Optional[str] = DEFAULT_WEB_VERSION_URL
    log_level: str = "INFO"

    # Reconnect backoff after a disconnect
    reconnect_max_attempts: int = 5
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 30.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerSettings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read from, defaults to os.environ

        Returns:
            ServerSettings instance
        """
        env = os.environ if environ is None else environ

        return cls(
            host=env.get("HOST") or DEFAULT_HOST,
            port=_env_number(env, "PORT", DEFAULT_PORT, int),
            session_path=resolve_session_path(env),
            client_id=env.get("WHATSAPP_CLIENT_ID") or DEFAULT_CLIENT_ID,
            executable_path=env.get("PUPPETEER_EXECUTABLE_PATH") or None,
            headless=_env_flag(env.get("WHATSAPP_HEADLESS"), True),
            web_version_url=env.get("WHATSAPP_WEB_VERSION_URL", DEFAULT_WEB_VERSION_URL) or None,
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
            reconnect_max_attempts=_env_number(env, "RECONNECT_MAX_ATTEMPTS", 5, int),
            reconnect_base_delay=_env_number(env, "RECONNECT_BASE_DELAY", 1.0, float),
            reconnect_max_delay=_env_number(env, "RECONNECT_MAX_DELAY", 30.0, float),
        )
