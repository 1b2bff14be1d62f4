"""
Tests for environment driven settings.
"""

import os

from ssi_whatsapp.config import (
    ServerSettings,
    resolve_session_path,
    PROJECT_ROOT,
    DEFAULT_WEB_VERSION_URL,
)


def test_defaults_without_environment():
    settings = ServerSettings.from_env({})

    assert settings.port == 3001
    assert settings.host == "0.0.0.0"
    assert settings.client_id == "ssi-session"
    assert settings.session_path == os.path.join(str(PROJECT_ROOT), ".wwebjs_auth")
    assert settings.executable_path is None
    assert settings.headless is True
    assert settings.web_version_url == DEFAULT_WEB_VERSION_URL


def test_temp_directory_hosts_session():
    settings = ServerSettings.from_env({"TEMP": "/var/tmp"})
    assert settings.session_path == os.path.join("/var/tmp", "ssi_whatsapp_auth")


def test_environment_overrides():
    settings = ServerSettings.from_env({
        "PORT": "8080",
        "PUPPETEER_EXECUTABLE_PATH": "/usr/bin/chromium",
        "WHATSAPP_HEADLESS": "false",
        "LOG_LEVEL": "debug",
        "RECONNECT_MAX_ATTEMPTS": "2",
        "RECONNECT_BASE_DELAY": "0.5",
    })

    assert settings.port == 8080
    assert settings.executable_path == "/usr/bin/chromium"
    assert settings.headless is False
    assert settings.log_level == "DEBUG"
    assert settings.reconnect_max_attempts == 2
    assert settings.reconnect_base_delay == 0.5


def test_invalid_port_falls_back_to_default():
    assert ServerSettings.from_env({"PORT": "eighty"}).port == 3001


def test_empty_web_version_url_disables_pinning():
    assert ServerSettings.from_env({"WHATSAPP_WEB_VERSION_URL": ""}).web_version_url is None


def test_resolve_session_path_uses_base_dir(tmp_path):
    assert resolve_session_path({}, base_dir=tmp_path) == os.path.join(str(tmp_path), ".wwebjs_auth")
