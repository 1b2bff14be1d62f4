"""
Shared fixtures: a fake WhatsApp Web client and an app wired to it.
"""

import pytest
from fastapi.testclient import TestClient

from ssi_whatsapp.session_manager import ConnectionManager, ReconnectPolicy
from whatsapp_server import create_app


class FakeWhatsAppClient:
    """Records calls and lets tests emit lifecycle events by hand."""

    def __init__(self):
        self.listeners = {}
        self.initialize_calls = 0
        self.destroy_calls = 0
        self.logout_calls = 0
        self.sent = []
        self.init_errors = []
        self.logout_error = None
        self.send_error = None

    def on(self, event, handler):
        self.listeners.setdefault(event, []).append(handler)

    def emit(self, event, *args):
        for handler in self.listeners.get(event, []):
            handler(*args)

    async def initialize(self):
        self.initialize_calls += 1
        if self.init_errors:
            raise self.init_errors.pop(0)

    async def destroy(self):
        self.destroy_calls += 1

    async def logout(self):
        self.logout_calls += 1
        if self.logout_error:
            raise self.logout_error

    async def send_message(self, chat_id, content):
        if self.send_error:
            raise self.send_error
        self.sent.append((chat_id, content))


@pytest.fixture
def fake_client():
    return FakeWhatsAppClient()


@pytest.fixture
def manager(fake_client):
    policy = ReconnectPolicy(max_attempts=3, base_delay=0, max_delay=0)
    return ConnectionManager(fake_client, reconnect_policy=policy, show_qr=False)


@pytest.fixture
def app(manager):
    return create_app(manager)


@pytest.fixture
def http(app):
    """Test client without lifespan, so the fake client is never started."""
    return TestClient(app)
