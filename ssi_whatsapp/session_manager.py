"""
Connection Session Management

Relays WhatsApp Web client events into the connection state the HTTP layer
reads: the readiness flag, the latest pairing QR payload and an explicit
connection state. Also owns client start-up and reconnecting after a
disconnect.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel

from .formatters import render_qr, to_chat_id, DEFAULT_COUNTRY_CODE

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Possible connection states."""
    UNINITIALIZED = "uninitialized"
    PAIRING = "pairing"
    READY = "ready"
    FAULTED = "faulted"


class ReconnectPolicy(BaseModel):
    """Bounded exponential backoff used after a disconnect."""

    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 30.0

    def delay(self, attempt: int) -> float:
        """
        Seconds to wait before a reconnect attempt.

        Args:
            attempt: Zero based attempt number

        Returns:
            Delay in seconds
        """
        return min(self.base_delay * (2 ** attempt), self.max_delay)


class ConnectionSnapshot(BaseModel):
    """Read-only view of the connection for API responses."""

    ready: bool
    qr: Optional[str] = None
    state: ConnectionState


class ConnectionManager:
    """
    Tracks the WhatsApp Web connection.

    All state changes happen on the event loop that runs both the client
    callbacks and the HTTP handlers, so no locking is needed.
    """

    def __init__(
        self,
        client,
        reconnect_policy: Optional[ReconnectPolicy] = None,
        country_code: str = DEFAULT_COUNTRY_CODE,
        show_qr: bool = True
    ):
        """
        Initialize the connection manager.

        Args:
            client: WhatsApp Web client emitting lifecycle events
            reconnect_policy: Backoff used after a disconnect
            country_code: Prefix applied to ten digit phone numbers
            show_qr: Print pairing QR codes to the console
        """
        self.client = client
        self.reconnect_policy = reconnect_policy or ReconnectPolicy()
        self.country_code = country_code
        self.show_qr = show_qr

        self.ready = False
        self.latest_qr: Optional[str] = None
        self.state = ConnectionState.UNINITIALIZED
        self.last_error: Optional[str] = None

        self._init_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

        client.on("qr", self.on_qr)
        client.on("authenticated", self.on_authenticated)
        client.on("ready", self.on_ready)
        client.on("auth_failure", self.on_auth_failure)
        client.on("disconnected", self.on_disconnected)

    @property
    def qr(self) -> Optional[str]:
        """Pairing payload, hidden once the session is ready."""
        return None if self.ready else self.latest_qr

    def snapshot(self) -> ConnectionSnapshot:
        return ConnectionSnapshot(ready=self.ready, qr=self.qr, state=self.state)

    # Client events

    def on_qr(self, qr: str):
        self.latest_qr = qr
        self.state = ConnectionState.PAIRING
        logger.info("New pairing QR code received")

        if self.show_qr:
            print("--- SCAN THE QR CODE BELOW ---")
            render_qr(qr)

    def on_authenticated(self):
        logger.info("WhatsApp session authenticated")

    def on_ready(self):
        self.ready = True
        self.latest_qr = None
        self.state = ConnectionState.READY
        self.last_error = None
        logger.info("✅ WhatsApp is ONLINE")

    def on_auth_failure(self, message: str):
        self.ready = False
        self.state = ConnectionState.FAULTED
        self.last_error = message
        logger.error(f"❌ Authentication failure: {message}")

    def on_disconnected(self, reason: str):
        self.ready = False
        self.state = ConnectionState.UNINITIALIZED
        logger.warning(f"❌ Client was disconnected: {reason}")

        if self._reconnect_task and not self._reconnect_task.done():
            logger.info("Reconnect already in progress")
            return

        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect())

    # Lifecycle

    async def start(self) -> asyncio.Task:
        """
        Start client initialization in the background.

        Returns:
            The initialization task; it never raises
        """
        logger.info("🚀 Initializing WhatsApp engine...")
        self._init_task = asyncio.create_task(self._initialize())
        return self._init_task

    async def _initialize(self) -> bool:
        try:
            await self.client.initialize()
            return True
        except Exception as e:
            logger.error(f"Init Error: {e}")
            self.state = ConnectionState.FAULTED
            self.last_error = str(e)
            return False

    async def _reconnect(self) -> bool:
        policy = self.reconnect_policy

        for attempt in range(policy.max_attempts):
            delay = policy.delay(attempt)
            if delay > 0:
                logger.info(f"Reconnecting in {delay:.1f}s (attempt {attempt + 1}/{policy.max_attempts})")
                await asyncio.sleep(delay)

            try:
                await self.client.destroy()
                await self.client.initialize()
            except Exception as e:
                logger.error(f"Reconnect attempt {attempt + 1} failed: {e}")
                self.last_error = str(e)
                continue

            logger.info("WhatsApp client reinitialized")
            return True

        logger.error(f"Giving up after {policy.max_attempts} reconnect attempts")
        self.state = ConnectionState.FAULTED
        return False

    async def wait_for_initialization(self) -> Optional[bool]:
        """Wait for a pending initialization, returning whether it succeeded."""
        if self._init_task is None:
            return None
        return await self._init_task

    async def wait_for_reconnect(self) -> Optional[bool]:
        """Wait for a pending reconnect, returning whether it succeeded."""
        if self._reconnect_task is None:
            return None
        return await self._reconnect_task

    async def stop(self):
        """Cancel background work and close the client."""
        for task in (self._init_task, self._reconnect_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        try:
            await self.client.destroy()
        except Exception as e:
            logger.error(f"Error closing WhatsApp client: {e}")

        self.ready = False

    # Commands

    async def logout(self):
        """
        Log out the linked device and forget the pairing state.

        The client is started again in the background so a new pairing QR
        code becomes available.
        """
        await self.client.logout()
        self.ready = False
        self.latest_qr = None
        self.state = ConnectionState.UNINITIALIZED
        logger.info("Logged out of WhatsApp")

        await self.start()

    async def send_message(self, phone: Union[str, int], message: str) -> str:
        """
        Send a text message to a phone number.

        Args:
            phone: Phone number in any common notation
            message: Message text

        Returns:
            The recipient address the message was sent to
        """
        chat_id = to_chat_id(phone, self.country_code)
        await self.client.send_message(chat_id, message)
        logger.info(f"Message sent to {chat_id}")
        return chat_id
