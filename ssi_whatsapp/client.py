"""
WhatsApp Web Client

Drives WhatsApp Web in a headless Chromium through Playwright and exposes
the small surface the server needs: lifecycle events (qr, authenticated,
ready, auth_failure, disconnected) and async initialize / destroy / logout /
send_message primitives.

Session credentials live in a persistent browser profile owned by LocalAuth.
"""

import re
import shutil
import asyncio
import logging
from contextlib import suppress
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
from urllib.parse import quote

import aiofiles
import aiohttp
from playwright.async_api import async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from pydantic import BaseModel

logger = logging.getLogger(__name__)

WHATSAPP_WEB_URL = "https://web.whatsapp.com/"

# Main page and the send deep link both get the pinned web version
WEB_PAGE_PATTERN = re.compile(r"^https://web\.whatsapp\.com/(send)?(\?.*)?$")

QR_SELECTOR = "div[data-ref]"

CHAT_LIST_SELECTORS = [
    'div[aria-label="Chat list"]',
    'div[data-testid="chat-list"]',
    'div[data-testid="chat-list-search"]',
    'header[data-testid="chatlist-header"]',
]

COMPOSE_BOX_SELECTOR = 'footer div[contenteditable="true"]'

MENU_BUTTON_SELECTOR = '#side header div[role="button"][aria-label="Menu"], span[data-icon="menu"]'
LOGOUT_ITEM_SELECTOR = 'div[role="button"][aria-label="Log out"], li:has-text("Log out")'
LOGOUT_CONFIRM_SELECTOR = 'div[role="dialog"] button:has-text("Log out")'

DEFAULT_BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--no-zygote",
    "--disable-gpu",
    "--disable-features=site-per-process",
]

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

EVENTS = ("qr", "authenticated", "ready", "auth_failure", "disconnected")


class WhatsAppClientError(Exception):
    """Raised when a WhatsApp Web operation fails."""


class LocalAuth(BaseModel):
    """Keeps the session in a browser profile under data_path."""

    client_id: str = "ssi-session"
    data_path: str = ".wwebjs_auth"

    @property
    def profile_dir(self) -> Path:
        return Path(self.data_path) / f"session-{self.client_id}"

    def logout(self):
        """Remove the stored session."""
        shutil.rmtree(self.profile_dir, ignore_errors=True)
        logger.info(f"Removed session data at {self.profile_dir}")


class WebVersionCache(BaseModel):
    """
    Pins the WhatsApp Web build served to the browser.

    The HTML is fetched from remote_path and kept under cache_dir so a later
    start can still use it when the remote is unreachable.
    """

    remote_path: str
    cache_dir: str

    @property
    def cache_file(self) -> Path:
        return Path(self.cache_dir) / "index.html"

    async def _fetch(self) -> str:
        timeout = aiohttp.ClientTimeout(total=30)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(self.remote_path) as response:
                if response.status >= 400:
                    raise WhatsAppClientError(
                        f"Web version fetch failed: {response.status} {self.remote_path}"
                    )
                return await response.text()

    async def load(self) -> Optional[str]:
        """
        Get the pinned HTML.

        Returns:
            HTML text, or None when neither the remote nor the cache has it
        """
        try:
            html = await self._fetch()
        except (aiohttp.ClientError, asyncio.TimeoutError, WhatsAppClientError) as e:
            logger.warning(f"Could not fetch web version from {self.remote_path}: {e}")
        else:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self.cache_file, "w", encoding="utf-8") as f:
                await f.write(html)
            return html

        if self.cache_file.exists():
            async with aiofiles.open(self.cache_file, "r", encoding="utf-8") as f:
                return await f.read()
        return None

    async def install(self, page) -> bool:
        """Route WhatsApp Web page loads to the pinned HTML."""
        html = await self.load()
        if html is None:
            logger.warning("No pinned web version available, using the live one")
            return False

        async def fulfill(route):
            await route.fulfill(status=200, content_type="text/html", body=html)

        await page.route(WEB_PAGE_PATTERN, fulfill)
        return True


class WhatsAppWebClient:
    """
    Headless WhatsApp Web session.

    Listeners registered with on() receive the lifecycle events; they may be
    plain functions or coroutine functions.
    """

    def __init__(
        self,
        auth: LocalAuth,
        web_version_cache: Optional[WebVersionCache] = None,
        headless: bool = True,
        executable_path: Optional[str] = None,
        browser_args: Optional[List[str]] = None,
        poll_interval: float = 1.0,
        auth_timeout: float = 60.0,
        send_timeout: float = 30.0,
    ):
        """
        Initialize the client.

        Args:
            auth: Where the session profile is stored
            web_version_cache: Pinned WhatsApp Web build, None for the live site
            headless: Run Chromium without a window
            executable_path: Browser binary override
            browser_args: Chromium command line flags
            poll_interval: Seconds between page state checks
            auth_timeout: Seconds to wait for a QR code or the chat list
            send_timeout: Seconds to wait for a chat to open
        """
        self.auth = auth
        self.web_version_cache = web_version_cache
        self.headless = headless
        self.executable_path = executable_path
        self.browser_args = list(browser_args or DEFAULT_BROWSER_ARGS)
        self.poll_interval = poll_interval
        self.auth_timeout = auth_timeout
        self.send_timeout = send_timeout

        self._listeners: Dict[str, List[Callable[..., Any]]] = {event: [] for event in EVENTS}
        self._playwright = None
        self.context = None
        self.page = None
        self._watch_task: Optional[asyncio.Task] = None
        self._page_lock = asyncio.Lock()
        self._ready = False
        self._closing = False
        self._listener_tasks: Set[asyncio.Future] = set()

    def on(self, event: str, handler: Callable[..., Any]):
        """Register a listener for a lifecycle event."""
        if event not in self._listeners:
            raise ValueError(f"Unknown event: {event}")
        self._listeners[event].append(handler)

    def emit(self, event: str, *args: Any):
        """Call every listener of an event; coroutines are scheduled on the loop."""
        for handler in list(self._listeners.get(event, [])):
            try:
                result = handler(*args)
            except Exception as e:
                logger.error(f"Error in {event} listener: {e}", exc_info=True)
                continue

            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(result)
                self._listener_tasks.add(task)
                task.add_done_callback(self._on_listener_done)

    def _on_listener_done(self, task: asyncio.Future):
        self._listener_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Error in event listener: {error}", exc_info=error)

    async def initialize(self):
        """Launch the browser, open WhatsApp Web and start watching the page."""
        if self.context is not None:
            raise WhatsAppClientError("Client is already initialized")

        logger.info(f"Launching browser with profile {self.auth.profile_dir}")

        try:
            self._playwright = await async_playwright().start()
            self.context = await self._playwright.chromium.launch_persistent_context(
                user_data_dir=str(self.auth.profile_dir),
                headless=self.headless,
                executable_path=self.executable_path,
                args=self.browser_args,
                user_agent=DEFAULT_USER_AGENT,
            )
            self.page = self.context.pages[0] if self.context.pages else await self.context.new_page()

            if self.web_version_cache:
                await self.web_version_cache.install(self.page)

            await self.page.goto(WHATSAPP_WEB_URL, wait_until="domcontentloaded")
        except Exception as e:
            await self.destroy()
            if isinstance(e, WhatsAppClientError):
                raise
            raise WhatsAppClientError(f"Failed to open WhatsApp Web: {e}") from e

        self.page.on("close", self._on_page_close)
        self._watch_task = asyncio.create_task(self._watch_page())

    async def destroy(self):
        """Stop watching the page and close the browser."""
        self._closing = True
        self._ready = False
        await self._stop_watching()

        try:
            if self.context is not None:
                await self.context.close()
            if self._playwright is not None:
                await self._playwright.stop()
        finally:
            self.context = None
            self.page = None
            self._playwright = None
            self._closing = False

    async def _stop_watching(self):
        task, self._watch_task = self._watch_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    async def logout(self):
        """
        Unlink this device from the phone and remove the local session.

        Uses WhatsApp Web's own "Log out" menu action when a session is
        linked, then wipes the browser storage and the profile directory.
        No disconnected event is emitted for a requested logout.
        """
        if self.page is None:
            raise WhatsAppClientError("Client is not initialized")

        linked = self._ready
        await self._stop_watching()

        async with self._page_lock:
            if linked:
                await self._log_out_of_web()
            await self.page.evaluate("() => window.localStorage.clear()")

        await self.destroy()
        self.auth.logout()

    async def send_message(self, chat_id: str, content: str):
        """
        Send a text message.

        Args:
            chat_id: Recipient address, "<digits>@c.us"
            content: Message text
        """
        if self.page is None:
            raise WhatsAppClientError("Client is not initialized")

        phone = chat_id.split("@", 1)[0]
        url = f"{WHATSAPP_WEB_URL}send?phone={phone}&text={quote(content)}"

        async with self._page_lock:
            logger.info(f"Opening chat {chat_id}")
            await self.page.goto(url, wait_until="domcontentloaded")

            try:
                compose_box = await self.page.wait_for_selector(
                    COMPOSE_BOX_SELECTOR, timeout=self.send_timeout * 1000
                )
            except PlaywrightTimeoutError as e:
                raise WhatsAppClientError(
                    f"Could not open chat {chat_id}, the number may not be on WhatsApp"
                ) from e

            await compose_box.press("Enter")
            # Let the outgoing message leave the compose box before the next navigation
            await self.page.wait_for_timeout(1000)

        logger.info(f"Message sent to {chat_id}")

    async def _log_out_of_web(self):
        timeout = self.send_timeout * 1000
        try:
            await self.page.click(MENU_BUTTON_SELECTOR, timeout=timeout)
            await self.page.click(LOGOUT_ITEM_SELECTOR, timeout=timeout)
            await self.page.click(LOGOUT_CONFIRM_SELECTOR, timeout=timeout)
            # WhatsApp Web shows a fresh QR code once the device is unlinked
            await self.page.wait_for_selector(QR_SELECTOR, timeout=timeout)
        except PlaywrightError as e:
            raise WhatsAppClientError(f"Failed to log out of WhatsApp Web: {e}") from e

        logger.info("Device unlinked from WhatsApp")

    def _on_page_close(self, _page):
        if self._closing:
            return
        self._ready = False
        self.emit("disconnected", "NAVIGATION")

    async def _read_page_state(self) -> Tuple[Optional[str], Optional[str]]:
        page = self.page
        if page is None:
            return None, None

        try:
            for selector in CHAT_LIST_SELECTORS:
                if await page.query_selector(selector):
                    return "ready", None

            qr_element = await page.query_selector(QR_SELECTOR)
            if qr_element:
                payload = await qr_element.get_attribute("data-ref")
                if payload:
                    return "qr", payload
        except PlaywrightError as e:
            # The page is mid-navigation
            logger.debug(f"Page state unavailable: {e}")

        return None, None

    async def _watch_page(self):
        loop = asyncio.get_running_loop()
        started = loop.time()
        last_qr = None
        auth_failed = False

        while True:
            state, payload = await self._read_page_state()

            if state == "ready":
                if not self._ready:
                    self._ready = True
                    self.emit("authenticated")
                    self.emit("ready")

            elif state == "qr":
                if self._ready:
                    self._ready = False
                    self.emit("disconnected", "LOGOUT")
                    return
                if payload != last_qr:
                    last_qr = payload
                    self.emit("qr", payload)

            elif not self._ready and last_qr is None and not auth_failed:
                if loop.time() - started > self.auth_timeout:
                    auth_failed = True
                    self.emit("auth_failure", "Timed out waiting for WhatsApp Web to authenticate")

            await asyncio.sleep(self.poll_interval)
