"""
SSI WhatsApp Server

HTTP façade around a WhatsApp Web session. Exposes status and QR polling
for pairing, logout and a send-message endpoint, and relays the client's
lifecycle events into the connection state those endpoints read.
"""

import os
import logging
from typing import Optional, Union
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse
from pydantic import BaseModel
from dotenv import load_dotenv

from ssi_whatsapp.config import ServerSettings
from ssi_whatsapp.client import WhatsAppWebClient, LocalAuth, WebVersionCache
from ssi_whatsapp.session_manager import ConnectionManager, ReconnectPolicy
from ssi_whatsapp.formatters import render_status_page

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


class SendMessageRequest(BaseModel):
    """Body of POST /api/send."""
    phone: Union[str, int]
    message: str


def build_client(settings: ServerSettings) -> WhatsAppWebClient:
    """Create the WhatsApp Web client described by the settings."""
    web_version_cache = None
    if settings.web_version_url:
        web_version_cache = WebVersionCache(
            remote_path=settings.web_version_url,
            cache_dir=os.path.join(settings.session_path, ".wwebjs_cache")
        )

    return WhatsAppWebClient(
        auth=LocalAuth(client_id=settings.client_id, data_path=settings.session_path),
        web_version_cache=web_version_cache,
        headless=settings.headless,
        executable_path=settings.executable_path
    )


def build_manager(settings: ServerSettings) -> ConnectionManager:
    """Create the connection manager and its client."""
    policy = ReconnectPolicy(
        max_attempts=settings.reconnect_max_attempts,
        base_delay=settings.reconnect_base_delay,
        max_delay=settings.reconnect_max_delay
    )
    return ConnectionManager(build_client(settings), reconnect_policy=policy)


def create_app(
    manager: Optional[ConnectionManager] = None,
    settings: Optional[ServerSettings] = None
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        manager: Connection manager to serve, built from settings when omitted
        settings: Server settings, read from the environment when omitted
    """
    if manager is None:
        manager = build_manager(settings or ServerSettings.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start the WhatsApp client without waiting for it to connect."""
        await manager.start()
        yield
        logger.info("Shutting down WhatsApp server...")
        await manager.stop()
        logger.info("WhatsApp server shutdown complete")

    app = FastAPI(
        title="SSI WhatsApp Server",
        description="REST façade for a WhatsApp Web session",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.manager = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"]
    )

    @app.get("/health", response_class=PlainTextResponse)
    async def health_check():
        """Liveness check, independent of the WhatsApp session."""
        return PlainTextResponse("OK")

    @app.get("/api/status")
    async def get_status():
        return {"success": True, "ready": manager.ready}

    @app.get("/api/get-qr")
    async def get_qr():
        """
        Latest pairing QR payload.

        The payload is null once the session is ready, and before the first
        QR code has been generated.
        """
        snapshot = manager.snapshot()
        return {"success": True, "ready": snapshot.ready, "qr": snapshot.qr}

    @app.post("/api/logout")
    async def logout():
        try:
            await manager.logout()
        except Exception as e:
            logger.error(f"Error logging out: {e}")
            return JSONResponse(status_code=500, content={"error": str(e)})

        return {"success": True, "message": "Logged out successfully"}

    @app.post("/api/send")
    async def send_message(request: Request):
        """
        Send a text message.

        Expects {"phone": ..., "message": ...}. Ten digit numbers get the
        default country code. Answers 503 while WhatsApp is not ready.
        """
        if not manager.ready:
            return JSONResponse(status_code=503, content={"error": "WhatsApp not ready"})

        try:
            payload = SendMessageRequest.model_validate(await request.json())
        except ValueError as e:
            return JSONResponse(status_code=400, content={"error": f"Invalid request body: {e}"})

        try:
            await manager.send_message(payload.phone, payload.message)
        except Exception as e:
            logger.error(f"Error sending message: {e}")
            return JSONResponse(status_code=500, content={"error": str(e)})

        return {"success": True}

    @app.get("/", response_class=HTMLResponse)
    async def root():
        """Status page for operators."""
        return HTMLResponse(render_status_page(manager.ready))

    return app


# Create the app
app = create_app()


if __name__ == "__main__":
    settings = ServerSettings.from_env()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger.info(f"Starting WhatsApp server on {settings.host}:{settings.port}")

    uvicorn.run(
        "whatsapp_server:app",
        host=settings.host,
        port=settings.port,
        log_level="info"
    )
