#!/usr/bin/env python3
"""
SSI WhatsApp Server Runner

Starts the HTTP server; the WhatsApp Web client is initialized in the
background by the app lifespan, so the API answers while pairing is pending.
"""

import os
import sys
import asyncio
import logging
import signal
from pathlib import Path

import uvicorn

# Importing the app also loads .env
from whatsapp_server import app
from ssi_whatsapp.config import ServerSettings


def setup_logging(settings: ServerSettings):
    """Configure logging for the application."""
    handlers = [logging.StreamHandler()]

    log_file = os.getenv("LOG_FILE")
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )

    # Reduce noise from some libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def create_directories(settings: ServerSettings):
    """Create the session storage directory."""
    Path(settings.session_path).mkdir(parents=True, exist_ok=True)


def print_startup_info(settings: ServerSettings):
    """Print startup information and instructions."""
    print("🚀 SSI WhatsApp Server")
    print("=" * 50)
    print(f"📡 Server running on port {settings.port}")
    print(f"🔗 Health check: http://localhost:{settings.port}/health")
    print(f"📱 QR code:      http://localhost:{settings.port}/api/get-qr")
    print(f"💾 Session data: {settings.session_path}")
    if settings.executable_path:
        print(f"🌐 Browser:      {settings.executable_path}")
    print("=" * 50)


async def main():
    """Main application entry point."""
    settings = ServerSettings.from_env()

    setup_logging(settings)
    logger = logging.getLogger(__name__)

    create_directories(settings)
    print_startup_info(settings)

    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        access_log=True
    )
    server = uvicorn.Server(config)

    # Setup signal handlers for graceful shutdown
    def signal_handler(signum, frame):
        logger.info("Received shutdown signal, stopping server...")
        server.should_exit = True

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        logger.info(f"Starting WhatsApp server on {settings.host}:{settings.port}")
        await server.serve()
    finally:
        logger.info("WhatsApp server stopped")


def cli():
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n👋 Shutting down gracefully...")
    except Exception as e:
        print(f"❌ Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
