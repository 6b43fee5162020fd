"""
REST Status API for the LAN Bridge

Read-only endpoints for checking on a running bridge:
- GET /         basic info
- GET /status   summary (pydantic model)
- GET /stats    full per-component statistics
- GET /config   effective configuration

Served with uvicorn alongside the relays, in the same event loop.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from .. import __version__

logger = logging.getLogger(__name__)

# Global reference to the bridge (set when app is created)
_bridge = None


# === Pydantic Models ===

class BridgeStatus(BaseModel):
    """Bridge status response."""
    running: bool
    display_name: str
    remote: str
    announcer_running: bool
    announcements_sent: int
    datagram_sessions: int
    probes_answered: int
    stream_connections: int
    active_streams: int


# === API Creation ===

def create_app(bridge=None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        bridge: LanBridge instance to report on

    Returns:
        FastAPI application
    """
    global _bridge
    _bridge = bridge

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown."""
        logger.info("Status API starting...")
        yield
        logger.info("Status API stopping...")

    app = FastAPI(
        title="LAN Bridge Status API",
        description="Status of a LAN discovery bridge to a remote Bedrock server",
        version=__version__,
        lifespan=lifespan,
    )

    def require_bridge():
        if not _bridge:
            raise HTTPException(status_code=503, detail="Bridge not initialized")
        return _bridge

    # === Endpoints ===

    @app.get("/", tags=["General"])
    async def root():
        """API root - basic info."""
        return {
            "name": "lanbridge",
            "version": __version__,
            "status": "running" if _bridge and _bridge.is_running else "not running"
        }

    @app.get("/status", response_model=BridgeStatus, tags=["Bridge"])
    async def get_status():
        """Get bridge status."""
        stats = require_bridge().get_stats()

        return BridgeStatus(
            running=stats['running'],
            display_name=stats['display_name'],
            remote=stats['remote'],
            announcer_running=stats['announcer']['running'],
            announcements_sent=stats['announcer']['announcements_sent'],
            datagram_sessions=stats['datagram']['sessions'],
            probes_answered=stats['datagram']['probes_answered'],
            stream_connections=stats['stream']['connections'],
            active_streams=stats['stream']['active'],
        )

    @app.get("/stats", tags=["Bridge"])
    async def get_stats():
        """Get detailed bridge statistics."""
        return require_bridge().get_stats()

    @app.get("/config", tags=["Bridge"])
    async def get_config():
        """Get the effective configuration."""
        return require_bridge().config.public_dict()

    return app


async def run_api_server(bridge, host: str = "127.0.0.1", port: int = 8080):
    """
    Run the API server.

    Args:
        bridge: LanBridge instance
        host: Host to bind to
        port: Port to listen on
    """
    import uvicorn

    app = create_app(bridge)

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="warning",
    )
    server = uvicorn.Server(config)
    await server.serve()
