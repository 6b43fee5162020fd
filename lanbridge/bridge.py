"""
LAN Bridge - Main Controller

Orchestrates the three running components:
- Datagram relay (UDP listener + discovery probe short-circuit)
- Stream relay (TCP listener)
- Broadcast announcer (spoofed LAN presence)

The components share nothing but the immutable AddressConfig.
"""

import asyncio
import logging
from typing import Optional

from .config import AddressConfig
from .discovery import BroadcastAnnouncer
from .relay import DatagramRelay, StreamRelay

logger = logging.getLogger(__name__)


class BridgeStartupError(Exception):
    """A listening socket could not be bound. The process should exit."""


class LanBridge:
    """
    Makes one remote server look like a server on the local network.

    Usage:
        bridge = LanBridge(config)
        await bridge.start()
        ...
        await bridge.stop()
    """

    def __init__(self, config: AddressConfig):
        """
        Initialize the bridge.

        Args:
            config: Bridge configuration, shared read-only by all components
        """
        self.config = config

        self.datagram_relay = DatagramRelay(config)
        self.stream_relay = StreamRelay(config)
        self.announcer = BroadcastAnnouncer(config)

        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        """
        Start the bridge.

        Listeners are bound first; if either fails everything started so
        far is stopped and BridgeStartupError is raised. The announcer is
        started last and may fail on its own without affecting the relays.
        """
        if self._running:
            return

        host, port = self.config.bind
        logger.info(
            f"Starting LAN bridge for {self.config.remote_host}:{self.config.remote_port} "
            f"as '{self.config.display_name}'"
        )

        try:
            await self.datagram_relay.start()
        except OSError as e:
            raise BridgeStartupError(f"Cannot bind UDP {host}:{port}: {e}") from e

        try:
            await self.stream_relay.start()
        except OSError as e:
            await self.datagram_relay.stop()
            raise BridgeStartupError(f"Cannot bind TCP {host}:{port}: {e}") from e

        await self.announcer.start()

        self._running = True

        logger.info("LAN bridge started")
        logger.info(f"  Listening: {host}:{port} (UDP + TCP)")
        logger.info(f"  Remote: {self.config.remote_host}:{self.config.remote_port}")
        logger.info(f"  Announcer: {'on' if self.announcer.is_running else 'off'}")

    async def stop(self):
        """Stop the bridge."""
        if not self._running:
            return

        logger.info("Stopping LAN bridge...")

        self._running = False

        await self.announcer.stop()
        await self.stream_relay.stop()
        await self.datagram_relay.stop()

        logger.info("LAN bridge stopped")

    def get_stats(self) -> dict:
        """Get complete bridge statistics."""
        return {
            'running': self._running,
            'remote': f"{self.config.remote_host}:{self.config.remote_port}",
            'display_name': self.config.display_name,
            'datagram': self.datagram_relay.get_stats(),
            'stream': self.stream_relay.get_stats(),
            'announcer': self.announcer.get_stats(),
        }


async def run_bridge(config: AddressConfig, stop_event: Optional[asyncio.Event] = None):
    """
    Run a bridge until `stop_event` is set (or forever).

    Raises BridgeStartupError if the listeners cannot be bound.
    """
    bridge = LanBridge(config)
    await bridge.start()

    try:
        if stop_event is None:
            stop_event = asyncio.Event()
        await stop_event.wait()
    finally:
        await bridge.stop()
