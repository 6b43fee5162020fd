"""
LAN Broadcast Announcer

Design Decision: Broadcast vs Multicast
========================================

Options:
1. UDP Broadcast (255.255.255.255 or subnet broadcast)
   - What Bedrock clients listen for on the discovery port
   - Doesn't cross routers, which is fine: the point is to look local

2. UDP Multicast
   - Clients don't join any group, so they would never see it

Decision: UDP broadcast to the configured broadcast address
- One socket with SO_BROADCAST, opened once
- The broadcast address is resolved once at startup, never per tick
- A fresh announcement every `broadcast_interval` seconds
- Send errors are logged and the loop keeps going; an interface can
  disappear for a moment (Wi-Fi roam, DHCP renew) and come back
- Failing to resolve the address or open the socket stops only the
  announcer; the relays keep working for clients that connect by address
"""

import asyncio
import socket
import logging
from typing import Optional, Tuple

from ..config import AddressConfig
from .packet import encode_announcement

logger = logging.getLogger(__name__)


class BroadcastAnnouncer:
    """
    Periodically broadcasts the spoofed presence announcement.
    """

    def __init__(self, config: AddressConfig):
        """
        Initialize the announcer.

        Args:
            config: Bridge configuration (broadcast target, interval and
                    the fields that go into the announcement)
        """
        self.config = config

        self._socket: Optional[socket.socket] = None
        self._address: Optional[Tuple[str, int]] = None
        self._announce_task: Optional[asyncio.Task] = None
        self._running = False

        # Statistics
        self.announcements_sent = 0
        self.send_failures = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def target(self):
        return (self.config.broadcast_address, self.config.broadcast_port)

    async def start(self):
        """
        Start announcing.

        Never raises: if the broadcast address cannot be resolved or the
        socket cannot be opened the error is logged and the announcer
        stays stopped.
        """
        if self._running:
            return

        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(
                self.config.broadcast_address,
                self.config.broadcast_port,
                family=socket.AF_INET,
                type=socket.SOCK_DGRAM,
            )
        except OSError as e:
            logger.error(
                f"Cannot resolve broadcast address {self.config.broadcast_address}, "
                f"LAN announcements disabled: {e}"
            )
            return

        try:
            self._socket = self._open_socket()
        except OSError as e:
            logger.error(f"Failed to open broadcast socket, LAN announcements disabled: {e}")
            self._close_socket()
            return

        self._address = infos[0][4]
        self._running = True
        self._announce_task = asyncio.create_task(self._announce_loop())

        logger.info(
            f"Announcing '{self.config.display_name}' to "
            f"{self.target[0]}:{self.target[1]} every {self.config.broadcast_interval}s"
        )

    def _open_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise
        return sock

    async def stop(self):
        """Stop announcing."""
        was_running = self._running
        self._running = False

        if self._announce_task:
            self._announce_task.cancel()
            try:
                await self._announce_task
            except asyncio.CancelledError:
                pass
            self._announce_task = None

        self._close_socket()
        if was_running:
            logger.info("Broadcast announcer stopped")

    def _close_socket(self):
        if self._socket:
            self._socket.close()
            self._socket = None
        self._address = None

    async def _announce_loop(self):
        """Announce, then sleep, until cancelled."""
        while self._running:
            await self.announce()
            await asyncio.sleep(self.config.broadcast_interval)

    async def announce(self) -> bool:
        """
        Send one announcement.

        Returns True if it was handed to the network.
        """
        if not self._socket or not self._address:
            return False

        packet = encode_announcement(self.config)
        loop = asyncio.get_running_loop()

        try:
            await loop.sock_sendto(self._socket, packet, self._address)
        except OSError as e:
            self.send_failures += 1
            logger.warning(f"Error broadcasting LAN announcement: {e}")
            return False

        self.announcements_sent += 1
        logger.debug(f"Broadcast announcement ({len(packet)} bytes) to {self._address}")
        return True

    def get_stats(self) -> dict:
        """Get announcer statistics."""
        return {
            'running': self._running,
            'announcements_sent': self.announcements_sent,
            'send_failures': self.send_failures,
            'target': f"{self.target[0]}:{self.target[1]}",
            'interval': self.config.broadcast_interval,
        }
