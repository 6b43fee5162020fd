"""
Datagram Relay

Design Decision: One Outbound Socket per Inbound Datagram
=========================================================

Options Considered:
1. One long-lived upstream socket per client address (NAT table)
   - Fewer sockets, keeps the remote's view of the client stable
   - Needs expiry bookkeeping and a lock around the table

2. One ephemeral upstream socket per inbound datagram
   - No shared state between sessions at all
   - Responses can only ever reach the client that caused them
   - Costs a socket per packet

Decision: Ephemeral socket per datagram
- Same behavior as the legacy single-file bridges
- Sessions are independent tasks in a SessionPool
- Each session waits `relay_timeout` seconds for every response round;
  going quiet for that long ends the session normally

Discovery probes are answered locally with the announcement packet and
never reach the remote endpoint.
"""

import asyncio
import logging
from typing import Optional, Tuple, Union

from ..config import AddressConfig
from ..discovery.packet import encode_announcement, is_discovery_probe
from .pool import SessionPool

logger = logging.getLogger(__name__)

Address = Tuple[str, int]


class UpstreamProtocol(asyncio.DatagramProtocol):
    """
    Outbound side of one datagram session.

    Everything the remote sends is queued in receipt order. An error or
    a closed socket is queued as well so the session wakes up and ends.
    """

    def __init__(self):
        self.transport: Optional[asyncio.DatagramTransport] = None
        self.responses: 'asyncio.Queue[Union[bytes, Exception, None]]' = asyncio.Queue()

    def connection_made(self, transport: asyncio.DatagramTransport):
        self.transport = transport

    def datagram_received(self, data: bytes, addr: Address):
        self.responses.put_nowait(data)

    def error_received(self, exc: Exception):
        self.responses.put_nowait(exc)

    def connection_lost(self, exc: Optional[Exception]):
        self.responses.put_nowait(exc)


class DatagramRelay(asyncio.DatagramProtocol):
    """
    UDP listener that relays datagrams to the remote endpoint.

    Each inbound datagram becomes its own session task; sessions never
    block each other.
    """

    def __init__(self, config: AddressConfig, pool: Optional[SessionPool] = None):
        self.config = config
        self.pool = pool or SessionPool(config.max_sessions, name='datagram')
        self.transport: Optional[asyncio.DatagramTransport] = None

        # Statistics
        self.sessions = 0
        self.probes_answered = 0
        self.responses_relayed = 0
        self.bytes_upstream = 0
        self.bytes_downstream = 0
        self.failures = 0

    @property
    def is_running(self) -> bool:
        return self.transport is not None and not self.transport.is_closing()

    @property
    def local_address(self) -> Optional[Address]:
        if self.transport is None:
            return None
        return self.transport.get_extra_info('sockname')

    async def start(self):
        """
        Bind the UDP listener.

        Raises OSError if the address cannot be bound.
        """
        loop = asyncio.get_running_loop()
        await loop.create_datagram_endpoint(
            lambda: self,
            local_addr=self.config.bind,
        )
        logger.info(
            f"Datagram relay listening on {self.local_address}, "
            f"forwarding to {self.config.remote_host}:{self.config.remote_port}"
        )

    async def stop(self):
        """Close the listener and cancel in-flight sessions."""
        if self.transport:
            self.transport.close()
            self.transport = None
        await self.pool.close()
        logger.info("Datagram relay stopped")

    # === asyncio.DatagramProtocol ===

    def connection_made(self, transport: asyncio.DatagramTransport):
        self.transport = transport

    def datagram_received(self, data: bytes, addr: Address):
        if not data:
            return
        self.pool.spawn(self.handle_inbound_datagram(data, addr))

    def error_received(self, exc: Exception):
        logger.warning(f"Datagram listener error: {exc}")

    # === Sessions ===

    async def handle_inbound_datagram(self, payload: bytes, client_address: Address):
        """
        Handle one inbound datagram from `client_address`.

        Probes get the announcement as a direct reply. Anything else is
        forwarded through a fresh upstream socket and every response is
        sent back to the client until the remote goes quiet.
        """
        if not payload:
            return

        if self.config.answer_probes and is_discovery_probe(payload):
            self._reply(encode_announcement(self.config), client_address)
            self.probes_answered += 1
            logger.debug(f"Answered discovery probe from {client_address}")
            return

        self.sessions += 1

        try:
            transport, upstream = await self._open_upstream()
        except (OSError, asyncio.TimeoutError) as e:
            self.failures += 1
            logger.warning(
                f"Cannot reach {self.config.remote_host}:{self.config.remote_port} "
                f"for {client_address}: {e or type(e).__name__}"
            )
            return

        try:
            transport.sendto(payload)
            self.bytes_upstream += len(payload)
            logger.debug(f"{client_address} -> remote: {len(payload)} bytes")

            await self._relay_responses(upstream, client_address)
        finally:
            transport.close()

    async def _open_upstream(self) -> Tuple[asyncio.DatagramTransport, UpstreamProtocol]:
        """Open the session's own socket to the remote endpoint."""
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(
            loop.create_datagram_endpoint(
                UpstreamProtocol,
                remote_addr=self.config.remote_address,
            ),
            timeout=self.config.connect_timeout,
        )

    async def _relay_responses(self, upstream: UpstreamProtocol, client_address: Address):
        relayed = 0

        while True:
            try:
                item = await asyncio.wait_for(
                    upstream.responses.get(),
                    timeout=self.config.relay_timeout,
                )
            except asyncio.TimeoutError:
                # Normal end of a datagram session
                logger.debug(
                    f"Session for {client_address} finished after "
                    f"{relayed} response(s)"
                )
                return

            if item is None:
                logger.debug(f"Upstream socket for {client_address} closed")
                return

            if isinstance(item, Exception):
                self.failures += 1
                logger.warning(
                    f"Upstream error for {client_address} after "
                    f"{relayed} response(s): {item}"
                )
                return

            self._reply(item, client_address)
            relayed += 1
            self.responses_relayed += 1
            self.bytes_downstream += len(item)
            logger.debug(f"remote -> {client_address}: {len(item)} bytes")

    def _reply(self, data: bytes, client_address: Address):
        if self.transport is None or self.transport.is_closing():
            logger.warning(f"Listener closed, dropping {len(data)} bytes for {client_address}")
            return
        self.transport.sendto(data, client_address)

    def get_stats(self) -> dict:
        """Get datagram relay statistics."""
        return {
            'sessions': self.sessions,
            'probes_answered': self.probes_answered,
            'responses_relayed': self.responses_relayed,
            'bytes_upstream': self.bytes_upstream,
            'bytes_downstream': self.bytes_downstream,
            'failures': self.failures,
            'pool': self.pool.get_stats(),
        }
