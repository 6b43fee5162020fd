"""
Stream Relay

Accepts TCP connections and splices each one to a fresh connection to
the remote endpoint. The relay never looks at the bytes: both directions
are copied in fixed-size chunks, in order, until one side closes or
fails. The first side to finish tears down the whole pair.
"""

import asyncio
import logging
from typing import Optional, Tuple

from ..config import AddressConfig
from .pool import SessionPool

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096


async def connect_to_remote(host: str, port: int,
                            timeout: float = 10.0) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """
    Open a TCP connection to the remote endpoint.

    Raises OSError or asyncio.TimeoutError on failure.
    """
    return await asyncio.wait_for(
        asyncio.open_connection(host, port),
        timeout=timeout
    )


async def close_writer(writer: asyncio.StreamWriter):
    """Close a stream writer, ignoring errors from an already-dead socket."""
    if writer.is_closing():
        return
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass


class StreamRelay:
    """
    TCP server that relays every accepted connection to the remote
    endpoint.
    """

    def __init__(self, config: AddressConfig, pool: Optional[SessionPool] = None):
        self.config = config
        self.pool = pool or SessionPool(config.max_sessions, name='stream')
        self.server: Optional[asyncio.AbstractServer] = None

        # Statistics
        self.connections = 0
        self.active = 0
        self.dial_failures = 0
        self.bytes_upstream = 0
        self.bytes_downstream = 0

    @property
    def is_running(self) -> bool:
        return self.server is not None and self.server.is_serving()

    @property
    def local_address(self):
        if not self.server or not self.server.sockets:
            return None
        return self.server.sockets[0].getsockname()

    async def start(self):
        """
        Start accepting connections.

        Raises OSError if the address cannot be bound.
        """
        self.server = await asyncio.start_server(
            self._on_connection,
            self.config.bind_address,
            self.config.bind_port
        )
        logger.info(
            f"Stream relay listening on {self.local_address}, "
            f"forwarding to {self.config.remote_host}:{self.config.remote_port}"
        )

    async def stop(self):
        """Stop accepting and tear down open sessions."""
        if self.server:
            self.server.close()
            await self.pool.close()
            await self.server.wait_closed()
            self.server = None
            logger.info("Stream relay stopped")

    def _on_connection(self, reader: asyncio.StreamReader,
                       writer: asyncio.StreamWriter):
        # A session cancelled while queued never runs its handler
        self.pool.spawn(self.handle_inbound_connection(reader, writer), cleanup=writer.close)

    async def handle_inbound_connection(self, reader: asyncio.StreamReader,
                                        writer: asyncio.StreamWriter):
        """
        Relay one client connection to the remote endpoint.

        Returns once both connections are closed.
        """
        client = writer.get_extra_info('peername')
        self.connections += 1

        try:
            remote_reader, remote_writer = await connect_to_remote(
                self.config.remote_host,
                self.config.remote_port,
                timeout=self.config.connect_timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            self.dial_failures += 1
            logger.warning(
                f"Cannot reach {self.config.remote_host}:{self.config.remote_port} "
                f"for {client}: {e or type(e).__name__}"
            )
            await close_writer(writer)
            return
        except asyncio.CancelledError:
            writer.close()
            raise

        logger.debug(f"Stream session opened for {client}")
        self.active += 1

        upstream = asyncio.create_task(
            self._pipe(reader, remote_writer, 'bytes_upstream')
        )
        downstream = asyncio.create_task(
            self._pipe(remote_reader, writer, 'bytes_downstream')
        )

        try:
            await asyncio.wait(
                [upstream, downstream],
                return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            # Closing both sockets unblocks whichever copy is still reading
            writer.close()
            remote_writer.close()
            self.active -= 1
            for task in (upstream, downstream):
                task.cancel()
            results = await asyncio.gather(upstream, downstream, return_exceptions=True)

        sent, received = (r if isinstance(r, int) else 0 for r in results)
        logger.debug(
            f"Stream session closed for {client}: "
            f"{sent} bytes up, {received} bytes down"
        )

    async def _pipe(self, reader: asyncio.StreamReader,
                    writer: asyncio.StreamWriter, counter: str) -> int:
        """Copy from reader to writer until EOF or error. Returns bytes copied."""
        copied = 0
        try:
            while True:
                data = await reader.read(CHUNK_SIZE)
                if not data:
                    break
                writer.write(data)
                await writer.drain()
                copied += len(data)
                setattr(self, counter, getattr(self, counter) + len(data))
        except (OSError, asyncio.IncompleteReadError) as e:
            logger.debug(f"Stream copy ended after {copied} bytes: {e}")
        return copied

    def get_stats(self) -> dict:
        """Get stream relay statistics."""
        return {
            'connections': self.connections,
            'active': self.active,
            'dial_failures': self.dial_failures,
            'bytes_upstream': self.bytes_upstream,
            'bytes_downstream': self.bytes_downstream,
            'pool': self.pool.get_stats(),
        }
