"""
Tests for the broadcast announcer.
"""

import asyncio
import socket
from unittest.mock import AsyncMock, patch

import pytest

from lanbridge.discovery.announcer import BroadcastAnnouncer
from lanbridge.discovery.packet import ANNOUNCE_MARKER, decode_announcement

from stubs import LOCALHOST, make_config, start_udp_stub


class TestBroadcastAnnouncer:
    """Tests for BroadcastAnnouncer"""

    @pytest.mark.asyncio
    async def test_announces_immediately(self):
        """First announcement goes out as soon as the loop starts"""
        stub = await start_udp_stub()
        announcer = BroadcastAnnouncer(make_config(broadcast_port=stub.port))

        await announcer.start()
        try:
            for _ in range(50):
                if stub.received:
                    break
                await asyncio.sleep(0.02)
        finally:
            await announcer.stop()

        data, _ = stub.received[0]
        assert data[0] == ANNOUNCE_MARKER
        assert decode_announcement(data).name == 'TestWorld'
        assert announcer.announcements_sent >= 1

    @pytest.mark.asyncio
    async def test_fresh_packet_each_tick(self):
        """Every tick encodes a new announcement"""
        stub = await start_udp_stub()
        announcer = BroadcastAnnouncer(make_config(broadcast_port=stub.port))
        announcer._socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        announcer._socket.setblocking(False)
        announcer._address = (LOCALHOST, stub.port)

        with patch('lanbridge.discovery.announcer.encode_announcement',
                   side_effect=[b'\x1cfirst', b'\x1csecond']) as encode:
            assert await announcer.announce()
            assert await announcer.announce()

        await asyncio.sleep(0.1)
        announcer._close_socket()

        assert encode.call_count == 2
        assert [data for data, _ in stub.received] == [b'\x1cfirst', b'\x1csecond']

    @pytest.mark.asyncio
    async def test_send_failure_is_not_fatal(self):
        """A failed send is counted and the loop keeps going"""
        announcer = BroadcastAnnouncer(make_config(broadcast_interval=1))
        loop = asyncio.get_running_loop()

        with patch.object(loop, 'sock_sendto', side_effect=OSError("Network is unreachable")) as send:
            await announcer.start()
            await asyncio.sleep(1.2)
            assert announcer.is_running
            await announcer.stop()

        assert send.call_count >= 2
        assert announcer.send_failures >= 2
        assert announcer.announcements_sent == 0

    @pytest.mark.asyncio
    async def test_socket_setup_failure_stops_only_announcer(self):
        """Cannot open the socket: log, stay stopped, don't raise"""
        announcer = BroadcastAnnouncer(make_config())

        with patch.object(BroadcastAnnouncer, '_open_socket',
                          side_effect=OSError("no sockets for you")):
            await announcer.start()

        assert not announcer.is_running
        assert announcer._announce_task is None
        await announcer.stop()

    @pytest.mark.asyncio
    async def test_stop_closes_socket(self):
        announcer = BroadcastAnnouncer(make_config(broadcast_address=LOCALHOST, broadcast_port=9))
        await announcer.start()
        sock = announcer._socket

        await announcer.stop()

        assert sock.fileno() == -1
        assert not announcer.is_running
        assert announcer.get_stats()['running'] is False

    @pytest.mark.asyncio
    async def test_unresolvable_address_stops_only_announcer(self):
        """A broadcast host that does not resolve disables announcing"""
        announcer = BroadcastAnnouncer(make_config(broadcast_address='no-such-host.invalid'))
        loop = asyncio.get_running_loop()
        failure = socket.gaierror(socket.EAI_NONAME, "Name or service not known")

        with patch.object(loop, 'getaddrinfo', AsyncMock(side_effect=failure)), \
                patch.object(loop, 'sock_sendto') as send:
            await announcer.start()
            await asyncio.sleep(0.1)

        assert not announcer.is_running
        assert announcer._socket is None
        assert announcer._announce_task is None
        send.assert_not_called()
        assert announcer.send_failures == 0
        await announcer.stop()

    @pytest.mark.asyncio
    async def test_hostname_resolved_once(self):
        """Sends go to the resolved address, not the configured name"""
        stub = await start_udp_stub()
        announcer = BroadcastAnnouncer(
            make_config(broadcast_address='localhost', broadcast_port=stub.port)
        )

        await announcer.start()
        try:
            assert announcer._address == (LOCALHOST, stub.port)
            for _ in range(50):
                if stub.received:
                    break
                await asyncio.sleep(0.02)
        finally:
            await announcer.stop()

        assert stub.received
        assert announcer.get_stats()['target'] == f"localhost:{stub.port}"
