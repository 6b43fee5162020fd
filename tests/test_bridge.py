"""
Tests for LanBridge orchestration.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from lanbridge.bridge import BridgeStartupError, LanBridge, run_bridge
from lanbridge.discovery.announcer import BroadcastAnnouncer
from lanbridge.discovery.packet import ANNOUNCE_MARKER

from stubs import TcpStub, make_config, start_udp_stub


class TestLanBridge:
    """Tests for LanBridge start/stop and failure handling"""

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        stub = await start_udp_stub()
        bridge = LanBridge(make_config(broadcast_port=stub.port))

        await bridge.start()
        try:
            assert bridge.is_running
            assert bridge.datagram_relay.is_running
            assert bridge.stream_relay.is_running
            assert bridge.announcer.is_running
        finally:
            await bridge.stop()

        assert not bridge.is_running
        assert not bridge.datagram_relay.is_running
        assert not bridge.stream_relay.is_running
        assert not bridge.announcer.is_running

    @pytest.mark.asyncio
    async def test_udp_bind_failure_is_fatal(self):
        bridge = LanBridge(make_config())

        with patch.object(bridge.datagram_relay, 'start', AsyncMock(side_effect=OSError("in use"))):
            with pytest.raises(BridgeStartupError, match="UDP"):
                await bridge.start()

        assert not bridge.is_running
        assert not bridge.stream_relay.is_running

    @pytest.mark.asyncio
    async def test_tcp_bind_failure_stops_udp(self):
        blocker = await TcpStub().start()
        bridge = LanBridge(make_config(bind_port=blocker.port))

        try:
            with pytest.raises(BridgeStartupError, match="TCP"):
                await bridge.start()
            assert not bridge.datagram_relay.is_running
            assert not bridge.announcer.is_running
        finally:
            await blocker.stop()

    @pytest.mark.asyncio
    async def test_announcer_failure_is_not_fatal(self):
        bridge = LanBridge(make_config())

        with patch.object(BroadcastAnnouncer, '_open_socket', side_effect=OSError("nope")):
            await bridge.start()

        try:
            assert bridge.is_running
            assert not bridge.announcer.is_running
            assert bridge.datagram_relay.is_running
        finally:
            await bridge.stop()

    @pytest.mark.asyncio
    async def test_stats_shape(self):
        bridge = LanBridge(make_config())
        stats = bridge.get_stats()

        assert stats['running'] is False
        assert stats['display_name'] == 'TestWorld'
        assert set(stats) >= {'datagram', 'stream', 'announcer'}
        assert stats['datagram']['pool']['capacity'] is None

    @pytest.mark.asyncio
    async def test_run_bridge_until_stopped(self):
        stop = asyncio.Event()
        config = make_config()

        with patch('lanbridge.bridge.LanBridge') as bridge_cls:
            bridge = bridge_cls.return_value
            bridge.start = AsyncMock()
            bridge.stop = AsyncMock()

            task = asyncio.create_task(run_bridge(config, stop))
            await asyncio.sleep(0.1)
            assert not task.done()
            stop.set()
            await asyncio.wait_for(task, 2.0)

        bridge_cls.assert_called_once_with(config)
        bridge.start.assert_awaited_once()
        bridge.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_probe_through_running_bridge(self):
        bridge = LanBridge(make_config(display_name='Bridged'))
        await bridge.start()

        loop = asyncio.get_running_loop()
        replies = asyncio.Queue()

        class Client(asyncio.DatagramProtocol):
            def datagram_received(self, data, addr):
                replies.put_nowait(data)

        transport, _ = await loop.create_datagram_endpoint(
            Client, remote_addr=bridge.datagram_relay.local_address
        )
        try:
            transport.sendto(b'\x01')
            reply = await asyncio.wait_for(replies.get(), 2.0)
            assert reply[0] == ANNOUNCE_MARKER
            assert b'Bridged' in reply
        finally:
            transport.close()
            await bridge.stop()
