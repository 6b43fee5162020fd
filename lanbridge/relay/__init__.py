"""
Relay Module - Datagram and Stream Forwarding

Bridges client traffic to the remote endpoint over UDP and TCP.
"""

from .pool import SessionPool
from .datagram import DatagramRelay, UpstreamProtocol
from .stream import StreamRelay, connect_to_remote

__all__ = [
    'SessionPool',
    'DatagramRelay',
    'UpstreamProtocol',
    'StreamRelay',
    'connect_to_remote',
]
