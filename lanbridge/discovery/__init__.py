"""
Discovery Module - LAN Presence Spoofing

Makes the remote server show up in the client's LAN server list:
- Announcement packet codec (structured and simple layouts)
- Periodic broadcast announcer
"""

from .packet import (
    Announcement,
    PacketError,
    ANNOUNCE_MARKER,
    PROBE_MARKER,
    encode_announcement,
    decode_announcement,
    is_discovery_probe,
    build_probe,
)
from .announcer import BroadcastAnnouncer

__all__ = [
    'Announcement',
    'PacketError',
    'ANNOUNCE_MARKER',
    'PROBE_MARKER',
    'encode_announcement',
    'decode_announcement',
    'is_discovery_probe',
    'build_probe',
    'BroadcastAnnouncer',
]
