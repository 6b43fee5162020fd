"""
Announcement Packet Codec

Design Decision: Announcement Wire Format
=========================================

Options Considered:
1. Structured layout (RakNet "unconnected pong" style)
   - Marker + timestamp + offline magic + server GUID + length-prefixed
     MOTD descriptor string
   - What Bedrock clients expect when they probe the LAN
   - Larger, needs a clock and a stable GUID

2. Simple layout
   - Marker + display name + ';' + port digits
   - Trivial to produce and to eyeball in a packet capture
   - Only understood by tools that expect it

Decision: Support both, selected by AddressConfig.announce_format
- "structured" is the default
- "simple" is kept for the older bridge variants
- Mixing them breaks discovery, so the announcer and the probe reply
  always go through encode_announcement() with the same config

Structured layout:
```
+--------+----------------+------------------+-------------+-----------+------------+
| 0x1c   | timestamp (8B) | offline magic    | GUID (8B)   | len (2B)  | descriptor |
|        | little-endian  | (16B)            | big-endian  | big-end.  | UTF-8      |
+--------+----------------+------------------+-------------+-----------+------------+

descriptor:
MCPE;<name>;<protocol>;<version>;<online>;<max>;<guid>;<subtitle>;<mode>;1;<port>;<port>;
```

Discovery probes ("unconnected ping") start with 0x01. Only the first
byte is inspected to recognize one.
"""

import struct
import time
from dataclasses import dataclass
from typing import Optional

# Leading marker bytes
ANNOUNCE_MARKER = 0x1c
PROBE_MARKER = 0x01

# RakNet offline message magic
OFFLINE_MAGIC = bytes.fromhex('00ffff00fefefefefdfdfdfd12345678')

EDITION = 'MCPE'
DELIMITER = ';'

_TIMESTAMP = struct.Struct('<Q')
_GUID = struct.Struct('>Q')
_LENGTH = struct.Struct('>H')
_PING_TIME = struct.Struct('>Q')

# marker + timestamp + magic + guid + length
STRUCTURED_HEADER_SIZE = 1 + _TIMESTAMP.size + len(OFFLINE_MAGIC) + _GUID.size + _LENGTH.size


class PacketError(ValueError):
    """Raised when a packet cannot be decoded."""


@dataclass
class Announcement:
    """A decoded announcement packet."""
    name: str
    port: int
    marker: int = ANNOUNCE_MARKER
    timestamp: Optional[int] = None
    server_guid: Optional[int] = None
    edition: Optional[str] = None
    protocol_version: Optional[int] = None
    game_version: Optional[str] = None
    online_players: Optional[int] = None
    max_players: Optional[int] = None
    subtitle: Optional[str] = None
    game_mode: Optional[str] = None

    @property
    def is_structured(self) -> bool:
        return self.timestamp is not None

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'port': self.port,
            'edition': self.edition,
            'protocol_version': self.protocol_version,
            'game_version': self.game_version,
            'online_players': self.online_players,
            'max_players': self.max_players,
            'subtitle': self.subtitle,
            'game_mode': self.game_mode,
            'server_guid': self.server_guid,
        }


def _now_ms() -> int:
    return int(time.time() * 1000)


def build_descriptor(config) -> str:
    """Build the semicolon-delimited MOTD record."""
    fields = [
        EDITION,
        config.display_name,
        str(config.protocol_version),
        config.game_version,
        str(config.online_players),
        str(config.max_players),
        str(config.server_guid),
        config.subtitle,
        config.game_mode,
        '1',
        str(config.remote_port),
        str(config.remote_port),
    ]
    return DELIMITER.join(fields) + DELIMITER


def encode_structured(config, timestamp: Optional[int] = None) -> bytes:
    descriptor = build_descriptor(config).encode('utf-8')
    if len(descriptor) > 0xffff:
        raise PacketError(f"Descriptor too long: {len(descriptor)} bytes")

    return (
        bytes([ANNOUNCE_MARKER]) +
        _TIMESTAMP.pack(_now_ms() if timestamp is None else timestamp) +
        OFFLINE_MAGIC +
        _GUID.pack(config.server_guid) +
        _LENGTH.pack(len(descriptor)) +
        descriptor
    )


def encode_simple(config) -> bytes:
    return (
        bytes([ANNOUNCE_MARKER]) +
        config.display_name.encode('utf-8') +
        DELIMITER.encode('ascii') +
        str(config.remote_port).encode('ascii')
    )


def encode_announcement(config) -> bytes:
    """
    Encode the spoofed presence announcement for `config`.

    Every call builds a new bytes object, so the timestamp of a structured
    packet reflects the moment of the call.
    """
    if config.announce_format == 'simple':
        return encode_simple(config)
    return encode_structured(config)


def is_discovery_probe(data: bytes) -> bool:
    """True if `data` is non-empty and starts with the probe marker."""
    return len(data) > 0 and data[0] == PROBE_MARKER


def build_probe(ping_time: Optional[int] = None, client_guid: int = 0) -> bytes:
    """Build an unconnected ping like a Bedrock client sends on LAN scan."""
    return (
        bytes([PROBE_MARKER]) +
        _PING_TIME.pack(_now_ms() if ping_time is None else ping_time) +
        OFFLINE_MAGIC +
        _GUID.pack(client_guid)
    )


def _to_int(value: str) -> Optional[int]:
    try:
        return int(value)
    except ValueError:
        return None


def _decode_structured(data: bytes) -> Announcement:
    if len(data) < STRUCTURED_HEADER_SIZE:
        raise PacketError(f"Truncated announcement: {len(data)} bytes")

    offset = 1
    timestamp, = _TIMESTAMP.unpack_from(data, offset)
    offset += _TIMESTAMP.size
    offset += len(OFFLINE_MAGIC)
    guid, = _GUID.unpack_from(data, offset)
    offset += _GUID.size
    length, = _LENGTH.unpack_from(data, offset)
    offset += _LENGTH.size

    raw = data[offset:offset + length]
    if len(raw) != length:
        raise PacketError(f"Descriptor truncated: expected {length}, got {len(raw)}")

    try:
        fields = raw.decode('utf-8').split(DELIMITER)
    except UnicodeDecodeError as e:
        raise PacketError(f"Descriptor is not UTF-8: {e}") from e

    # Trailing delimiter leaves an empty last field
    fields += [''] * (12 - len(fields))
    port = _to_int(fields[10])
    if port is None:
        raise PacketError(f"Invalid port in descriptor: {fields[10]!r}")

    return Announcement(
        name=fields[1],
        port=port,
        timestamp=timestamp,
        server_guid=guid,
        edition=fields[0],
        protocol_version=_to_int(fields[2]),
        game_version=fields[3],
        online_players=_to_int(fields[4]),
        max_players=_to_int(fields[5]),
        subtitle=fields[7],
        game_mode=fields[8],
    )


def _decode_simple(data: bytes) -> Announcement:
    try:
        text = data[1:].decode('utf-8')
    except UnicodeDecodeError as e:
        raise PacketError(f"Announcement is not UTF-8: {e}") from e

    name, sep, port_text = text.rpartition(DELIMITER)
    port = _to_int(port_text)
    if not sep or port is None:
        raise PacketError(f"Malformed simple announcement: {text!r}")

    return Announcement(name=name, port=port)


def decode_announcement(data: bytes) -> Announcement:
    """
    Decode an announcement in either layout.

    The structured layout is recognized by the offline magic at its fixed
    offset; anything else starting with the marker is parsed as simple.
    """
    if not data or data[0] != ANNOUNCE_MARKER:
        raise PacketError("Not an announcement packet")

    magic_start = 1 + _TIMESTAMP.size
    if data[magic_start:magic_start + len(OFFLINE_MAGIC)] == OFFLINE_MAGIC:
        return _decode_structured(data)
    return _decode_simple(data)
