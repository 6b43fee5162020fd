"""
lanbridge - LAN discovery bridge for remote Bedrock servers

Makes a server that is only reachable by address show up as a LAN game,
and relays UDP and TCP traffic between local clients and that server.
"""

__version__ = '1.0.0'

from .config import AddressConfig, ConfigError, load_config
from .bridge import LanBridge, BridgeStartupError, run_bridge

__all__ = [
    'AddressConfig',
    'ConfigError',
    'load_config',
    'LanBridge',
    'BridgeStartupError',
    'run_bridge',
]
