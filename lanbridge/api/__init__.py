"""
API Module - REST Status API for the LAN Bridge

Provides HTTP endpoints for inspecting a running bridge.
"""

from .rest import create_app, run_api_server

__all__ = ['create_app', 'run_api_server']
