"""Core functionality for route_mocker.

This module contains the components of the interception layer:
- Route matching, handler registries and per-page dispatch
- Request contexts and response building
- Handler-owned mock state
- Network lifecycle events, recording and replay
- Configuration and real network transports
"""

from .config.config_manager import ConfigManager
from .events.event_bus import NetworkEventBus
from .interception.session import InterceptionSession
from .state.mock_store import MockStore

__all__ = [
    "ConfigManager",
    "InterceptionSession",
    "MockStore",
    "NetworkEventBus",
]
