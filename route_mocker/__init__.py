"""route_mocker - request interception and mocking for browser tests

Decides what happens to every request a page makes: block it, let it
through (optionally modified), or answer it with a synthesized or
transformed response, optionally backed by handler-owned mock state, while
a network event bus reports the request lifecycle to observers.
"""

__version__ = "0.1.0"
__author__ = "Shayan Banerjee"
__email__ = "your.email@example.com"
__description__ = "Request interception and mocking layer for Playwright tests"

from .core.config import ConfigManager, MockingConfig
from .core.interception import InterceptionSession, PageInterceptor, RequestContext
from .core.models import AbortReason, CapturedRequest, Headers, ResponseDescriptor
from .core.state import CrudResource, MockStore

__all__ = [
    "AbortReason",
    "CapturedRequest",
    "ConfigManager",
    "CrudResource",
    "Headers",
    "InterceptionSession",
    "MockStore",
    "MockingConfig",
    "PageInterceptor",
    "RequestContext",
    "ResponseDescriptor",
]
