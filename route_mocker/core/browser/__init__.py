"""Browser automation integration.

This module connects Playwright pages to the interception layer: routed
requests become captured requests, ``route.fetch()`` acts as the real
network, and outcomes are applied with ``route.abort()``/``route.fulfill()``.
"""

from .playwright_bridge import (
    PlaywrightRouteBridge,
    PlaywrightRouteTransport,
    apply_outcome,
    attach_context,
    attach_page,
    captured_from_playwright,
)

__all__ = [
    "PlaywrightRouteBridge",
    "PlaywrightRouteTransport",
    "apply_outcome",
    "attach_context",
    "attach_page",
    "captured_from_playwright",
]
