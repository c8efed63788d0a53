"""Real network transports."""

from .aiohttp_transport import AiohttpTransport

__all__ = ["AiohttpTransport"]
