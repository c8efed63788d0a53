"""Real network transport backed by aiohttp.

Used for continued requests and ``fetch()`` when the host runtime does not
supply its own transport. Network errors never raise; they come back as a
failed ``ResponseDescriptor`` carrying the matching abort reason.
"""

import asyncio
import socket
from typing import Optional

import aiohttp

from ..config.settings import FetchConfig
from ..models.http import AbortReason, CapturedRequest, Headers, ResponseDescriptor
from ...utils.logging import get_logger

logger = get_logger(__name__)

# Set by aiohttp itself from the outgoing request
_HOP_HEADERS = ("host", "content-length", "connection", "transfer-encoding")


class AiohttpTransport:
    """``NetworkTransport`` implementation using an ``aiohttp.ClientSession``."""

    def __init__(self, config: Optional[FetchConfig] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        """Initialize the transport.

        Args:
            config: Fetch settings, defaults to ``FetchConfig()``
            session: Client session to use; one is created lazily and owned
                by the transport when omitted
        """
        self.config = config or FetchConfig()
        self._session = session
        self._owns_session = session is None
        self._stats = {
            "requests_sent": 0,
            "requests_failed": 0,
        }

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(auto_decompress=True)
            self._owns_session = True
        return self._session

    async def send(self, request: CapturedRequest,
                   *, timeout: Optional[float] = None) -> ResponseDescriptor:
        """Send ``request`` to the network.

        Args:
            request: Request to send, overrides already applied
            timeout: Total timeout in seconds, defaults to the configured one

        Returns:
            The real response, or a failed descriptor with ``status`` None
        """
        session = await self._get_session()
        headers = request.headers.without(*_HOP_HEADERS)
        if self.config.user_agent and "user-agent" not in headers:
            headers = headers.with_header("User-Agent", self.config.user_agent)

        client_timeout = aiohttp.ClientTimeout(total=timeout or self.config.timeout)
        self._stats["requests_sent"] += 1

        try:
            async with session.request(
                request.method,
                request.url,
                headers=headers.items(),
                data=request.body,
                allow_redirects=self.config.follow_redirects,
                max_redirects=self.config.max_redirects,
                ssl=False if self.config.ignore_https_errors else True,
                timeout=client_timeout,
            ) as response:
                body = await response.read()
                response_headers = Headers(list(response.headers.items()))

                if "content-encoding" in response_headers:
                    # Body was decompressed; describe what is actually held
                    response_headers = response_headers.without("content-encoding")
                    if "content-length" in response_headers:
                        response_headers = response_headers.with_header("content-length", str(len(body)))

                logger.debug(f"{request.method} {request.url} -> {response.status}")
                return ResponseDescriptor(
                    status=response.status,
                    headers=response_headers,
                    body=body,
                    from_real_fetch=True,
                    url=str(response.url),
                    status_text=response.reason or "",
                )

        except asyncio.TimeoutError:
            return self._failure(request, AbortReason.TIMED_OUT, "timed out")

        except aiohttp.ClientConnectorError as e:
            if isinstance(e.os_error, socket.gaierror):
                reason = AbortReason.NAME_NOT_RESOLVED
            elif isinstance(e.os_error, ConnectionRefusedError):
                reason = AbortReason.CONNECTION_REFUSED
            else:
                reason = AbortReason.CONNECTION_FAILED
            return self._failure(request, reason, e)

        except aiohttp.ServerDisconnectedError as e:
            return self._failure(request, AbortReason.CONNECTION_CLOSED, e)

        except aiohttp.ClientOSError as e:
            return self._failure(request, AbortReason.CONNECTION_RESET, e)

        except aiohttp.ClientError as e:
            return self._failure(request, AbortReason.FAILED, e)

    def _failure(self, request: CapturedRequest, reason: AbortReason, detail) -> ResponseDescriptor:
        self._stats["requests_failed"] += 1
        logger.info(f"Network error for {request.method} {request.url}: {reason.value} ({detail})")
        return ResponseDescriptor.failure(reason, request.url)

    def get_statistics(self) -> dict:
        return dict(self._stats)

    async def close(self) -> None:
        """Close the client session if this transport created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
