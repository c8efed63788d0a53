"""Playwright integration for the interception layer.

``PlaywrightRouteBridge`` installs a catch-all ``page.route("**/*")`` on a
Playwright page and feeds every routed request to a ``PageInterceptor``.
The route's own ``route.fetch()`` serves as the real network, so continued
and fetched requests keep the browser context's cookies, proxy and TLS
settings. Outcomes are applied with ``route.abort()`` or ``route.fulfill()``.
"""

import asyncio
import re
from typing import Awaitable, Callable, Dict, List, Optional

from playwright.async_api import (
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Request,
    Route,
    TimeoutError as PlaywrightTimeoutError,
)

from ..config.settings import FetchConfig
from ..errors import ScopeClosedError
from ..interception.page import InterceptionOutcome, PageInterceptor
from ..interception.session import InterceptionSession
from ..models.http import AbortReason, CapturedRequest, Headers, ResponseDescriptor
from ...utils.logging import get_logger

logger = get_logger(__name__)

ROUTE_ALL = "**/*"
_NET_ERROR = re.compile(r"net::ERR_([A-Z_]+)")


async def captured_from_playwright(request: Request, page_id: Optional[str] = None) -> CapturedRequest:
    """Snapshot a Playwright request.

    Args:
        request: Playwright request object
        page_id: Identifier of the owning page scope

    Returns:
        Captured request with headers in their original order
    """
    headers = await request.headers_array()
    return CapturedRequest(
        method=request.method,
        url=request.url,
        headers=Headers(headers),
        body=request.post_data_buffer,
        resource_type=request.resource_type,
        page_id=page_id,
        is_navigation_request=request.is_navigation_request(),
    )


def abort_reason_from_error(error: Exception) -> AbortReason:
    """Classify a Playwright network error message."""
    if isinstance(error, PlaywrightTimeoutError):
        return AbortReason.TIMED_OUT
    match = _NET_ERROR.search(str(error))
    if match:
        try:
            return AbortReason.parse(match.group(1))
        except ValueError:
            pass
    return AbortReason.FAILED


class PlaywrightRouteTransport:
    """``NetworkTransport`` performing requests with ``route.fetch()``."""

    def __init__(self, route: Route, config: Optional[FetchConfig] = None):
        self.route = route
        self.config = config or FetchConfig()

    async def send(self, request: CapturedRequest,
                   *, timeout: Optional[float] = None) -> ResponseDescriptor:
        headers = request.headers.without("content-length").to_dict()
        if self.config.user_agent and "user-agent" not in headers:
            headers["user-agent"] = self.config.user_agent

        try:
            response = await self.route.fetch(
                url=request.url,
                method=request.method,
                headers=headers,
                post_data=request.body,
                max_redirects=self.config.max_redirects if self.config.follow_redirects else 0,
                timeout=(timeout or self.config.timeout) * 1000,
            )
            body = await response.body()
        except PlaywrightError as e:
            reason = abort_reason_from_error(e)
            logger.info(f"Route fetch failed for {request.method} {request.url}: {reason.value} ({e})")
            return ResponseDescriptor.failure(reason, request.url)

        response_headers = Headers(response.headers_array)
        if "content-encoding" in response_headers:
            # body() is already decoded
            response_headers = response_headers.without("content-encoding")
            if "content-length" in response_headers:
                response_headers = response_headers.with_header("content-length", str(len(body)))

        return ResponseDescriptor(
            status=response.status,
            headers=response_headers,
            body=body,
            from_real_fetch=True,
            url=response.url,
            status_text=response.status_text,
        )


async def apply_outcome(route: Route, outcome: InterceptionOutcome) -> None:
    """Hand an interception outcome back to Playwright."""
    if outcome.failure is not None:
        await route.abort(outcome.failure.error_code)
        return

    response = outcome.response
    await route.fulfill(
        status=response.status,
        headers=response.headers.to_dict(),
        body=response.body,
    )


class PlaywrightRouteBridge:
    """Connects one Playwright page to a ``PageInterceptor``."""

    def __init__(self, page: Page, interceptor: PageInterceptor,
                 fetch_config: Optional[FetchConfig] = None,
                 on_close: Optional[Callable[[PageInterceptor], Awaitable[None]]] = None):
        """Initialize the bridge.

        Args:
            page: Playwright page whose requests are intercepted
            interceptor: Page scope deciding what happens to them
            fetch_config: Settings for ``route.fetch()``
            on_close: Tears the page scope down when the page closes,
                defaults to ``interceptor.close``
        """
        self.page = page
        self.interceptor = interceptor
        self.fetch_config = fetch_config or FetchConfig()
        self._installed = False
        self._on_close = on_close
        self._close_task: Optional[asyncio.Task] = None

        self._stats = {
            "routes_handled": 0,
            "routes_dropped": 0,
        }

    async def install(self) -> None:
        """Route every request of the page through the interceptor."""
        if self._installed:
            return
        await self.page.route(ROUTE_ALL, self._handle_route)
        self.page.on("close", self._on_page_close)
        self._installed = True
        logger.debug(f"Playwright bridge installed on {self.interceptor.page_id}")

    async def uninstall(self) -> None:
        if not self._installed:
            return
        self._installed = False
        self.page.remove_listener("close", self._on_page_close)
        try:
            await self.page.unroute(ROUTE_ALL, self._handle_route)
        except PlaywrightError as e:
            logger.warning(f"Error removing route from {self.interceptor.page_id}: {e}")

    async def _handle_route(self, route: Route) -> None:
        """Main request interception handler."""
        captured = await captured_from_playwright(route.request, self.interceptor.page_id)
        transport = PlaywrightRouteTransport(route, self.fetch_config)

        try:
            outcome = await self.interceptor.submit(captured, transport)
        except ScopeClosedError:
            self._stats["routes_dropped"] += 1
            await self._abort_quietly(route)
            return

        self._stats["routes_handled"] += 1
        try:
            await apply_outcome(route, outcome)
        except PlaywrightError as e:
            # Page or context went away while the handler was running
            logger.debug(f"Could not apply outcome for {captured.method} {captured.url}: {e}")

    async def _abort_quietly(self, route: Route) -> None:
        try:
            await route.abort(AbortReason.CONTEXT_CLOSED.error_code)
        except PlaywrightError as e:
            logger.debug(f"Could not abort route on closed page: {e}")

    def _on_page_close(self, page: Page) -> None:
        self._installed = False
        teardown = self._on_close(self.interceptor) if self._on_close else self.interceptor.close()
        self._close_task = asyncio.create_task(teardown)

    async def wait_closed(self) -> None:
        """Wait for page scope teardown triggered by the page closing."""
        if self._close_task is not None:
            await self._close_task

    def get_statistics(self) -> Dict[str, int]:
        return {**self._stats, **self.interceptor.get_statistics()}


async def attach_page(session: InterceptionSession, page: Page,
                      page_id: Optional[str] = None) -> PlaywrightRouteBridge:
    """Open a page scope in ``session`` and bridge ``page`` to it."""
    interceptor = await session.new_page(page_id)
    bridge = PlaywrightRouteBridge(page, interceptor, session.config.fetch, on_close=session.close_page)
    await bridge.install()
    return bridge


async def attach_context(session: InterceptionSession,
                         context: BrowserContext) -> List[PlaywrightRouteBridge]:
    """Bridge every current and future page of a browser context.

    Returns:
        The list of bridges, which grows as the context opens pages
    """
    bridges = [await attach_page(session, page) for page in context.pages]

    async def on_page(page: Page) -> None:
        if session.closed:
            return
        bridges.append(await attach_page(session, page))

    context.on("page", on_page)
    return bridges
