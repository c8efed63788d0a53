"""Browsing-context scope: shared routes, pages, events and failures.

An ``InterceptionSession`` corresponds to one browsing context (typically one
test). It owns the context-scope handler registry, the network event bus,
the handler failure channel and the pages opened in it::

    async with InterceptionSession(config) as session:
        page = await session.new_page()
        page.route("**/api/items", lambda ctx: ctx.fulfill(json=[]))
        outcome = await page.submit(CapturedRequest("GET", "https://app.test/api/items"))
    # raises here if any handler failed
"""

import asyncio
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from ..config.settings import MockingConfig
from ..errors import InterceptionError, ScopeClosedError
from ..events.event_bus import NetworkEventBus
from ..events.recorder import NetworkRecorder
from ..models.http import CapturedRequest, ResponseDescriptor
from ..state.mock_store import MockStore
from ..transport.aiohttp_transport import AiohttpTransport
from ...utils.logging import configure_logging, generate_correlation_id, get_logger
from .matcher import PatternInput
from .page import PageInterceptor, ResponseMatch, response_predicate
from .registry import HandlerRegistration, HandlerRegistry, RouteHandler, RouteScope
from .request_context import NetworkTransport

logger = get_logger(__name__)


class HandlerFailureChannel:
    """Collects handler errors so the owning test can fail on them."""

    def __init__(self):
        self._errors: List[InterceptionError] = []

    def report(self, error: InterceptionError) -> None:
        self._errors.append(error)
        logger.error(f"Route handler failure: {error}")

    @property
    def errors(self) -> List[InterceptionError]:
        return list(self._errors)

    def clear(self) -> None:
        self._errors.clear()

    def raise_for_failures(self) -> None:
        """Raise the collected errors, if any, and clear them.

        A single error is raised as is; several are raised together as an
        ``ExceptionGroup``.
        """
        if not self._errors:
            return
        errors, self._errors = self._errors, []
        if len(errors) == 1:
            raise errors[0]
        raise ExceptionGroup(f"{len(errors)} route handlers failed", errors)

    def __len__(self) -> int:
        return len(self._errors)


class InterceptionSession:
    """Interception scope of one browsing context."""

    def __init__(self,
                 config: Optional[MockingConfig] = None,
                 transport: Optional[NetworkTransport] = None,
                 context_id: Optional[str] = None,
                 apply_logging_config: bool = False):
        """Initialize the session.

        Args:
            config: Configuration, defaults to ``MockingConfig()``
            transport: Real-network capability; an aiohttp transport is
                created on first use when none is given
            context_id: Identifier used in logs
            apply_logging_config: Configure logging from ``config.logging``
                when the session starts
        """
        self.config = config or MockingConfig()
        self.context_id = context_id or f"context-{generate_correlation_id()}"
        self.registry = HandlerRegistry(
            RouteScope.CONTEXT, self.context_id, self.config.interception.base_url
        )
        self.event_bus = NetworkEventBus(history_size=self.config.events.history_size)
        self.failures = HandlerFailureChannel()
        self.recorder: Optional[NetworkRecorder] = None

        self._apply_logging_config = apply_logging_config
        self._transport = transport
        self._owns_transport = False
        self._pages: Dict[str, PageInterceptor] = {}
        self._started = False
        self._closed = False

    @property
    def transport(self) -> NetworkTransport:
        if self._transport is None:
            self._transport = AiohttpTransport(self.config.fetch)
            self._owns_transport = True
        return self._transport

    @property
    def pages(self) -> List[PageInterceptor]:
        return list(self._pages.values())

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        """Start the event bus and, when enabled, recording."""
        self._ensure_open()
        if self._started:
            return
        if self._apply_logging_config:
            configure_logging(self.config)
        await self.event_bus.start()

        if self.config.recording.enabled:
            self.recorder = NetworkRecorder(max_body_size=self.config.recording.max_body_size)
            self.recorder.attach(self.event_bus)

        self._started = True
        logger.info(f"Interception session {self.context_id} started")

    async def new_page(self, page_id: Optional[str] = None) -> PageInterceptor:
        """Open a page scope sharing this session's routes and event bus."""
        await self.start()
        page = PageInterceptor(
            page_id,
            transport=self.transport,
            event_bus=self.event_bus,
            context_registry=self.registry,
            failure_reporter=self.failures.report,
            base_url=self.config.interception.base_url,
            scope_precedence=self.config.interception.scope_precedence,
            fetch_timeout=self.config.fetch.timeout,
            default_abort_reason=self.config.interception.default_abort_reason,
            wait_timeout=self.config.events.wait_timeout,
            correlation_id=self.context_id,
        )
        await page.start()
        self._pages[page.page_id] = page
        logger.debug(f"Opened page {page.page_id} in {self.context_id}")
        return page

    async def close_page(self, page: Union[PageInterceptor, str]) -> None:
        page_id = page if isinstance(page, str) else page.page_id
        interceptor = self._pages.pop(page_id, None)
        if interceptor is not None:
            await interceptor.close()

    def route(self,
              pattern: PatternInput,
              handler: RouteHandler,
              *,
              method: Union[str, Iterable[str], None] = None,
              store: Optional[MockStore] = None,
              times: Optional[int] = None) -> HandlerRegistration:
        """Register a context-scope handler shared by every page."""
        self._ensure_open()
        return self.registry.register(pattern, handler, method=method, store=store, times=times)

    def unroute(self, target: Union[HandlerRegistration, PatternInput],
                handler: Optional[RouteHandler] = None) -> int:
        if isinstance(target, HandlerRegistration):
            return int(self.registry.unregister(target))
        return self.registry.unregister_pattern(target, handler)

    async def wait_for_response(self, match: ResponseMatch = None,
                                timeout: Optional[float] = None) -> Tuple[ResponseDescriptor, CapturedRequest]:
        """Wait for the next finished request on any page of the session."""
        self._ensure_open()
        event = await self.event_bus.wait_for_next(
            response_predicate(match, self.config.interception.base_url),
            self.config.events.wait_timeout if timeout is None else timeout,
        )
        return event.response, event.request

    def expect_response(self, match: ResponseMatch = None) -> asyncio.Future:
        """Arm a waiter for the next finished request on any page."""
        self._ensure_open()
        return self.event_bus.expect(response_predicate(match, self.config.interception.base_url))

    def raise_for_failures(self) -> None:
        self.failures.raise_for_failures()

    async def close(self) -> None:
        """Close every page, then the event bus and owned transport.

        Requests still pending are aborted with ``context-closed`` and
        context-scope registrations are cleared.
        """
        if self._closed:
            return
        self._closed = True

        for page in list(self._pages.values()):
            await page.close()
        self._pages.clear()
        self.registry.clear()

        if self._started:
            await self.event_bus.flush()
        await self.event_bus.stop()

        if self.recorder is not None:
            self.recorder.detach()
            har_path = self.config.recording.har_path
            if har_path:
                self.recorder.export_har(Path(har_path))

        if self._owns_transport and self._transport is not None:
            await self._transport.close()

        logger.info(f"Interception session {self.context_id} closed")

    async def __aenter__(self) -> "InterceptionSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
        if exc_type is None:
            self.raise_for_failures()

    def _ensure_open(self) -> None:
        if self._closed:
            raise ScopeClosedError(f"Session {self.context_id} is closed")


async def gather_outcomes(page: PageInterceptor, requests: Iterable[CapturedRequest]):
    """Submit requests concurrently, in order, and return their outcomes."""
    return await asyncio.gather(*(page.submit(request) for request in requests))
