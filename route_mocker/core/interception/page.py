"""Per-page request dispatch.

Each page owns a queue of captured requests and a dispatch task. Matching
registrations are snapshotted when a request is submitted; the dispatch task
then starts one handler task per request in capture order. A handler that
awaits (a real fetch, a delay) only suspends its own request.

Every submitted request ends as exactly one ``InterceptionOutcome``:
unmatched requests go to the network unmodified, handler failures abort
with ``handler-error``, and requests still pending when the page closes
abort with ``context-closed``.
"""

import asyncio
import inspect
import re
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from ..errors import (
    HandlerDidNotResolveError,
    HandlerExecutionError,
    InterceptionError,
    PatternEvaluationError,
    ScopeClosedError,
)
from ..events.event_bus import NetworkEvent, NetworkEventBus, NetworkEventType
from ..models.http import AbortReason, CapturedRequest, ResponseDescriptor
from ..state.mock_store import MockStore
from ...utils.logging import LogContext, generate_correlation_id, get_logger
from .matcher import PatternInput, RoutePattern
from .registry import HandlerRegistration, HandlerRegistry, RouteHandler, RouteScope
from .request_context import NetworkTransport, RequestContext, Resolution, ResolutionKind

logger = get_logger(__name__)

FailureReporter = Callable[[InterceptionError], None]
ResponseMatch = Union[PatternInput, Callable[[ResponseDescriptor, CapturedRequest], Any], None]


@dataclass(frozen=True)
class InterceptionOutcome:
    """What the host runtime must do with one captured request.

    ``response`` is the fulfilled response, or the real response for a
    continued request. ``failure`` is set for aborts and failed continues.
    """

    request: CapturedRequest
    resolution: Resolution
    response: Optional[ResponseDescriptor] = None
    failure: Optional[AbortReason] = None
    handled_by: Optional[HandlerRegistration] = None
    error: Optional[BaseException] = None
    duration_ms: float = 0.0

    @property
    def failed(self) -> bool:
        return self.failure is not None

    @property
    def status(self) -> Optional[int]:
        return self.response.status if self.response is not None else None


@dataclass
class _PendingRequest:
    request: CapturedRequest
    matches: List[HandlerRegistration]
    transport: NetworkTransport
    future: asyncio.Future
    started: float


class PageInterceptor:
    """Interception scope of a single page."""

    def __init__(self,
                 page_id: Optional[str] = None,
                 *,
                 transport: Optional[NetworkTransport] = None,
                 event_bus: Optional[NetworkEventBus] = None,
                 context_registry: Optional[HandlerRegistry] = None,
                 failure_reporter: Optional[FailureReporter] = None,
                 base_url: Optional[str] = None,
                 scope_precedence: str = "page",
                 fetch_timeout: Optional[float] = None,
                 default_abort_reason: Union[AbortReason, str] = AbortReason.FAILED,
                 wait_timeout: float = 30.0,
                 correlation_id: Optional[str] = None):
        """Initialize the page scope.

        Args:
            page_id: Identifier used in events and logs
            transport: Default real-network capability
            event_bus: Bus receiving lifecycle events
            context_registry: Registrations shared by every page of a context
            failure_reporter: Receives handler and predicate errors
            base_url: Base URL relative glob patterns resolve against
            scope_precedence: "page" or "context", the scope consulted first
            fetch_timeout: Timeout in seconds for continues and ``fetch()``
            default_abort_reason: Reason used by ``abort()`` without arguments
            wait_timeout: Default timeout of the ``wait_for_*`` helpers
            correlation_id: Added to the log records of every request,
                typically the id of the owning context
        """
        self.page_id = page_id or f"page-{generate_correlation_id()}"
        self.transport = transport
        self.event_bus = event_bus
        self.context_registry = context_registry
        self.failure_reporter = failure_reporter
        self.registry = HandlerRegistry(RouteScope.PAGE, self.page_id, base_url)
        self.scope_precedence = RouteScope(scope_precedence)
        self.fetch_timeout = fetch_timeout
        self.default_abort_reason = AbortReason.parse(default_abort_reason)
        self.wait_timeout = wait_timeout
        self.correlation_id = correlation_id

        self._queue: asyncio.Queue = asyncio.Queue()
        self._dispatch_task: Optional[asyncio.Task] = None
        self._handler_tasks: Dict[asyncio.Task, _PendingRequest] = {}
        self._closed = False

        self._stats = {
            "requests_captured": 0,
            "requests_handled": 0,
            "requests_passed_through": 0,
            "requests_fulfilled": 0,
            "requests_continued": 0,
            "requests_aborted": 0,
            "handler_errors": 0,
        }

    @property
    def closed(self) -> bool:
        return self._closed

    def route(self,
              pattern: PatternInput,
              handler: RouteHandler,
              *,
              method: Union[str, Iterable[str], None] = None,
              store: Optional[MockStore] = None,
              times: Optional[int] = None) -> HandlerRegistration:
        """Register a page-scope handler; see ``HandlerRegistry.register``."""
        self._ensure_open()
        return self.registry.register(pattern, handler, method=method, store=store, times=times)

    def unroute(self, target: Union[HandlerRegistration, PatternInput],
                handler: Optional[RouteHandler] = None) -> int:
        """Remove a registration by handle, or all made with a pattern.

        Returns:
            Number of registrations removed
        """
        if isinstance(target, HandlerRegistration):
            return int(self.registry.unregister(target))
        return self.registry.unregister_pattern(target, handler)

    async def start(self) -> None:
        """Start the dispatch task."""
        self._ensure_open()
        if self._dispatch_task is None:
            self._dispatch_task = asyncio.create_task(self._dispatch_loop())
            logger.debug(f"Page {self.page_id} dispatch started")

    async def submit(self, request: CapturedRequest,
                     transport: Optional[NetworkTransport] = None) -> InterceptionOutcome:
        """Intercept one captured request and wait for its outcome.

        Args:
            request: Request captured by the host runtime
            transport: Real-network capability for this request, defaults
                to the page's transport

        Raises:
            ScopeClosedError: If the page has been closed
        """
        self._ensure_open()
        transport = transport or self.transport
        if transport is None:
            raise ValueError("No network transport configured for page " + self.page_id)
        await self.start()

        if request.page_id is None:
            request = _with_page(request, self.page_id)

        matches = self._snapshot_matches(request)
        if matches:
            # Counted at capture so a times limit holds for concurrent requests
            matches[0].consume()
            self.registry.prune_exhausted()
            if self.context_registry is not None:
                self.context_registry.prune_exhausted()

        self._stats["requests_captured"] += 1
        self._publish(NetworkEventType.REQUEST_STARTED, request)

        pending = _PendingRequest(
            request=request,
            matches=matches,
            transport=transport,
            future=asyncio.get_running_loop().create_future(),
            started=time.monotonic(),
        )
        self._queue.put_nowait(pending)
        return await asyncio.shield(pending.future)

    def _snapshot_matches(self, request: CapturedRequest) -> List[HandlerRegistration]:
        registries = [self.registry]
        if self.context_registry is not None:
            if self.scope_precedence is RouteScope.CONTEXT:
                registries.insert(0, self.context_registry)
            else:
                registries.append(self.context_registry)

        matches: List[HandlerRegistration] = []
        for registry in registries:
            matches.extend(registry.match(request.url, request.method, on_error=self._report))
        return matches

    async def _dispatch_loop(self) -> None:
        """Start a handler task for each queued request, in capture order."""
        while True:
            pending = await self._queue.get()
            task = asyncio.create_task(self._process(pending))
            self._handler_tasks[task] = pending
            task.add_done_callback(lambda done: self._handler_tasks.pop(done, None))
            self._queue.task_done()

    async def _process(self, pending: _PendingRequest) -> None:
        request = pending.request
        registration = pending.matches[0] if pending.matches else None
        context = RequestContext(
            request,
            pending.transport,
            fetch_timeout=self.fetch_timeout,
            registration=registration,
            default_abort_reason=self.default_abort_reason,
        )
        error: Optional[BaseException] = None

        with LogContext(self.correlation_id, self.page_id, request.request_id):
            try:
                if registration is None:
                    self._stats["requests_passed_through"] += 1
                    context.continue_()
                else:
                    self._stats["requests_handled"] += 1
                    error = await self._run_handler(context, registration)

                outcome = await self._execute(context, pending, registration, error)

            except asyncio.CancelledError:
                context.force_abort(AbortReason.CONTEXT_CLOSED)
                self._finish(pending, InterceptionOutcome(
                    request=request,
                    resolution=context.resolution,
                    failure=AbortReason.CONTEXT_CLOSED,
                    handled_by=registration,
                    error=error,
                    duration_ms=_elapsed_ms(pending.started),
                ))
                raise

            except Exception as e:
                # Transport bug or similar; the request must still end
                logger.error(f"Error executing {request.method} {request.url}: {e}", exc_info=True)
                context.force_abort(AbortReason.FAILED)
                outcome = InterceptionOutcome(
                    request=request,
                    resolution=context.resolution,
                    failure=AbortReason.FAILED,
                    handled_by=registration,
                    error=e,
                    duration_ms=_elapsed_ms(pending.started),
                )

            self._finish(pending, outcome)

    async def _run_handler(self, context: RequestContext,
                           registration: HandlerRegistration) -> Optional[InterceptionError]:
        """Invoke the handler; returns the reported error, if any."""
        request = context.request
        try:
            result = registration.invoke(context)
            if inspect.isawaitable(result):
                await result
            if not context.resolved:
                raise HandlerDidNotResolveError(request)
            return None

        except HandlerDidNotResolveError as e:
            error: InterceptionError = e

        except Exception as e:
            error = HandlerExecutionError(
                request, e, registration_id=registration.id, pattern=registration.pattern.describe()
            )
            error.__cause__ = e

        self._stats["handler_errors"] += 1
        if context.force_abort(AbortReason.HANDLER_ERROR):
            logger.warning(f"Handler failed, aborting {request.method} {request.url}: {error}")
        else:
            logger.warning(f"Handler failed after resolving {request.method} {request.url}: {error}")
        self._report(error)
        return error

    async def _execute(self,
                       context: RequestContext,
                       pending: _PendingRequest,
                       registration: Optional[HandlerRegistration],
                       error: Optional[BaseException]) -> InterceptionOutcome:
        """Carry out the recorded resolution."""
        resolution = context.resolution
        response: Optional[ResponseDescriptor] = None
        failure: Optional[AbortReason] = None

        if resolution.kind is ResolutionKind.ABORT:
            failure = resolution.abort_reason
            self._stats["requests_aborted"] += 1

        elif resolution.kind is ResolutionKind.FULFILL:
            response = resolution.response
            self._stats["requests_fulfilled"] += 1

        else:
            target = resolution.overrides.apply(context.request) if resolution.overrides else context.request
            response = await pending.transport.send(target, timeout=self.fetch_timeout)
            self._stats["requests_continued"] += 1
            if response.failed:
                failure = AbortReason.parse(response.error)

        return InterceptionOutcome(
            request=context.request,
            resolution=resolution,
            response=response,
            failure=failure,
            handled_by=registration,
            error=error,
            duration_ms=_elapsed_ms(pending.started),
        )

    def _finish(self, pending: _PendingRequest, outcome: InterceptionOutcome) -> None:
        if outcome.failure is not None:
            self._publish(NetworkEventType.REQUEST_FAILED, outcome.request, outcome)
        else:
            self._publish(NetworkEventType.REQUEST_FINISHED, outcome.request, outcome)

        if not pending.future.done():
            pending.future.set_result(outcome)

    def _publish(self, event_type: NetworkEventType, request: CapturedRequest,
                 outcome: Optional[InterceptionOutcome] = None) -> None:
        if self.event_bus is None:
            return
        event = NetworkEvent(type=event_type, request=request, page_id=self.page_id)
        if outcome is not None:
            event.response = outcome.response
            event.failure = outcome.failure
            event.duration_ms = outcome.duration_ms
            event.resolution = outcome.resolution.kind.value if outcome.resolution else None
            event.handled_by = outcome.handled_by.id if outcome.handled_by else None
        self.event_bus.publish(event)

    def _report(self, error: InterceptionError) -> None:
        if isinstance(error, PatternEvaluationError):
            logger.warning(str(error))
        if self.failure_reporter is not None:
            self.failure_reporter(error)

    async def wait_for_response(self, match: ResponseMatch = None,
                                timeout: Optional[float] = None) -> Tuple[ResponseDescriptor, CapturedRequest]:
        """Wait for the next finished request of this page.

        ``match`` is a glob or compiled regex over the request URL, or a
        callable taking ``(response, request)``.
        """
        if self.event_bus is None:
            raise ScopeClosedError(f"Page {self.page_id} has no event bus")
        predicate = response_predicate(match, self.registry.base_url, self.page_id)
        event = await self.event_bus.wait_for_next(
            predicate, self.wait_timeout if timeout is None else timeout,
            NetworkEventType.REQUEST_FINISHED,
        )
        return event.response, event.request

    def expect_response(self, match: ResponseMatch = None) -> asyncio.Future:
        """Arm a response waiter now; await the returned future later."""
        if self.event_bus is None:
            raise ScopeClosedError(f"Page {self.page_id} has no event bus")
        return self.event_bus.expect(
            response_predicate(match, self.registry.base_url, self.page_id),
            NetworkEventType.REQUEST_FINISHED,
        )

    async def close(self) -> None:
        """Tear the page scope down.

        Page registrations are cleared and every request that has not
        finished yet is aborted with ``context-closed``.
        """
        if self._closed:
            return
        self._closed = True
        self.registry.clear()

        if self._dispatch_task is not None:
            self._dispatch_task.cancel()
            try:
                await self._dispatch_task
            except asyncio.CancelledError:
                pass

        while not self._queue.empty():
            self._close_pending(self._queue.get_nowait())

        in_flight = list(self._handler_tasks.items())
        for task, _ in in_flight:
            task.cancel()
        if in_flight:
            await asyncio.gather(*(task for task, _ in in_flight), return_exceptions=True)
        # Tasks cancelled before their first step never reach their handler
        for _, pending in in_flight:
            self._close_pending(pending)

        logger.debug(f"Page {self.page_id} closed")

    def _close_pending(self, pending: _PendingRequest) -> None:
        if pending.future.done():
            return
        self._finish(pending, InterceptionOutcome(
            request=pending.request,
            resolution=Resolution(
                kind=ResolutionKind.ABORT, abort_reason=AbortReason.CONTEXT_CLOSED, forced=True
            ),
            failure=AbortReason.CONTEXT_CLOSED,
            duration_ms=_elapsed_ms(pending.started),
        ))

    def get_statistics(self) -> dict:
        return {
            **self._stats,
            "page_routes": len(self.registry),
            "in_flight": len(self._handler_tasks),
            "queued": self._queue.qsize(),
        }

    def _ensure_open(self) -> None:
        if self._closed:
            raise ScopeClosedError(f"Page {self.page_id} is closed")


def response_predicate(match: ResponseMatch, base_url: Optional[str] = None,
                       page_id: Optional[str] = None) -> Callable[[NetworkEvent], bool]:
    """Turn a URL pattern or ``(response, request)`` callable into an event predicate."""
    url_pattern: Optional[RoutePattern] = None
    callback = None
    if isinstance(match, (str, RoutePattern, re.Pattern)):
        url_pattern = RoutePattern.compile(match, base_url)
    elif match is not None:
        callback = match

    def predicate(event: NetworkEvent) -> bool:
        if page_id is not None and event.page_id != page_id:
            return False
        if url_pattern is not None:
            return url_pattern.matches(event.request.url)
        if callback is not None:
            return bool(callback(event.response, event.request))
        return True

    return predicate


def _with_page(request: CapturedRequest, page_id: str) -> CapturedRequest:
    return replace(request, page_id=page_id)


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 3)
