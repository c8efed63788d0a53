"""Network event bus with non-blocking publish and isolated subscribers.

The bus reports the lifecycle of every intercepted request, mocked or not:
``request-started`` when the request is captured, then exactly one of
``request-finished`` or ``request-failed``. Publishing only enqueues the
event; a background processor delivers it to subscribers and pending waiters
in publish order, so a slow or failing subscriber never delays a request.
"""

import asyncio
import itertools
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..errors import ScopeClosedError, WaitTimeoutError
from ..models.http import AbortReason, CapturedRequest, ResponseDescriptor
from ...utils.logging import get_logger

logger = get_logger(__name__)

EventPredicate = Callable[["NetworkEvent"], Any]
EventCallback = Callable[["NetworkEvent"], Any]


class NetworkEventType(Enum):
    """Lifecycle events of an intercepted request."""
    REQUEST_STARTED = "request-started"
    REQUEST_FINISHED = "request-finished"
    REQUEST_FAILED = "request-failed"


@dataclass
class NetworkEvent:
    """One lifecycle event for one request."""
    type: NetworkEventType
    request: CapturedRequest
    page_id: Optional[str] = None
    response: Optional[ResponseDescriptor] = None
    failure: Optional[AbortReason] = None
    duration_ms: Optional[float] = None
    resolution: Optional[str] = None
    handled_by: Optional[str] = None
    sequence: int = 0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)

    @property
    def status(self) -> Optional[int]:
        return self.response.status if self.response is not None else None

    @property
    def url(self) -> str:
        return self.request.url

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sequence": self.sequence,
            "type": self.type.value,
            "page_id": self.page_id,
            "timestamp": self.timestamp,
            "request": self.request.to_dict(),
            "response": self.response.to_dict() if self.response else None,
            "failure": self.failure.value if self.failure else None,
            "duration_ms": self.duration_ms,
            "resolution": self.resolution,
            "handled_by": self.handled_by,
        }


@dataclass
class SubscriberFailure:
    """An exception raised by a subscriber, kept apart from the pipeline."""
    event: NetworkEvent
    subscriber: str
    error: BaseException


@dataclass
class _Waiter:
    predicate: Optional[EventPredicate]
    event_type: Optional[NetworkEventType]
    future: asyncio.Future
    # Last sequence published when the waiter was armed
    after: int = 0


class NetworkEventBus:
    """Publish/subscribe bus for network lifecycle events."""

    def __init__(self, history_size: int = 1000):
        self._subscribers: Dict[Optional[NetworkEventType], List[EventCallback]] = defaultdict(list)
        self._queue: asyncio.Queue = asyncio.Queue()
        self._waiters: List[_Waiter] = []
        self._sequence = itertools.count(1)
        self._last_sequence = 0
        self._running = False
        self._closed = False
        self._processor_task: Optional[asyncio.Task] = None
        self._history: List[NetworkEvent] = []
        self._max_history = history_size
        self.subscriber_errors: List[SubscriberFailure] = []

        # Statistics
        self._stats = {
            "events_published": 0,
            "events_processed": 0,
            "subscriber_errors": 0,
            "waiters_resolved": 0,
        }
        self._type_counts: Dict[str, int] = defaultdict(int)

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the event processor."""
        if self._running:
            return
        if self._closed:
            raise ScopeClosedError("Network event bus has been stopped")

        self._running = True
        self._processor_task = asyncio.create_task(self._process_events())
        logger.debug("Network event bus started")

    async def stop(self) -> None:
        """Stop the processor and reject pending waiters."""
        if self._closed:
            return
        self._closed = True
        self._running = False

        if self._processor_task:
            self._processor_task.cancel()
            try:
                await self._processor_task
            except asyncio.CancelledError:
                pass

        for waiter in self._waiters:
            if not waiter.future.done():
                waiter.future.set_exception(ScopeClosedError("Network event bus stopped while waiting"))
        self._waiters.clear()

        logger.debug("Network event bus stopped")

    def subscribe(self, callback: EventCallback,
                  event_type: Optional[NetworkEventType] = None) -> None:
        """Subscribe to events of one type, or to all events.

        Args:
            callback: Sync or async callable receiving each event
            event_type: Type of events to receive, None for every type
        """
        self._subscribers[event_type].append(callback)
        logger.debug(f"New subscriber for {event_type.value if event_type else 'all events'}: "
                     f"{_callback_name(callback)}")

    def unsubscribe(self, callback: EventCallback,
                    event_type: Optional[NetworkEventType] = None) -> None:
        if callback in self._subscribers[event_type]:
            self._subscribers[event_type].remove(callback)
            logger.debug(f"Unsubscribed {_callback_name(callback)}")

    def publish(self, event: NetworkEvent) -> None:
        """Queue an event for delivery; never blocks."""
        if self._closed:
            logger.debug(f"Dropping {event.type.value} for {event.url}: event bus stopped")
            return
        self._last_sequence = event.sequence = next(self._sequence)
        self._queue.put_nowait(event)
        self._stats["events_published"] += 1

    async def flush(self) -> None:
        """Wait until every published event has been delivered."""
        if self._running:
            await self._queue.join()

    async def wait_for_next(self,
                            predicate: Optional[EventPredicate] = None,
                            timeout: Optional[float] = 30.0,
                            event_type: Optional[NetworkEventType] = NetworkEventType.REQUEST_FINISHED
                            ) -> NetworkEvent:
        """Wait for the first future event satisfying ``predicate``.

        Events published before the call never satisfy it.

        Args:
            predicate: Called with each candidate event; None accepts any
            timeout: Seconds to wait, None waits indefinitely
            event_type: Only consider events of this type, None for all

        Raises:
            WaitTimeoutError: If no event matched within ``timeout``
            ScopeClosedError: If the bus stops while waiting
        """
        future = self.expect(predicate, event_type)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            kind = event_type.value if event_type else "network event"
            raise WaitTimeoutError(f"No {kind} matched within {timeout}s") from None
        finally:
            self._discard_waiter(future)

    def expect(self,
               predicate: Optional[EventPredicate] = None,
               event_type: Optional[NetworkEventType] = NetworkEventType.REQUEST_FINISHED
               ) -> asyncio.Future:
        """Register a waiter immediately and return its future.

        Arm the waiter before triggering the traffic it waits for, then
        await the future (under ``asyncio.wait_for`` to bound it).
        """
        if self._closed:
            raise ScopeClosedError("Network event bus has been stopped")

        future = asyncio.get_running_loop().create_future()
        self._waiters.append(_Waiter(predicate, event_type, future, self._last_sequence))
        return future

    def _discard_waiter(self, future: asyncio.Future) -> None:
        self._waiters = [w for w in self._waiters if w.future is not future]

    async def wait_for_response(self,
                                predicate: Optional[Callable[[ResponseDescriptor, CapturedRequest], Any]] = None,
                                timeout: Optional[float] = 30.0) -> Tuple[ResponseDescriptor, CapturedRequest]:
        """Wait for a finished request; returns its response and request."""
        def matches(event: NetworkEvent) -> bool:
            return predicate is None or bool(predicate(event.response, event.request))

        event = await self.wait_for_next(matches, timeout, NetworkEventType.REQUEST_FINISHED)
        return event.response, event.request

    async def _process_events(self) -> None:
        """Deliver queued events until stopped."""
        while self._running:
            event = await self._queue.get()
            try:
                self._add_to_history(event)
                await self._handle_event(event)
                self._resolve_waiters(event)
                self._stats["events_processed"] += 1
                self._type_counts[event.type.value] += 1
            except Exception as e:
                logger.error(f"Error processing network event: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    async def _handle_event(self, event: NetworkEvent) -> None:
        subscribers = self._subscribers.get(event.type, []) + self._subscribers.get(None, [])
        for callback in subscribers:
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(event)
                else:
                    callback(event)
            except Exception as e:
                self._stats["subscriber_errors"] += 1
                self.subscriber_errors.append(SubscriberFailure(event, _callback_name(callback), e))
                logger.error(
                    f"Error in network event subscriber {_callback_name(callback)}: {e}",
                    exc_info=True
                )

    def _resolve_waiters(self, event: NetworkEvent) -> None:
        self._waiters = [w for w in self._waiters if not w.future.done()]
        for waiter in list(self._waiters):
            if event.sequence <= waiter.after:
                continue
            if waiter.event_type is not None and waiter.event_type != event.type:
                continue
            try:
                matched = waiter.predicate is None or waiter.predicate(event)
            except Exception as e:
                waiter.future.set_exception(e)
                continue
            if matched:
                waiter.future.set_result(event)
                self._stats["waiters_resolved"] += 1

    def _add_to_history(self, event: NetworkEvent) -> None:
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

    def get_history(self,
                    event_type: Optional[NetworkEventType] = None,
                    page_id: Optional[str] = None,
                    url_contains: Optional[str] = None,
                    limit: int = 100) -> List[NetworkEvent]:
        """Get delivered events with optional filtering, oldest first."""
        events = self._history

        if event_type:
            events = [e for e in events if e.type == event_type]

        if page_id:
            events = [e for e in events if e.page_id == page_id]

        if url_contains:
            events = [e for e in events if url_contains in e.url]

        return events[-limit:]

    def get_statistics(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "events_by_type": dict(self._type_counts),
            "queue_size": self._queue.qsize(),
            "history_size": len(self._history),
            "active_subscribers": sum(len(subs) for subs in self._subscribers.values()),
            "pending_waiters": len(self._waiters),
        }


def _callback_name(callback: Callable) -> str:
    return getattr(callback, "__qualname__", None) or repr(callback)
