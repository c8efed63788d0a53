"""Ordered registry of route handlers for one page or browsing context."""

import itertools
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, FrozenSet, Iterable, List, Optional, Tuple, Union

from ..models.http import normalize_url
from ..state.mock_store import MockStore
from ...utils.logging import get_logger
from ..errors import PatternEvaluationError
from .matcher import PatternInput, RoutePattern

logger = get_logger(__name__)

RouteHandler = Callable[..., Any]

_sequence = itertools.count()


class RouteScope(str, Enum):
    """Lifetime boundary of a handler registration."""

    PAGE = "page"
    CONTEXT = "context"


@dataclass(eq=False)
class HandlerRegistration:
    """A registered (pattern, handler) pair.

    Instances double as the handle returned by ``register()``.
    """

    pattern: RoutePattern
    callback: RouteHandler
    scope: RouteScope
    owner_id: str
    methods: Optional[FrozenSet[str]] = None
    store: Optional[MockStore] = None
    times: Optional[int] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    registered_at: float = field(default_factory=time.time)
    sequence: int = field(default_factory=lambda: next(_sequence))
    call_count: int = 0
    active: bool = True

    @property
    def exhausted(self) -> bool:
        return self.times is not None and self.call_count >= self.times

    def accepts(self, url: str, method: str) -> bool:
        """Check method filter and pattern; predicate errors propagate."""
        if not self.active or self.exhausted:
            return False
        if self.methods is not None and method.upper() not in self.methods:
            return False
        return self.pattern.matches(url)

    def consume(self) -> None:
        """Count one delivered request against the ``times`` limit."""
        self.call_count += 1

    def invoke(self, context: Any) -> Any:
        """Call the handler, passing the bound store when there is one."""
        if self.store is not None:
            return self.callback(context, self.store)
        return self.callback(context)

    def describe(self) -> str:
        methods = ",".join(sorted(self.methods)) if self.methods else "*"
        return f"{self.scope.value}:{methods} {self.pattern.describe()}"


class HandlerRegistry:
    """Append-ordered collection of handler registrations.

    Matching scans newest-first, so a registration made later (a test
    specific override) takes precedence over an earlier, broader one.
    """

    def __init__(self, scope: RouteScope, owner_id: str, base_url: Optional[str] = None):
        """Initialize the registry.

        Args:
            scope: Scope every registration in this registry belongs to
            owner_id: Identifier of the owning page or context
            base_url: Base URL relative glob patterns resolve against
        """
        self.scope = scope
        self.owner_id = owner_id
        self.base_url = base_url
        self._entries: List[HandlerRegistration] = []

    def register(self,
                 pattern: PatternInput,
                 callback: RouteHandler,
                 *,
                 method: Union[str, Iterable[str], None] = None,
                 store: Optional[MockStore] = None,
                 times: Optional[int] = None) -> HandlerRegistration:
        """Register a handler for requests matching ``pattern``.

        Args:
            pattern: Glob, compiled regex or predicate over the parsed URL
            callback: Handler called with a request context (and ``store``)
            method: Optional HTTP method or methods the handler is limited to
            store: Mock store passed to the handler as second argument
            times: Maximum number of requests the handler will receive

        Returns:
            The registration, usable as a handle for ``unregister()``
        """
        if not callable(callback):
            raise TypeError("Route handler must be callable")
        if times is not None and times < 1:
            raise ValueError("times must be a positive integer")

        registration = HandlerRegistration(
            pattern=RoutePattern.compile(pattern, self.base_url),
            callback=callback,
            scope=self.scope,
            owner_id=self.owner_id,
            methods=_normalize_methods(method),
            store=store,
            times=times,
        )
        self._entries.append(registration)
        logger.debug(f"Registered route {registration.describe()} on {self.owner_id}")
        return registration

    def unregister(self, handle: HandlerRegistration) -> bool:
        """Remove a registration; returns False if it was not registered."""
        if handle not in self._entries:
            return False
        self._entries.remove(handle)
        handle.active = False
        logger.debug(f"Unregistered route {handle.describe()} on {self.owner_id}")
        return True

    def unregister_pattern(self, pattern: PatternInput,
                           callback: Optional[RouteHandler] = None) -> int:
        """Remove registrations made with ``pattern`` (and ``callback``).

        Returns:
            Number of registrations removed
        """
        removed = [
            entry for entry in self._entries
            if entry.pattern.is_same_source(pattern)
            and (callback is None or entry.callback is callback)
        ]
        for entry in removed:
            self.unregister(entry)
        return len(removed)

    def clear(self) -> int:
        count = len(self._entries)
        for entry in self._entries:
            entry.active = False
        self._entries.clear()
        if count:
            logger.debug(f"Cleared {count} {self.scope.value} routes on {self.owner_id}")
        return count

    def match(self, url: str, method: str,
              on_error: Optional[Callable[[PatternEvaluationError], None]] = None
              ) -> List[HandlerRegistration]:
        """Return matching registrations, most recently registered first.

        Args:
            url: Request URL
            method: Request method
            on_error: Receives predicate failures; the failing registration
                is skipped. Without it the failure is raised.
        """
        normalized = normalize_url(url)
        matches = []
        for entry in reversed(self._entries):
            try:
                if entry.accepts(normalized, method):
                    matches.append(entry)
            except Exception as e:
                error = PatternEvaluationError(url, entry.pattern.describe(), e)
                if on_error is None:
                    raise error from e
                on_error(error)
        return matches

    def prune_exhausted(self) -> None:
        for entry in [e for e in self._entries if e.exhausted]:
            self.unregister(entry)

    @property
    def registrations(self) -> Tuple[HandlerRegistration, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


def _normalize_methods(method: Union[str, Iterable[str], None]) -> Optional[FrozenSet[str]]:
    if method is None:
        return None
    if isinstance(method, str):
        return frozenset({method.upper()})
    return frozenset(m.upper() for m in method)
