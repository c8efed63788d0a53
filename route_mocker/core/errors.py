"""Exceptions raised by the interception layer."""

from typing import Optional

from .models.http import CapturedRequest


class InterceptionError(Exception):
    """Base class for interception layer errors."""


class InvalidPatternError(InterceptionError, ValueError):
    """A route pattern is neither a glob, a regex, nor a predicate."""


class InvalidResponseError(InterceptionError, ValueError):
    """A fulfillment response cannot be built from the supplied values."""


class ScopeClosedError(InterceptionError):
    """The page or session owning an operation has already been closed."""


class WaitTimeoutError(InterceptionError, TimeoutError):
    """No network event satisfied a wait predicate in time."""


class RequestAlreadyResolvedError(InterceptionError):
    """A terminal operation was called on an already resolved request."""

    def __init__(self, request: CapturedRequest, previous: str, attempted: str):
        self.request = request
        self.previous = previous
        self.attempted = attempted
        super().__init__(
            f"Cannot {attempted}() {request.method} {request.url}: "
            f"request was already resolved with {previous}()"
        )


class HandlerExecutionError(InterceptionError):
    """A route handler raised while handling a request."""

    def __init__(self,
                 request: CapturedRequest,
                 original: BaseException,
                 registration_id: Optional[str] = None,
                 pattern: Optional[str] = None):
        self.request = request
        self.original = original
        self.registration_id = registration_id
        self.pattern = pattern
        route = f" (route {pattern})" if pattern else ""
        super().__init__(
            f"Handler for {request.method} {request.url}{route} failed: "
            f"{type(original).__name__}: {original}"
        )


class HandlerDidNotResolveError(InterceptionError):
    """A route handler returned without aborting, continuing or fulfilling."""

    def __init__(self, request: CapturedRequest):
        self.request = request
        super().__init__(
            f"Handler for {request.method} {request.url} returned without "
            f"calling abort(), continue_() or fulfill()"
        )


class PatternEvaluationError(InterceptionError):
    """A predicate route pattern raised while being evaluated."""

    def __init__(self, url: str, pattern: str, original: BaseException):
        self.url = url
        self.pattern = pattern
        self.original = original
        super().__init__(f"Route predicate {pattern} raised for {url}: {original}")
