"""Per-request view handed to route handlers.

A ``RequestContext`` wraps one captured request. The handler resolves it
exactly once with ``abort()``, ``continue_()`` or ``fulfill()``; those calls
only record the decision and are therefore synchronous. ``fetch()`` performs
the real network call without resolving, so a handler can inspect or
transform the real response before fulfilling with it.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Protocol, Union

from ..models.http import AbortReason, CapturedRequest, HeadersInput, ResponseDescriptor
from ...utils.logging import get_logger
from ..errors import RequestAlreadyResolvedError
from .response_builder import UNSET, ResponseBuilder

logger = get_logger(__name__)


class NetworkTransport(Protocol):
    """Real-network capability supplied by the host runtime.

    Implementations return a failed ``ResponseDescriptor`` (``status`` is
    None) for network errors instead of raising.
    """

    async def send(self, request: CapturedRequest,
                   *, timeout: Optional[float] = None) -> ResponseDescriptor:
        ...


class ResolutionKind(str, Enum):
    """Terminal action a request context was resolved with."""

    ABORT = "abort"
    CONTINUE = "continue"
    FULFILL = "fulfill"


@dataclass(frozen=True)
class ContinueOverrides:
    """Request fields replaced by ``continue_()``."""

    method: Optional[str] = None
    url: Optional[str] = None
    headers: HeadersInput = None
    body: Any = None

    @property
    def empty(self) -> bool:
        return all(value is None for value in (self.method, self.url, self.headers, self.body))

    def apply(self, request: CapturedRequest) -> CapturedRequest:
        return request.with_overrides(self.method, self.url, self.headers, self.body)


@dataclass(frozen=True)
class Resolution:
    """The terminal decision for one request."""

    kind: ResolutionKind
    abort_reason: Optional[AbortReason] = None
    overrides: Optional[ContinueOverrides] = None
    response: Optional[ResponseDescriptor] = None
    forced: bool = False


class RequestContext:
    """Mutable handle on one intercepted request."""

    def __init__(self,
                 request: CapturedRequest,
                 transport: NetworkTransport,
                 fetch_timeout: Optional[float] = None,
                 registration: Any = None,
                 default_abort_reason: Union[AbortReason, str] = AbortReason.FAILED):
        """Initialize the context.

        Args:
            request: Captured request snapshot
            transport: Real-network capability used by ``fetch()``
            fetch_timeout: Default timeout in seconds for ``fetch()``
            registration: Registration whose handler receives this context
            default_abort_reason: Reason used by ``abort()`` without arguments
        """
        self._request = request
        self._transport = transport
        self._fetch_timeout = fetch_timeout
        self._default_abort_reason = AbortReason.parse(default_abort_reason)
        self._resolution: Optional[Resolution] = None
        self.registration = registration
        self.fetch_count = 0

    @property
    def request(self) -> CapturedRequest:
        return self._request

    @property
    def resolution(self) -> Optional[Resolution]:
        return self._resolution

    @property
    def resolved(self) -> bool:
        return self._resolution is not None

    def abort(self, reason: Union[AbortReason, str, None] = None) -> None:
        """Fail the request with an error classification.

        Without ``reason`` the configured default (``failed``) is used.
        """
        reason = self._default_abort_reason if reason is None else AbortReason.parse(reason)
        self._resolve(Resolution(kind=ResolutionKind.ABORT, abort_reason=reason), "abort")

    def continue_(self,
                  *,
                  method: Optional[str] = None,
                  url: Optional[str] = None,
                  headers: HeadersInput = None,
                  body: Any = None) -> None:
        """Send the request to the real network, optionally modified.

        Each given field replaces the original one; ``headers`` replaces the
        whole header list.
        """
        overrides = ContinueOverrides(method=method, url=url, headers=headers, body=body)
        self._resolve(Resolution(kind=ResolutionKind.CONTINUE, overrides=overrides), "continue_")

    def fulfill(self,
                response: Optional[ResponseDescriptor] = None,
                *,
                status: Optional[int] = None,
                headers: HeadersInput = None,
                body: Any = UNSET,
                json: Any = UNSET,
                content_type: Optional[str] = None,
                path: Union[str, Path, None] = None) -> ResponseDescriptor:
        """Answer the request without touching the real network.

        With ``response`` (typically from ``fetch()``) unspecified fields are
        inherited from it; otherwise the status defaults to 200.

        Returns:
            The response the request was fulfilled with
        """
        self._ensure_unresolved("fulfill")
        if response is not None:
            descriptor = ResponseBuilder.from_response(
                response, status=status, headers=headers, body=body,
                json=json, content_type=content_type, path=path,
            )
        else:
            descriptor = ResponseBuilder.build(
                status=200 if status is None else status, headers=headers, body=body,
                json=json, content_type=content_type, path=path,
            )
        self._resolve(Resolution(kind=ResolutionKind.FULFILL, response=descriptor), "fulfill")
        return descriptor

    async def fetch(self,
                    *,
                    method: Optional[str] = None,
                    url: Optional[str] = None,
                    headers: HeadersInput = None,
                    body: Any = None,
                    timeout: Optional[float] = None) -> ResponseDescriptor:
        """Perform the real network call without resolving the request.

        Network failures come back as a descriptor with ``status`` None;
        the handler decides whether to abort or fulfill anyway.
        """
        self._ensure_unresolved("fetch")
        target = self._request.with_overrides(method, url, headers, body)
        logger.debug(f"Fetching real response for {target.method} {target.url}")

        response = await self._transport.send(
            target, timeout=timeout if timeout is not None else self._fetch_timeout
        )
        self.fetch_count += 1

        if response.failed:
            logger.info(f"Real fetch failed for {target.method} {target.url}: {response.error}")
        return response

    def force_abort(self, reason: Union[AbortReason, str]) -> bool:
        """Abort on behalf of the layer if the handler has not resolved.

        Returns:
            True if this call resolved the context
        """
        if self._resolution is not None:
            return False
        self._resolution = Resolution(
            kind=ResolutionKind.ABORT, abort_reason=AbortReason.parse(reason), forced=True
        )
        return True

    def _ensure_unresolved(self, attempted: str) -> None:
        if self._resolution is not None:
            previous = "continue_" if self._resolution.kind is ResolutionKind.CONTINUE \
                else self._resolution.kind.value
            raise RequestAlreadyResolvedError(self._request, previous, attempted)

    def _resolve(self, resolution: Resolution, attempted: str) -> None:
        self._ensure_unresolved(attempted)
        self._resolution = resolution
        logger.debug(
            f"Resolved {self._request.method} {self._request.url} with {resolution.kind.value}"
        )

    def __repr__(self) -> str:
        state = self._resolution.kind.value if self._resolution else "pending"
        return f"<RequestContext {self._request.method} {self._request.url} {state}>"
