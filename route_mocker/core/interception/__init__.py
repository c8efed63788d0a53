"""Request interception: matching, handler dispatch and resolution."""

from .matcher import MatchStrategy, RoutePattern, glob_to_regex
from .page import InterceptionOutcome, PageInterceptor
from .registry import HandlerRegistration, HandlerRegistry, RouteScope
from .request_context import (
    ContinueOverrides,
    NetworkTransport,
    RequestContext,
    Resolution,
    ResolutionKind,
)
from .response_builder import UNSET, ResponseBuilder
from .session import HandlerFailureChannel, InterceptionSession, gather_outcomes

__all__ = [
    "ContinueOverrides",
    "HandlerFailureChannel",
    "HandlerRegistration",
    "HandlerRegistry",
    "InterceptionOutcome",
    "InterceptionSession",
    "MatchStrategy",
    "NetworkTransport",
    "PageInterceptor",
    "RequestContext",
    "Resolution",
    "ResolutionKind",
    "ResponseBuilder",
    "RoutePattern",
    "RouteScope",
    "UNSET",
    "gather_outcomes",
    "glob_to_regex",
]
