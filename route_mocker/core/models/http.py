"""HTTP data models shared by the interception layer and its transports.

``Headers`` keeps header order and original name casing while comparing
names case-insensitively. ``CapturedRequest`` is the read-only snapshot a
handler sees, and ``ResponseDescriptor`` is what a handler fulfills with or
receives back from a real fetch.
"""

import base64
import json
import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union
from urllib.parse import SplitResult, parse_qs, urlsplit

HeadersInput = Union[
    "Headers",
    Mapping[str, str],
    Iterable[Tuple[str, str]],
    Iterable[Mapping[str, str]],
    None,
]


class AbortReason(str, Enum):
    """Error classifications a request can be aborted with."""

    ABORTED = "aborted"
    ACCESS_DENIED = "access-denied"
    ADDRESS_UNREACHABLE = "address-unreachable"
    BLOCKED_BY_CLIENT = "blocked-by-client"
    BLOCKED_BY_RESPONSE = "blocked-by-response"
    CONNECTION_ABORTED = "connection-aborted"
    CONNECTION_CLOSED = "connection-closed"
    CONNECTION_FAILED = "connection-failed"
    CONNECTION_REFUSED = "connection-refused"
    CONNECTION_RESET = "connection-reset"
    INTERNET_DISCONNECTED = "internet-disconnected"
    NAME_NOT_RESOLVED = "name-not-resolved"
    TIMED_OUT = "timed-out"
    FAILED = "failed"

    # Raised by the layer itself, never by the network
    HANDLER_ERROR = "handler-error"
    CONTEXT_CLOSED = "context-closed"

    @classmethod
    def parse(cls, value: Union["AbortReason", str, None]) -> "AbortReason":
        """Accept enum members, dashed names, or Playwright's undashed codes."""
        if value is None:
            return cls.FAILED
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("_", "-")
        for member in cls:
            if normalized in (member.value, member.value.replace("-", "")):
                return member
        raise ValueError(f"Unknown abort reason: {value!r}")

    @property
    def error_code(self) -> str:
        """Code understood by Playwright's ``route.abort()``."""
        if self in (AbortReason.HANDLER_ERROR, AbortReason.CONTEXT_CLOSED):
            return "failed"
        return self.value.replace("-", "")


class Headers:
    """Ordered, immutable header list with case-insensitive lookup."""

    __slots__ = ("_items",)

    def __init__(self, headers: HeadersInput = None):
        items: List[Tuple[str, str]] = []
        if isinstance(headers, Headers):
            items = list(headers._items)
        elif isinstance(headers, Mapping):
            items = [(str(k), str(v)) for k, v in headers.items()]
        elif headers is not None:
            for entry in headers:
                if isinstance(entry, Mapping):
                    items.append((str(entry["name"]), str(entry["value"])))
                else:
                    name, value = entry
                    items.append((str(name), str(value)))
        self._items: Tuple[Tuple[str, str], ...] = tuple(items)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        values = self.get_all(name)
        if not values:
            return default
        separator = "\n" if name.lower() == "set-cookie" else ", "
        return separator.join(values)

    def get_all(self, name: str) -> List[str]:
        key = name.lower()
        return [value for header, value in self._items if header.lower() == key]

    def __getitem__(self, name: str) -> str:
        value = self.get(name)
        if value is None:
            raise KeyError(name)
        return value

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        key = name.lower()
        return any(header.lower() == key for header, _ in self._items)

    def __iter__(self) -> Iterator[str]:
        return (header for header, _ in self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Headers):
            return self._items == other._items
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._items)

    def __repr__(self) -> str:
        return f"Headers({list(self._items)!r})"

    def items(self) -> List[Tuple[str, str]]:
        return list(self._items)

    def with_header(self, name: str, value: str) -> "Headers":
        """Return a copy where ``name`` has exactly one value.

        The header keeps the position of its first occurrence; new headers
        are appended.
        """
        key = name.lower()
        items: List[Tuple[str, str]] = []
        replaced = False
        for header, existing in self._items:
            if header.lower() != key:
                items.append((header, existing))
            elif not replaced:
                items.append((name, str(value)))
                replaced = True
        if not replaced:
            items.append((name, str(value)))
        return Headers(items)

    def without(self, *names: str) -> "Headers":
        keys = {name.lower() for name in names}
        return Headers([(h, v) for h, v in self._items if h.lower() not in keys])

    def merged(self, overrides: HeadersInput) -> "Headers":
        """Merge ``overrides`` over these headers, override values winning."""
        result = self
        for name, value in Headers(overrides).items():
            result = result.with_header(name, value)
        return result

    def to_dict(self) -> Dict[str, str]:
        """Lower-cased name to joined value, in first-seen order."""
        result: Dict[str, str] = {}
        for header, _ in self._items:
            key = header.lower()
            if key not in result:
                result[key] = self.get(key)
        return result

    def to_list(self) -> List[Dict[str, str]]:
        return [{"name": h, "value": v} for h, v in self._items]


def encode_body(body: Any) -> Tuple[Optional[bytes], Optional[str]]:
    """Encode a handler-supplied body.

    Returns the encoded bytes and the content type implied by the value
    (``None`` for raw bytes).
    """
    if body is None:
        return None, None
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body), None
    if isinstance(body, str):
        return body.encode("utf-8"), "text/plain; charset=utf-8"
    return encode_json(body), "application/json"


def encode_json(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def normalize_url(url: str) -> str:
    """Lower-case scheme and host and drop the fragment."""
    parts = urlsplit(url)
    if not parts.scheme:
        return url.split("#", 1)[0]
    path = parts.path or ("/" if parts.netloc else "")
    return SplitResult(
        parts.scheme.lower(), parts.netloc.lower(), path, parts.query, ""
    ).geturl()


def generate_request_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class CapturedRequest:
    """Read-only snapshot of one outgoing page request."""

    method: str
    url: str
    headers: Headers = field(default_factory=Headers)
    body: Optional[bytes] = None
    resource_type: str = "other"
    request_id: str = field(default_factory=generate_request_id)
    page_id: Optional[str] = None
    is_navigation_request: bool = False
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        object.__setattr__(self, "method", self.method.upper())
        if not isinstance(self.headers, Headers):
            object.__setattr__(self, "headers", Headers(self.headers))
        if self.body is not None and not isinstance(self.body, bytes):
            encoded, _ = encode_body(self.body)
            object.__setattr__(self, "body", encoded)

    @property
    def parsed_url(self) -> SplitResult:
        return urlsplit(self.url)

    @property
    def post_data(self) -> Optional[str]:
        if self.body is None:
            return None
        return self.body.decode("utf-8", errors="replace")

    def post_data_json(self) -> Any:
        """Parse the body as JSON, or as a form when the request says so.

        Returns ``None`` when the request has no body.
        """
        if self.body is None:
            return None
        content_type = (self.headers.get("content-type") or "").lower()
        if "application/x-www-form-urlencoded" in content_type:
            parsed = parse_qs(self.post_data, keep_blank_values=True)
            return {key: values[-1] for key, values in parsed.items()}
        return json.loads(self.body)

    def query_params(self) -> Dict[str, str]:
        parsed = parse_qs(self.parsed_url.query, keep_blank_values=True)
        return {key: values[-1] for key, values in parsed.items()}

    def with_overrides(self,
                       method: Optional[str] = None,
                       url: Optional[str] = None,
                       headers: HeadersInput = None,
                       body: Any = None) -> "CapturedRequest":
        """Copy of this request with the given fields replaced."""
        changes: Dict[str, Any] = {}
        if method is not None:
            changes["method"] = method
        if url is not None:
            changes["url"] = url
        if headers is not None:
            changes["headers"] = Headers(headers)
        if body is not None:
            changes["body"], _ = encode_body(body)
        return replace(self, **changes) if changes else self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "page_id": self.page_id,
            "method": self.method,
            "url": self.url,
            "headers": self.headers.to_list(),
            "body": base64.b64encode(self.body).decode("ascii") if self.body else None,
            "resource_type": self.resource_type,
            "is_navigation_request": self.is_navigation_request,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class ResponseDescriptor:
    """A response a request context can be fulfilled with.

    ``status`` is ``None`` when a real fetch failed; ``error`` then carries
    the failure classification.
    """

    status: Optional[int]
    headers: Headers = field(default_factory=Headers)
    body: bytes = b""
    from_real_fetch: bool = False
    url: Optional[str] = None
    status_text: str = ""
    error: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.headers, Headers):
            object.__setattr__(self, "headers", Headers(self.headers))
        if self.body is None:
            object.__setattr__(self, "body", b"")

    @classmethod
    def failure(cls, reason: Union[AbortReason, str], url: Optional[str] = None) -> "ResponseDescriptor":
        return cls(
            status=None,
            from_real_fetch=True,
            url=url,
            error=AbortReason.parse(reason).value,
        )

    @property
    def failed(self) -> bool:
        return self.status is None

    @property
    def ok(self) -> bool:
        return self.status is not None and 200 <= self.status < 300

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get("content-type")

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.body)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "status_text": self.status_text,
            "url": self.url,
            "headers": self.headers.to_list(),
            "body": base64.b64encode(self.body).decode("ascii") if self.body else None,
            "from_real_fetch": self.from_real_fetch,
            "error": self.error,
        }
