"""Recording of intercepted traffic as HAR, and replay from HAR.

``NetworkRecorder`` listens on a ``NetworkEventBus`` and keeps every
finished or failed exchange. Recorded traffic can be written as a HAR 1.2
file, loaded back, and served to later runs through ``replay_handler()``.
"""

import base64
import json
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, Union

from ..models.http import AbortReason, CapturedRequest, Headers, ResponseDescriptor, normalize_url
from ...utils.logging import get_logger
from .event_bus import NetworkEvent, NetworkEventBus, NetworkEventType

logger = get_logger(__name__)

HAR_VERSION = "1.2"
CREATOR_NAME = "playwright-route-mocker"
CREATOR_VERSION = "0.1.0"

_TEXT_TYPES = ("text/", "json", "xml", "javascript", "x-www-form-urlencoded")


@dataclass
class RecordedExchange:
    """A request together with how it ended."""
    request: CapturedRequest
    response: Optional[ResponseDescriptor] = None
    failure: Optional[AbortReason] = None
    duration_ms: float = 0.0
    resolution: Optional[str] = None
    body_truncated: bool = False

    @property
    def key(self) -> Tuple[str, str]:
        return self.request.method, normalize_url(self.request.url)


class NetworkRecorder:
    """Keeps finished and failed exchanges published on an event bus."""

    def __init__(self, max_body_size: int = 1024 * 1024):
        """Initialize the recorder.

        Args:
            max_body_size: Response bodies larger than this many bytes are
                recorded without content
        """
        self.max_body_size = max_body_size
        self._exchanges: List[RecordedExchange] = []
        self._bus: Optional[NetworkEventBus] = None

    @property
    def exchanges(self) -> List[RecordedExchange]:
        return list(self._exchanges)

    def attach(self, bus: NetworkEventBus) -> None:
        """Start recording events published on ``bus``."""
        self.detach()
        bus.subscribe(self._on_event, NetworkEventType.REQUEST_FINISHED)
        bus.subscribe(self._on_event, NetworkEventType.REQUEST_FAILED)
        self._bus = bus

    def detach(self) -> None:
        if self._bus is not None:
            self._bus.unsubscribe(self._on_event, NetworkEventType.REQUEST_FINISHED)
            self._bus.unsubscribe(self._on_event, NetworkEventType.REQUEST_FAILED)
            self._bus = None

    def clear(self) -> None:
        self._exchanges.clear()

    def _on_event(self, event: NetworkEvent) -> None:
        response = event.response
        truncated = False
        if response is not None and len(response.body) > self.max_body_size:
            response = ResponseDescriptor(
                status=response.status,
                headers=response.headers.without("content-length"),
                body=b"",
                from_real_fetch=response.from_real_fetch,
                url=response.url,
                status_text=response.status_text,
            )
            truncated = True

        self._exchanges.append(RecordedExchange(
            request=event.request,
            response=response,
            failure=event.failure,
            duration_ms=event.duration_ms or 0.0,
            resolution=event.resolution,
            body_truncated=truncated,
        ))

    def to_har(self) -> Dict[str, Any]:
        """Build a HAR 1.2 document from the recorded exchanges."""
        return {
            "log": {
                "version": HAR_VERSION,
                "creator": {
                    "name": CREATOR_NAME,
                    "version": CREATOR_VERSION
                },
                "pages": [],
                "entries": [_exchange_to_entry(exchange) for exchange in self._exchanges]
            }
        }

    def export_har(self, output_path: Union[str, Path]) -> Path:
        """Write the recorded exchanges as a HAR file.

        Args:
            output_path: Path where to save the HAR file

        Returns:
            The path written
        """
        output_path = Path(output_path)
        logger.info(f"Exporting HAR file to: {output_path}")

        har_data = self.to_har()
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(har_data, f, indent=2)

        logger.info(f"HAR file exported with {len(har_data['log']['entries'])} entries")
        return output_path

    @classmethod
    def load_har(cls, har_path: Union[str, Path], max_body_size: int = 1024 * 1024) -> "NetworkRecorder":
        """Create a recorder holding the exchanges stored in a HAR file.

        Raises:
            ValueError: If the file is not a HAR document
        """
        har_path = Path(har_path)
        with open(har_path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        entries = data.get("log", {}).get("entries") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise ValueError(f"Not a HAR file: {har_path}")

        recorder = cls(max_body_size=max_body_size)
        for entry in entries:
            recorder._exchanges.append(_entry_to_exchange(entry))

        logger.info(f"Loaded {len(entries)} HAR entries from {har_path}")
        return recorder

    def replay_handler(self, strict: bool = False) -> Callable[[Any], None]:
        """Build a route handler serving the recorded responses.

        Exchanges are matched by method and normalized URL. Repeated
        requests receive the recorded responses in order, the last one
        being reused once they run out. Requests without a recording are
        continued to the network, or aborted with ``blocked-by-client``
        when ``strict`` is set.
        """
        recorded: Dict[Tuple[str, str], Deque[RecordedExchange]] = defaultdict(deque)
        for exchange in self._exchanges:
            recorded[exchange.key].append(exchange)

        def replay(context: Any) -> None:
            request = context.request
            queue = recorded.get((request.method, normalize_url(request.url)))
            if not queue:
                if strict:
                    logger.warning(f"No recording for {request.method} {request.url}")
                    context.abort(AbortReason.BLOCKED_BY_CLIENT)
                else:
                    context.continue_()
                return

            exchange = queue.popleft() if len(queue) > 1 else queue[0]
            if exchange.failure is not None or exchange.response is None:
                context.abort(exchange.failure or AbortReason.FAILED)
                return
            context.fulfill(
                status=exchange.response.status,
                headers=_replay_headers(exchange.response),
                body=exchange.response.body,
            )

        return replay


def _replay_headers(response: ResponseDescriptor) -> Headers:
    """Recorded headers, without a ``content-length`` the body no longer has."""
    length = response.headers.get("content-length")
    if length is not None and length.strip() != str(len(response.body)):
        return response.headers.without("content-length")
    return response.headers


def _timestamp(value: float) -> str:
    return datetime.fromtimestamp(value, timezone.utc).isoformat().replace("+00:00", "Z")


def _is_text(mime_type: str) -> bool:
    mime_type = mime_type.lower()
    return any(marker in mime_type for marker in _TEXT_TYPES)


def _content(body: bytes, mime_type: str) -> Dict[str, Any]:
    content: Dict[str, Any] = {"size": len(body), "mimeType": mime_type}
    if not body:
        return content
    if _is_text(mime_type):
        try:
            content["text"] = body.decode("utf-8")
            return content
        except UnicodeDecodeError:
            pass
    content["text"] = base64.b64encode(body).decode("ascii")
    content["encoding"] = "base64"
    return content


def _exchange_to_entry(exchange: RecordedExchange) -> Dict[str, Any]:
    request = exchange.request
    response = exchange.response

    request_data: Dict[str, Any] = {
        "method": request.method,
        "url": request.url,
        "httpVersion": "HTTP/1.1",
        "headers": request.headers.to_list(),
        "queryString": [
            {"name": name, "value": value} for name, value in request.query_params().items()
        ],
        "cookies": [],
        "headersSize": -1,
        "bodySize": len(request.body) if request.body else 0,
    }
    if request.body:
        request_data["postData"] = {
            "mimeType": request.headers.get("content-type", "application/octet-stream"),
            "text": request.post_data,
        }

    if response is not None and response.status is not None:
        response_data: Dict[str, Any] = {
            "status": response.status,
            "statusText": response.status_text,
            "httpVersion": "HTTP/1.1",
            "headers": response.headers.to_list(),
            "cookies": [],
            "content": _content(response.body, response.content_type or ""),
            "redirectURL": response.headers.get("location", ""),
            "headersSize": -1,
            "bodySize": len(response.body),
        }
    else:
        # HAR has no failed-request shape; status 0 plus a custom field
        response_data = {
            "status": 0,
            "statusText": "",
            "httpVersion": "HTTP/1.1",
            "headers": [],
            "cookies": [],
            "content": {"size": 0, "mimeType": ""},
            "redirectURL": "",
            "headersSize": -1,
            "bodySize": -1,
            "_failure": (exchange.failure or AbortReason.FAILED).value,
        }

    entry = {
        "startedDateTime": _timestamp(request.timestamp),
        "time": exchange.duration_ms,
        "request": request_data,
        "response": response_data,
        "cache": {},
        "timings": {
            "send": 0,
            "wait": exchange.duration_ms,
            "receive": 0
        },
        "_resourceType": request.resource_type,
    }
    if exchange.resolution:
        entry["_resolution"] = exchange.resolution
    if exchange.body_truncated:
        entry["comment"] = "response body omitted: larger than max_body_size"
    return entry


def _entry_to_exchange(entry: Dict[str, Any]) -> RecordedExchange:
    request_data = entry["request"]
    response_data = entry.get("response", {})

    post_data = request_data.get("postData") or {}
    request = CapturedRequest(
        method=request_data["method"],
        url=request_data["url"],
        headers=Headers(request_data.get("headers", [])),
        body=post_data["text"].encode("utf-8") if post_data.get("text") else None,
        resource_type=entry.get("_resourceType", "other"),
        timestamp=_parse_timestamp(entry.get("startedDateTime")),
    )

    status = response_data.get("status", 0)
    if not status:
        return RecordedExchange(
            request=request,
            failure=AbortReason.parse(response_data.get("_failure")),
            duration_ms=float(entry.get("time") or 0.0),
            resolution=entry.get("_resolution"),
        )

    content = response_data.get("content", {})
    text = content.get("text")
    if text is None:
        body = b""
    elif content.get("encoding") == "base64":
        body = base64.b64decode(text)
    else:
        body = text.encode("utf-8")

    response = ResponseDescriptor(
        status=status,
        headers=Headers(response_data.get("headers", [])),
        body=body,
        from_real_fetch=True,
        url=request.url,
        status_text=response_data.get("statusText", ""),
    )
    return RecordedExchange(
        request=request,
        response=response,
        duration_ms=float(entry.get("time") or 0.0),
        resolution=entry.get("_resolution"),
        body_truncated="comment" in entry and text is None,
    )


def _parse_timestamp(value: Optional[str]) -> float:
    if not value:
        return 0.0
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0
