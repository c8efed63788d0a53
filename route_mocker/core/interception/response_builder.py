"""Construction of fulfillment responses.

Responses are built either from literal values or from a previously
fetched real response with selective overrides. When deriving from a real
response every field that is not overridden is inherited unchanged, so a
fetch followed by a fulfill without overrides reproduces the original
status, headers and body byte for byte.
"""

import mimetypes
from pathlib import Path
from typing import Any, Optional, Union

from ..models.http import Headers, HeadersInput, ResponseDescriptor, encode_body, encode_json
from ..errors import InvalidResponseError

# Sentinel distinguishing "not given" from an explicit None/empty body
UNSET: Any = object()


class ResponseBuilder:
    """Builds ``ResponseDescriptor`` instances for ``fulfill()``."""

    @classmethod
    def build(cls,
              status: int = 200,
              headers: HeadersInput = None,
              body: Any = UNSET,
              json: Any = UNSET,
              content_type: Optional[str] = None,
              path: Union[str, Path, None] = None) -> ResponseDescriptor:
        """Build a response from literal values.

        Args:
            status: HTTP status code
            headers: Response headers
            body: Raw bytes, UTF-8 text, or a structured value sent as JSON
            json: Value always serialized as JSON
            content_type: Explicit content type, wins over any default
            path: File whose contents become the body

        Returns:
            Response descriptor that did not come from the network
        """
        _validate_status(status)
        encoded, default_type = _encode(body, json, path)
        response_headers = Headers(headers)
        response_headers = _apply_content_type(response_headers, content_type, default_type)

        return ResponseDescriptor(
            status=status,
            headers=response_headers,
            body=encoded or b"",
            from_real_fetch=False,
        )

    @classmethod
    def from_response(cls,
                      base: ResponseDescriptor,
                      status: Optional[int] = None,
                      headers: HeadersInput = None,
                      body: Any = UNSET,
                      json: Any = UNSET,
                      content_type: Optional[str] = None,
                      path: Union[str, Path, None] = None) -> ResponseDescriptor:
        """Derive a response from ``base`` with selective overrides.

        Headers merge by name with the supplied values winning. A changed
        body updates an existing ``content-length`` header.

        Raises:
            InvalidResponseError: If ``base`` is a failed fetch and no
                status is supplied
        """
        final_status = status if status is not None else base.status
        if final_status is None:
            raise InvalidResponseError(
                f"Cannot fulfill from a failed fetch ({base.error}) without a status"
            )
        _validate_status(final_status)

        response_headers = base.headers.merged(headers)
        body_changed = body is not UNSET or json is not UNSET or path is not None
        if body_changed:
            encoded, default_type = _encode(body, json, path)
            encoded = encoded or b""
            if encoded != base.body and "content-length" in response_headers:
                response_headers = response_headers.with_header(
                    _header_name(response_headers, "content-length"), str(len(encoded))
                )
        else:
            encoded, default_type = base.body, None

        response_headers = _apply_content_type(response_headers, content_type, default_type)

        return ResponseDescriptor(
            status=final_status,
            headers=response_headers,
            body=encoded,
            from_real_fetch=base.from_real_fetch,
            url=base.url,
            status_text=base.status_text if final_status == base.status else "",
        )


def _encode(body: Any, json: Any, path: Union[str, Path, None]):
    supplied = [name for name, value in (("body", body), ("json", json)) if value is not UNSET]
    if path is not None:
        supplied.append("path")
    if len(supplied) > 1:
        raise InvalidResponseError(f"Only one of body, json or path may be given, got {supplied}")

    if path is not None:
        file_path = Path(path)
        guessed, _ = mimetypes.guess_type(file_path.name)
        return file_path.read_bytes(), guessed or "application/octet-stream"
    if json is not UNSET:
        return encode_json(json), "application/json"
    if body is UNSET:
        return None, None
    return encode_body(body)


def _apply_content_type(headers: Headers, explicit: Optional[str], default: Optional[str]) -> Headers:
    if explicit:
        return headers.with_header(_header_name(headers, "content-type"), explicit)
    if default and "content-type" not in headers:
        return headers.with_header("content-type", default)
    return headers


def _header_name(headers: Headers, name: str) -> str:
    """Existing casing of ``name`` in ``headers``, so replacement keeps it."""
    for header in headers:
        if header.lower() == name:
            return header
    return name


def _validate_status(status: int) -> None:
    if not isinstance(status, int) or not 100 <= status <= 599:
        raise InvalidResponseError(f"Invalid HTTP status: {status!r}")
