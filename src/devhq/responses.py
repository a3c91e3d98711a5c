"""Response primitives."""

from __future__ import annotations

from typing import Any, Iterable

import msgspec

from .http import Status
from .serialization import json_decode, json_encode

Headers = tuple[tuple[str, str], ...]


class Response(msgspec.Struct, frozen=True):
    """Immutable response payload."""

    status: int = int(Status.OK)
    headers: Headers = ()
    body: bytes = b""

    def with_headers(self, headers: Iterable[tuple[str, str]]) -> "Response":
        """Return a new response with ``headers`` appended."""

        return Response(status=self.status, headers=self.headers + tuple(headers), body=self.body)

    def replace_headers(self, headers: Iterable[tuple[str, str]]) -> "Response":
        """Return a new response where ``headers`` override any existing values of the same name."""

        incoming = tuple(headers)
        if not incoming:
            return self
        names = {name.lower() for name, _ in incoming}
        kept = tuple((name, value) for name, value in self.headers if name.lower() not in names)
        return Response(status=self.status, headers=kept + incoming, body=self.body)

    def header(self, name: str, default: str | None = None) -> str | None:
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return default

    def json(self) -> Any:
        return json_decode(self.body)


def PlainTextResponse(
    text: str,
    *,
    status: int = int(Status.OK),
    headers: Iterable[tuple[str, str]] | None = None,
) -> Response:
    """Create a plain text response."""

    default_headers = (("content-type", "text/plain; charset=utf-8"),)
    return Response(status=status, headers=default_headers + tuple(headers or ()), body=text.encode("utf-8"))


def JSONResponse(
    data: Any,
    *,
    status: int = int(Status.OK),
    headers: Iterable[tuple[str, str]] | None = None,
) -> Response:
    """Create a JSON response encoded via :mod:`msgspec`."""

    default_headers = (("content-type", "application/json"),)
    return Response(status=status, headers=default_headers + tuple(headers or ()), body=json_encode(data))


def EmptyResponse(status: int = int(Status.NO_CONTENT)) -> Response:
    return Response(status=status, body=b"")


def not_found_response() -> Response:
    return JSONResponse({"error": "Not Found"}, status=int(Status.NOT_FOUND))


def internal_error_response() -> Response:
    return JSONResponse({"error": "Internal Server Error"}, status=int(Status.INTERNAL_SERVER_ERROR))


def coerce_response(result: Any) -> Response:
    """Turn a handler return value into a :class:`Response`."""

    if isinstance(result, Response):
        return result
    if result is None:
        return EmptyResponse()
    if isinstance(result, str):
        return PlainTextResponse(result)
    if isinstance(result, (bytes, bytearray, memoryview)):
        return Response(
            headers=(("content-type", "application/octet-stream"),),
            body=bytes(result),
        )
    return JSONResponse(result)


__all__ = [
    "EmptyResponse",
    "Headers",
    "JSONResponse",
    "PlainTextResponse",
    "Response",
    "coerce_response",
    "internal_error_response",
    "not_found_response",
]
