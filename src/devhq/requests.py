"""Request primitives."""

from __future__ import annotations

from typing import Any, Mapping, MutableMapping, TypeVar
from urllib.parse import parse_qsl

import msgspec

from .serialization import json_decode

T = TypeVar("T")


class Request:
    """View of an incoming request.

    ``path`` is kept exactly as received (percent-escapes intact). The router
    fills ``path_params`` on dispatch.
    """

    __slots__ = (
        "_body",
        "_json_cache",
        "_query_params",
        "_raw_query",
        "client",
        "headers",
        "method",
        "path",
        "path_params",
    )

    def __init__(
        self,
        *,
        method: str,
        path: str,
        headers: Mapping[str, str] | None = None,
        query_string: str | None = None,
        body: bytes | None = None,
        path_params: Mapping[str, str] | None = None,
        client: tuple[str, int] | None = None,
    ) -> None:
        self.method = method.upper()
        self.path = path
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.path_params = dict(path_params or {})
        self.client = client
        self._raw_query = query_string or ""
        self._body = body or b""
        self._json_cache: Any = msgspec.UNSET
        self._query_params: MutableMapping[str, list[str]] | None = None

    @classmethod
    def from_url(
        cls,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        body: bytes | None = None,
    ) -> "Request":
        """Build a request from a path that may carry a ``?query`` suffix."""

        path, _, query = url.partition("?")
        return cls(method=method, path=path or "/", headers=headers, query_string=query, body=body)

    @staticmethod
    def _parse_query(raw: str) -> MutableMapping[str, list[str]]:
        parsed: MutableMapping[str, list[str]] = {}
        for key, value in parse_qsl(raw, keep_blank_values=True):
            parsed.setdefault(key, []).append(value)
        return parsed

    @property
    def query_string(self) -> str:
        return self._raw_query

    @property
    def query_params(self) -> MutableMapping[str, list[str]]:
        if self._query_params is None:
            self._query_params = self._parse_query(self._raw_query)
        return self._query_params

    @property
    def origin(self) -> str | None:
        return self.headers.get("origin")

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)

    async def json(self, model: type[T] | None = None) -> T | Any:
        """Decode the JSON body using :mod:`msgspec`."""

        if self._json_cache is msgspec.UNSET:
            if not self._body:
                self._json_cache = None
            else:
                self._json_cache = json_decode(self._body)
        if model is None:
            return self._json_cache
        return msgspec.convert(self._json_cache, type=model)

    def text(self) -> str:
        return self._body.decode()

    def body(self) -> bytes:
        return self._body

    def __repr__(self) -> str:
        return f"<Request {self.method} {self.path}>"
