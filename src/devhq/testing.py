"""Testing helpers."""

from __future__ import annotations

from typing import Any, Mapping
from urllib.parse import urlencode

from .application import Server
from .requests import Request
from .responses import Response
from .serialization import json_encode


class TestClient:
    """Async test client that executes requests in-process through :meth:`Server.handle`."""

    __test__ = False

    def __init__(self, server: Server) -> None:
        self.server = server

    async def __aenter__(self) -> "TestClient":
        await self.server.startup()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.server.shutdown()

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        body: bytes | None = None,
        query: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        request_headers = dict(headers or {})
        payload = body or b""
        if json is not None:
            payload = json_encode(json)
            request_headers.setdefault("content-type", "application/json")
        path, _, inline_query = path.partition("?")
        query_string = urlencode(query, doseq=True) if query else inline_query
        request = Request(
            method=method,
            path=path,
            headers=request_headers,
            query_string=query_string,
            body=payload,
        )
        return await self.server.handle(request)

    async def get(
        self,
        path: str,
        *,
        query: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        return await self.request("GET", path, query=query, headers=headers)

    async def post(
        self,
        path: str,
        *,
        json: Any | None = None,
        body: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        return await self.request("POST", path, json=json, body=body, headers=headers)

    async def put(
        self,
        path: str,
        *,
        json: Any | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        return await self.request("PUT", path, json=json, headers=headers)

    async def patch(
        self,
        path: str,
        *,
        json: Any | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        return await self.request("PATCH", path, json=json, headers=headers)

    async def delete(self, path: str, *, headers: Mapping[str, str] | None = None) -> Response:
        return await self.request("DELETE", path, headers=headers)

    async def options(self, path: str, *, headers: Mapping[str, str] | None = None) -> Response:
        return await self.request("OPTIONS", path, headers=headers)


__all__ = ["TestClient"]
