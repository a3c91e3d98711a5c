"""ASGI helpers shared by the transport level tests."""

from __future__ import annotations

import asyncio
from typing import Any, Iterable, Mapping


class ASGIRecorder:
    """Feeds scripted messages to an ASGI app and records what it sends."""

    def __init__(self, incoming: Iterable[Mapping[str, Any]] = (), *, final: Mapping[str, Any] | None = None) -> None:
        self.incoming: list[Mapping[str, Any]] = list(incoming)
        self.final = final
        self.sent: list[dict[str, Any]] = []

    async def receive(self) -> Mapping[str, Any]:
        if self.incoming:
            return self.incoming.pop(0)
        if self.final is not None:
            return self.final
        # Block like a real server would when no more messages are pending.
        await asyncio.Event().wait()
        raise AssertionError("unreachable")

    async def send(self, message: Mapping[str, Any]) -> None:
        self.sent.append(dict(message))

    def of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [message for message in self.sent if message.get("type") == message_type]


def http_scope(
    method: str,
    path: str,
    *,
    raw_path: bytes | None = None,
    query_string: bytes = b"",
    headers: Iterable[tuple[bytes, bytes]] = (),
) -> dict[str, Any]:
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": raw_path if raw_path is not None else path.encode("latin-1"),
        "query_string": query_string,
        "headers": list(headers),
        "client": ("127.0.0.1", 50000),
        "server": ("127.0.0.1", 3000),
    }


def websocket_scope(path: str, *, headers: Iterable[tuple[bytes, bytes]] = ()) -> dict[str, Any]:
    return {
        "type": "websocket",
        "asgi": {"version": "3.0"},
        "scheme": "ws",
        "path": path,
        "raw_path": path.encode("latin-1"),
        "query_string": b"",
        "headers": list(headers),
        "client": ("127.0.0.1", 50001),
        "server": ("127.0.0.1", 3000),
        "subprotocols": [],
    }
