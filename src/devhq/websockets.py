"""WebSocket utilities.

The server holds exactly one :class:`WebSocketHandler`. Every upgraded
connection is wrapped in its own :class:`WebSocketConnection` and dispatched
to the handler's ``open``/``message``/``close`` callbacks. Topic fan-out is
provided by a per-server :class:`TopicHub`.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, cast

from .requests import Request
from .serialization import json_encode

logger = logging.getLogger(__name__)

Payload = str | bytes


class WebSocketDisconnect(Exception):
    """Raised when the client disconnects from the WebSocket."""

    def __init__(self, code: int | None = None, reason: str | None = None) -> None:
        message = "WebSocket disconnected"
        if code is not None:
            message = f"{message} ({code})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.code = code
        self.reason = reason


@dataclass(slots=True, frozen=True)
class WebSocketHandler:
    """Callbacks applied uniformly to every upgraded connection.

    Each callback may be a plain function or a coroutine function.
    """

    message: Callable[["WebSocketConnection", Payload], Awaitable[None] | None]
    open: Callable[["WebSocketConnection"], Awaitable[None] | None] | None = None
    close: Callable[["WebSocketConnection", int, str], Awaitable[None] | None] | None = None


class TopicHub:
    """Topic subscriptions shared by the connections of one server."""

    def __init__(self) -> None:
        self._topics: dict[str, set[WebSocketConnection]] = {}

    def subscribe(self, topic: str, connection: "WebSocketConnection") -> None:
        self._topics.setdefault(topic, set()).add(connection)

    def unsubscribe(self, topic: str, connection: "WebSocketConnection") -> None:
        members = self._topics.get(topic)
        if members is None:
            return
        members.discard(connection)
        if not members:
            del self._topics[topic]

    def is_subscribed(self, topic: str, connection: "WebSocketConnection") -> bool:
        return connection in self._topics.get(topic, ())

    def subscribers(self, topic: str) -> tuple["WebSocketConnection", ...]:
        return tuple(self._topics.get(topic, ()))

    def discard(self, connection: "WebSocketConnection") -> None:
        for topic in [name for name, members in self._topics.items() if connection in members]:
            self.unsubscribe(topic, connection)

    async def publish(
        self,
        topic: str,
        data: Payload | Mapping[str, Any],
        *,
        exclude: "WebSocketConnection | None" = None,
    ) -> int:
        """Send ``data`` to every open subscriber of ``topic`` and return how many received it."""

        targets = [conn for conn in self.subscribers(topic) if conn is not exclude and not conn.closed]
        if not targets:
            return 0
        results = await asyncio.gather(*(conn.send(data) for conn in targets), return_exceptions=True)
        delivered = 0
        for conn, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.warning("Dropping publish to %r on topic %s: %s", conn, topic, result)
                continue
            delivered += 1
        return delivered

    def __len__(self) -> int:
        return len(self._topics)


class WebSocketConnection:
    """Asynchronous helper around the ASGI WebSocket interface.

    ``data`` is whatever the server's upgrade hook produced for this
    connection; it is never shared with other connections.
    """

    def __init__(
        self,
        *,
        scope: Mapping[str, Any],
        receive: Callable[[], Awaitable[Mapping[str, Any]]],
        send: Callable[[Mapping[str, Any]], Awaitable[None]],
        request: Request,
        hub: TopicHub,
        data: Any = None,
    ) -> None:
        self.scope = scope
        self._receive = receive
        self._send = send
        self.request = request
        self.data = data
        self._hub = hub
        self._accepted = False
        self._closed = False
        self.close_code: int | None = None
        self.close_reason: str = ""
        self.subprotocols: tuple[str, ...] = tuple(scope.get("subprotocols") or ())

    @property
    def accepted(self) -> bool:
        return self._accepted

    @property
    def closed(self) -> bool:
        return self._closed

    async def accept(
        self,
        *,
        subprotocol: str | None = None,
        headers: Iterable[tuple[str, str]] | None = None,
    ) -> None:
        if self._accepted:
            return
        message: dict[str, Any] = {"type": "websocket.accept"}
        if subprotocol is not None:
            message["subprotocol"] = subprotocol
        if headers:
            message["headers"] = [(k.encode("latin-1"), v.encode("latin-1")) for k, v in headers]
        await self._send(message)
        self._accepted = True

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        if self._closed:
            return
        payload: dict[str, Any] = {"type": "websocket.close", "code": code}
        if reason:
            payload["reason"] = reason
        await self._send(payload)
        self._mark_closed(code, reason or "")

    async def receive(self) -> Payload:
        """Wait for the next text or binary frame."""

        while True:
            message = await self._receive()
            message_type = message.get("type")
            if message_type == "websocket.disconnect":
                code = cast(int | None, message.get("code"))
                reason = cast(str | None, message.get("reason"))
                self._mark_closed(code if code is not None else 1005, reason or "")
                raise WebSocketDisconnect(code=code, reason=reason)
            if message_type != "websocket.receive":
                continue
            text = message.get("text")
            if text is not None:
                return cast(str, text)
            data = message.get("bytes")
            if data is not None:
                return bytes(cast(bytes | bytearray | memoryview, data))

    async def send(self, data: Payload | Mapping[str, Any]) -> None:
        if isinstance(data, (bytes, bytearray, memoryview)):
            await self.send_bytes(data)
        elif isinstance(data, str):
            await self.send_text(data)
        else:
            await self.send_json(data)

    async def send_text(self, data: str) -> None:
        self._ensure_open()
        await self._ensure_accepted()
        await self._send({"type": "websocket.send", "text": data})

    async def send_bytes(self, data: bytes | bytearray | memoryview) -> None:
        self._ensure_open()
        await self._ensure_accepted()
        await self._send({"type": "websocket.send", "bytes": bytes(data)})

    async def send_json(self, data: Any) -> None:
        await self.send_text(json_encode(data).decode("utf-8"))

    def subscribe(self, topic: str) -> None:
        self._hub.subscribe(topic, self)

    def unsubscribe(self, topic: str) -> None:
        self._hub.unsubscribe(topic, self)

    def is_subscribed(self, topic: str) -> bool:
        return self._hub.is_subscribed(topic, self)

    async def publish(self, topic: str, data: Payload | Mapping[str, Any]) -> int:
        """Send ``data`` to every other subscriber of ``topic``."""

        return await self._hub.publish(topic, data, exclude=self)

    def _mark_closed(self, code: int, reason: str) -> None:
        self._closed = True
        self.close_code = code
        self.close_reason = reason
        self._hub.discard(self)

    async def _ensure_accepted(self) -> None:
        if not self._accepted:
            await self.accept()

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("WebSocket connection is closed")

    def __repr__(self) -> str:
        return f"<WebSocketConnection {self.request.path}>"


async def call_handler(callback: Callable[..., Awaitable[None] | None] | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


def log_message(connection: WebSocketConnection, message: Payload) -> None:
    logger.info("WebSocket message received on %s: %r", connection.request.path, message)


DEFAULT_HANDLER = WebSocketHandler(message=log_message)


__all__ = [
    "DEFAULT_HANDLER",
    "Payload",
    "TopicHub",
    "WebSocketConnection",
    "WebSocketDisconnect",
    "WebSocketHandler",
    "call_handler",
]
