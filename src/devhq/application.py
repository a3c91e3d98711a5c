"""Server core.

``Server`` owns the route table, the middleware pipeline, the CORS policy and
the single WebSocket handler. Everything is registered while the server is
being configured; once :meth:`Server.start` has run the registries are
read-only and further registration raises
:class:`~devhq.exceptions.ServerStateError`.

Every HTTP request goes through :meth:`Server.handle`:

1. with CORS configured, ``OPTIONS`` is answered with an empty 204 before any
   middleware runs;
2. otherwise the middleware pipeline runs, ending in route dispatch (404 when
   nothing matches);
3. an :class:`~devhq.exceptions.HTTPError` becomes ``{"error": detail}`` with its
   status; anything else raised along the way is logged and replaced with a
   generic 500;
4. the outgoing response, error or not, carries the CORS headers.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

import uvicorn

from .config import ServerOptions
from .cors import CORSConfig, apply_cors, is_preflight, preflight_response
from .exceptions import HandlerError, HTTPError, ServerStateError
from .middleware import MiddlewareCallable, MiddlewarePipeline
from .requests import Request
from .responses import JSONResponse, Response, coerce_response, internal_error_response, not_found_response
from .routing import Handler, Router
from .server import bound_port, create_listener
from .websockets import (
    DEFAULT_HANDLER,
    Payload,
    TopicHub,
    WebSocketConnection,
    WebSocketDisconnect,
    WebSocketHandler,
    call_handler,
)

logger = logging.getLogger(__name__)

Receive = Callable[[], Awaitable[Mapping[str, Any]]]
Send = Callable[[Mapping[str, Any]], Awaitable[None]]
UpgradeHook = Callable[[Request], Any]
Hook = Callable[[], Awaitable[None] | None]


class ServerState(str, Enum):
    CREATED = "created"
    CONFIGURED = "configured"
    STARTED = "started"
    STOPPED = "stopped"


class Server:
    """Embeddable HTTP/WebSocket server."""

    def __init__(self, options: ServerOptions | None = None, *, upgrade: UpgradeHook | None = None) -> None:
        self.config = options or ServerOptions()
        self.router = Router()
        self.middleware = MiddlewarePipeline()
        self.topics = TopicHub()
        self._ws_handler: WebSocketHandler = DEFAULT_HANDLER
        self._upgrade = upgrade or _default_upgrade
        self._state = ServerState.CREATED
        self._startup_hooks: list[Hook] = []
        self._shutdown_hooks: list[Hook] = []
        self._listener: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def cors(self) -> CORSConfig | None:
        return self.config.cors

    @property
    def port(self) -> int:
        """Bound port while started, otherwise ``0``."""

        if self._listener is None or self._state is not ServerState.STARTED:
            return 0
        return bound_port(self._listener)

    # ------------------------------------------------------------------ configuration
    def add_route(self, method: str, path: str, handler: Handler) -> "Server":
        self._configure()
        self.router.add_route(method, path, handler)
        return self

    def route(self, method: str, path: str) -> Callable[[Handler], Handler]:
        def decorator(func: Handler) -> Handler:
            self.add_route(method, path, func)
            return func

        return decorator

    def get(self, path: str) -> Callable[[Handler], Handler]:
        return self.route("GET", path)

    def post(self, path: str) -> Callable[[Handler], Handler]:
        return self.route("POST", path)

    def put(self, path: str) -> Callable[[Handler], Handler]:
        return self.route("PUT", path)

    def delete(self, path: str) -> Callable[[Handler], Handler]:
        return self.route("DELETE", path)

    def patch(self, path: str) -> Callable[[Handler], Handler]:
        return self.route("PATCH", path)

    def options(self, path: str) -> Callable[[Handler], Handler]:
        return self.route("OPTIONS", path)

    def use(self, middleware: MiddlewareCallable) -> MiddlewareCallable:
        """Append ``middleware`` to the pipeline; usable as a decorator."""

        self._configure()
        self.middleware.use(middleware)
        return middleware

    def websocket(self, handler: WebSocketHandler) -> WebSocketHandler:
        """Install ``handler`` for all upgraded connections, replacing the previous one."""

        self._configure()
        self._ws_handler = handler
        return handler

    def on_startup(self, func: Hook) -> Hook:
        self._configure()
        self._startup_hooks.append(func)
        return func

    def on_shutdown(self, func: Hook) -> Hook:
        self._configure()
        self._shutdown_hooks.append(func)
        return func

    def _configure(self) -> None:
        if self._state in (ServerState.STARTED, ServerState.STOPPED):
            raise ServerStateError(f"Cannot modify a server that is {self._state.value}")
        self._state = ServerState.CONFIGURED

    # ------------------------------------------------------------------ lifecycle
    async def startup(self) -> None:
        for hook in self._startup_hooks:
            result = hook()
            if inspect.isawaitable(result):
                await result

    async def shutdown(self) -> None:
        for hook in self._shutdown_hooks:
            result = hook()
            if inspect.isawaitable(result):
                await result

    async def start(self) -> None:
        """Bind the listener and begin accepting connections."""

        if self._state is ServerState.STARTED:
            raise ServerStateError("Server is already started")
        if self._state is ServerState.STOPPED:
            raise ServerStateError("Server has been stopped and cannot be restarted")
        listener = create_listener(self, self.config)
        task = asyncio.create_task(listener.serve())
        while not listener.started:
            if task.done():
                # Binding failed; surface uvicorn's error, or SystemExit when it exits quietly.
                await task
                raise ServerStateError("Listener exited before it started serving")
            await asyncio.sleep(0.01)
        self._listener = listener
        self._serve_task = task
        self._state = ServerState.STARTED
        logger.info(
            "Server started on %s://%s:%d",
            self.config.scheme,
            self.config.hostname,
            bound_port(listener) or self.config.resolved_port,
        )

    async def stop(self) -> None:
        """Close the listener. Stopping a server that is not running does nothing."""

        if self._state is not ServerState.STARTED:
            logger.debug("stop() ignored while server is %s", self._state.value)
            return
        listener, task = self._listener, self._serve_task
        self._state = ServerState.STOPPED
        if listener is not None:
            listener.should_exit = True
        if task is not None:
            await task
        self._listener = None
        self._serve_task = None
        logger.info("Server stopped")

    async def serve(self) -> None:
        """Start and block until the listener exits (e.g. on SIGINT)."""

        await self.start()
        task = self._serve_task
        try:
            if task is not None:
                await asyncio.shield(task)
        finally:
            await self.stop()

    def run(self) -> None:
        asyncio.run(self.serve())

    async def publish(self, topic: str, data: Payload | Mapping[str, Any]) -> int:
        return await self.topics.publish(topic, data)

    # ------------------------------------------------------------------ request handling
    async def handle(self, request: Request) -> Response:
        """Single entry point for HTTP requests."""

        cors = self.cors
        if is_preflight(request, cors):
            return preflight_response(request, cors)
        try:
            response = await self._execute(request)
        except HandlerError as exc:
            logger.error("Request failed: %s %s", exc.method, exc.path, exc_info=exc.__cause__)
            response = internal_error_response()
        return apply_cors(response, request, cors)

    async def _execute(self, request: Request) -> Response:
        try:
            try:
                return await self.middleware.run(request, self._dispatch)
            except HTTPError as exc:
                # Rendering the detail can fail too; that still ends as a 500.
                return JSONResponse({"error": exc.detail}, status=exc.status)
        except Exception as exc:
            raise HandlerError(request.method, request.path) from exc

    async def _dispatch(self, request: Request) -> Response:
        path = self._route_path(request.path)
        match = self.router.match(request.method, path) if path is not None else None
        if match is None:
            return not_found_response()
        request.path_params = dict(match.params)
        result = match.handler(request, match.params)
        if inspect.isawaitable(result):
            result = await result
        return coerce_response(result)

    def _route_path(self, path: str) -> str | None:
        base = self.config.normalized_base_path
        if not base:
            return path
        if path == base:
            return "/"
        if path.startswith(base + "/"):
            return path[len(base) :]
        return None

    # ------------------------------------------------------------------ interface adapters
    async def __call__(self, scope: Mapping[str, Any], receive: Receive, send: Send) -> None:
        scope_type = scope.get("type")
        if scope_type == "http":
            await self._handle_http(scope, receive, send)
            return
        if scope_type == "websocket":
            await self._handle_websocket(scope, receive, send)
            return
        if scope_type == "lifespan":
            await self._handle_lifespan(receive, send)
            return
        raise RuntimeError(f"Unsupported ASGI scope type: {scope_type!r}")

    async def _handle_http(self, scope: Mapping[str, Any], receive: Receive, send: Send) -> None:
        request = _request_from_scope(scope, body=await _read_body(receive))
        response = await self.handle(request)
        await send(
            {
                "type": "http.response.start",
                "status": response.status,
                "headers": [(k.encode("latin-1"), v.encode("latin-1")) for k, v in response.headers],
            }
        )
        await send({"type": "http.response.body", "body": response.body})

    async def _handle_websocket(self, scope: Mapping[str, Any], receive: Receive, send: Send) -> None:
        initial = await receive()
        message_type = initial.get("type")
        if message_type == "websocket.disconnect":
            return
        if message_type != "websocket.connect":
            await send({"type": "websocket.close", "code": 4400})
            return
        request = _request_from_scope(scope, method="GET")
        handler = self._ws_handler
        connection = WebSocketConnection(
            scope=scope,
            receive=receive,
            send=send,
            request=request,
            hub=self.topics,
            data=self._upgrade(request),
        )
        await connection.accept()
        try:
            await call_handler(handler.open, connection)
            while not connection.closed:
                payload = await connection.receive()
                await call_handler(handler.message, connection, payload)
        except WebSocketDisconnect:
            pass
        except Exception:
            logger.exception("WebSocket handler failed on %s", request.path)
            await connection.close(code=1011)
        finally:
            self.topics.discard(connection)
            code = connection.close_code if connection.close_code is not None else 1000
            try:
                await call_handler(handler.close, connection, code, connection.close_reason)
            except Exception:
                logger.exception("WebSocket close handler failed on %s", request.path)

    async def _handle_lifespan(self, receive: Receive, send: Send) -> None:
        while True:
            message = await receive()
            message_type = message.get("type")
            if message_type == "lifespan.startup":
                try:
                    await self.startup()
                except Exception as exc:
                    logger.exception("Startup hook failed")
                    await send({"type": "lifespan.startup.failed", "message": str(exc)})
                    return
                await send({"type": "lifespan.startup.complete"})
            elif message_type == "lifespan.shutdown":
                try:
                    await self.shutdown()
                except Exception as exc:
                    logger.exception("Shutdown hook failed")
                    await send({"type": "lifespan.shutdown.failed", "message": str(exc)})
                    return
                await send({"type": "lifespan.shutdown.complete"})
                return


def create_server(options: ServerOptions | None, setup: Callable[[Server], None]) -> Server:
    """Build a server and let ``setup`` register its routes, middleware and handlers.

    The server is returned unstarted; use :func:`start_server` to also bind it.
    """

    server = Server(options)
    setup(server)
    return server


async def start_server(options: ServerOptions | None, setup: Callable[[Server], None]) -> Server:
    """Build a server with :func:`create_server` and start listening before returning it."""

    server = create_server(options, setup)
    await server.start()
    return server


def _default_upgrade(request: Request) -> dict[str, Any]:
    return {"path": request.path, "headers": dict(request.headers)}


def _request_from_scope(scope: Mapping[str, Any], *, body: bytes | None = None, method: str | None = None) -> Request:
    headers: dict[str, str] = {}
    for key, value in scope.get("headers", []):
        name = key.decode("latin-1").lower()
        text = value.decode("latin-1")
        headers[name] = f"{headers[name]}, {text}" if name in headers else text
    raw_path = scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else scope.get("path", "/")
    return Request(
        method=method or scope.get("method", "GET"),
        path=path,
        headers=headers,
        query_string=(scope.get("query_string") or b"").decode("latin-1"),
        body=body,
        client=tuple(scope["client"]) if scope.get("client") else None,
    )


async def _read_body(receive: Receive) -> bytes:
    buffer = bytearray()
    while True:
        message = await receive()
        message_type = message.get("type")
        if message_type == "http.disconnect":
            break
        if message_type != "http.request":
            continue
        buffer.extend(message.get("body", b""))
        if not message.get("more_body", False):
            break
    return bytes(buffer)


__all__ = ["Server", "ServerState", "create_server", "start_server"]
