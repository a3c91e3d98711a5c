from __future__ import annotations

import logging
from urllib.parse import unquote

import pytest

from devhq.application import Server, ServerState, create_server
from devhq.config import ServerOptions
from devhq.cors import CORSConfig
from devhq.exceptions import HTTPError, ServerStateError
from devhq.requests import Request
from devhq.responses import JSONResponse
from devhq.testing import TestClient


@pytest.mark.asyncio
async def test_handle_dispatches_with_params() -> None:
    server = Server()

    @server.get("/api/users/:id/posts/:postId")
    async def show(request: Request, params):
        return {"user": params["id"], "post": params["postId"], "seen": request.path_params["id"]}

    async with TestClient(server) as client:
        response = await client.get("/api/users/42/posts/7")

    assert response.status == 200
    assert response.header("content-type") == "application/json"
    assert response.json() == {"user": "42", "post": "7", "seen": "42"}


@pytest.mark.asyncio
async def test_first_registered_route_wins() -> None:
    server = Server()
    server.add_route("GET", "/users/:id", lambda request, params: f"user {params['id']}")
    server.add_route("GET", "/users/me", lambda request, params: "me")

    async with TestClient(server) as client:
        response = await client.get("/users/me")

    assert response.body == b"user me"


@pytest.mark.asyncio
async def test_unmatched_request_returns_exact_404_body() -> None:
    server = Server()

    async with TestClient(server) as client:
        response = await client.get("/missing")

    assert response.status == 404
    assert response.body == b'{"error":"Not Found"}'


@pytest.mark.asyncio
async def test_handler_error_returns_500_and_server_keeps_serving(caplog) -> None:
    server = Server()

    @server.get("/boom")
    async def boom(request, params):
        raise RuntimeError("secret detail")

    @server.get("/ok")
    async def ok(request, params):
        return "fine"

    async with TestClient(server) as client:
        with caplog.at_level(logging.ERROR, logger="devhq.application"):
            failed = await client.get("/boom")
        healthy = await client.get("/ok")

    assert failed.status == 500
    assert failed.body == b'{"error":"Internal Server Error"}'
    assert b"secret" not in failed.body
    assert any(record.exc_info and record.exc_info[0] is RuntimeError for record in caplog.records)
    assert healthy.status == 200
    assert healthy.body == b"fine"


@pytest.mark.asyncio
async def test_middleware_order_and_short_circuit() -> None:
    order: list[str] = []
    server = Server()

    @server.use
    async def a(request, next):
        order.append("A")
        return await next()

    @server.use
    async def b(request, next):
        order.append("B")
        if request.path == "/blocked":
            return JSONResponse({"blocked": True}, status=403)
        return await next()

    @server.use
    async def c(request, next):
        order.append("C")
        return await next()

    @server.get("/open")
    async def open_route(request, params):
        return "open"

    async with TestClient(server) as client:
        blocked = await client.get("/blocked")
        assert order == ["A", "B"]
        order.clear()
        opened = await client.get("/open")

    assert blocked.status == 403
    assert opened.body == b"open"
    assert order == ["A", "B", "C"]


@pytest.mark.asyncio
async def test_middleware_runs_before_404() -> None:
    seen: list[str] = []
    server = Server()

    @server.use
    async def record(request, next):
        seen.append(request.path)
        return await next()

    async with TestClient(server) as client:
        response = await client.get("/nothing")

    assert seen == ["/nothing"]
    assert response.status == 404


@pytest.mark.asyncio
async def test_next_called_twice_surfaces_as_500() -> None:
    server = Server()

    @server.use
    async def twice(request, next):
        await next()
        return await next()

    server.add_route("GET", "/", lambda request, params: "root")

    async with TestClient(server) as client:
        response = await client.get("/")

    assert response.status == 500


@pytest.mark.asyncio
async def test_preflight_never_reaches_middleware() -> None:
    sentinel: list[str] = []
    server = Server(ServerOptions(cors=CORSConfig(origin=("http://a", "http://b"))))

    @server.use
    async def watch(request, next):
        sentinel.append(request.method)
        return await next()

    async with TestClient(server) as client:
        response = await client.options("/anything", headers={"Origin": "http://b"})

    assert sentinel == []
    assert response.status == 204
    assert response.body == b""
    assert response.header("Access-Control-Allow-Origin") == "http://b"
    assert response.header("Access-Control-Allow-Methods") == "GET, POST, PUT, DELETE, OPTIONS"


@pytest.mark.asyncio
async def test_options_routed_normally_without_cors() -> None:
    server = Server()

    @server.options("/items")
    async def describe(request, params):
        return {"allow": ["GET"]}

    async with TestClient(server) as client:
        response = await client.options("/items")

    assert response.status == 200
    assert response.header("access-control-allow-origin") is None


@pytest.mark.asyncio
async def test_cors_headers_on_success_404_and_500() -> None:
    server = Server(ServerOptions(cors=CORSConfig(origin=("http://a", "http://b"), credentials=True)))
    server.add_route("GET", "/ok", lambda request, params: "ok")

    @server.get("/fail")
    def fail(request, params):
        raise ValueError("nope")

    async with TestClient(server) as client:
        responses = [
            await client.get("/ok", headers={"Origin": "http://c"}),
            await client.get("/missing", headers={"Origin": "http://b"}),
            await client.get("/fail", headers={"Origin": "http://a"}),
        ]

    assert [r.status for r in responses] == [200, 404, 500]
    assert [r.header("access-control-allow-origin") for r in responses] == ["http://a", "http://b", "http://a"]
    assert all(r.header("access-control-allow-credentials") == "true" for r in responses)


@pytest.mark.asyncio
async def test_http_error_renders_status_and_detail() -> None:
    server = Server()

    @server.post("/items")
    async def create(request, params):
        raise HTTPError(409, "duplicate")

    async with TestClient(server) as client:
        response = await client.post("/items", json={"name": "x"})

    assert response.status == 409
    assert response.json() == {"error": "duplicate"}


@pytest.mark.asyncio
async def test_unencodable_http_error_detail_becomes_500(caplog) -> None:
    server = Server(ServerOptions(cors=CORSConfig()))

    @server.get("/odd")
    async def odd(request, params):
        raise HTTPError(400, object())

    with caplog.at_level(logging.ERROR, logger="devhq.application"):
        async with TestClient(server) as client:
            response = await client.get("/odd", headers={"Origin": "http://a"})

    assert response.status == 500
    assert response.json() == {"error": "Internal Server Error"}
    assert response.header("access-control-allow-origin") == "*"
    assert any(record.exc_info for record in caplog.records)


@pytest.mark.asyncio
async def test_base_path_is_stripped_before_routing() -> None:
    server = Server(ServerOptions(base_path="/api/"))
    server.add_route("GET", "/users/:id", lambda request, params: params["id"])
    server.add_route("GET", "/", lambda request, params: "root")

    async with TestClient(server) as client:
        inside = await client.get("/api/users/9")
        root = await client.get("/api")
        outside = await client.get("/users/9")
        lookalike = await client.get("/apiusers/9")

    assert inside.body == b"9"
    assert root.body == b"root"
    assert outside.status == 404
    assert lookalike.status == 404


@pytest.mark.asyncio
async def test_handlers_decode_parameters_themselves() -> None:
    server = Server()
    server.add_route("GET", "/files/:name", lambda request, params: unquote(params["name"]))

    async with TestClient(server) as client:
        response = await client.get("/files/hello%20world")

    assert response.body == b"hello world"


@pytest.mark.asyncio
async def test_query_string_does_not_affect_matching() -> None:
    server = Server()

    @server.get("/search")
    async def search(request, params):
        return {"q": request.query_params.get("q", [])}

    async with TestClient(server) as client:
        response = await client.get("/search?q=one&q=two")

    assert response.json() == {"q": ["one", "two"]}


@pytest.mark.asyncio
async def test_handler_return_values_are_coerced() -> None:
    server = Server()
    server.add_route("GET", "/none", lambda request, params: None)
    server.add_route("GET", "/bytes", lambda request, params: b"\x00\x01")
    server.add_route("PUT", "/list", lambda request, params: [1, 2])

    async with TestClient(server) as client:
        empty = await client.get("/none")
        raw = await client.get("/bytes")
        listed = await client.put("/list")

    assert empty.status == 204
    assert raw.header("content-type") == "application/octet-stream"
    assert listed.json() == [1, 2]


def test_registration_moves_server_to_configured() -> None:
    server = Server()
    assert server.state is ServerState.CREATED

    returned = server.add_route("GET", "/", lambda request, params: "x")

    assert returned is server
    assert server.state is ServerState.CONFIGURED


def test_create_server_runs_setup() -> None:
    calls: list[Server] = []

    def setup(server: Server) -> None:
        calls.append(server)
        server.add_route("GET", "/health", lambda request, params: {"status": "ok"})

    server = create_server(ServerOptions(port=8080), setup)

    assert calls == [server]
    assert len(server.router) == 1
    assert server.config.port == 8080


def test_registration_after_stop_is_rejected() -> None:
    server = Server()
    server._state = ServerState.STOPPED

    with pytest.raises(ServerStateError):
        server.add_route("GET", "/", lambda request, params: None)
    with pytest.raises(ServerStateError):
        server.use(lambda request, next: None)


@pytest.mark.asyncio
async def test_startup_and_shutdown_hooks_run() -> None:
    events: list[str] = []
    server = Server()

    @server.on_startup
    async def boot() -> None:
        events.append("start")

    @server.on_shutdown
    def halt() -> None:
        events.append("stop")

    async with TestClient(server):
        events.append("request")

    assert events == ["start", "request", "stop"]
