from __future__ import annotations

import asyncio
import logging

import pytest

from devhq.application import Server, ServerState, create_server, start_server
from devhq.config import ServerOptions, TLSConfig
from devhq.exceptions import ConfigNotFound, ServerStateError
from devhq.server import _uvicorn_kwargs, bound_port, create_listener


class _FakeSocket:
    def __init__(self, port: int) -> None:
        self._port = port

    def getsockname(self) -> tuple[str, int]:
        return ("127.0.0.1", self._port)


class _FakeBoundServer:
    def __init__(self, port: int) -> None:
        self.sockets = [_FakeSocket(port)]


class _FakeListener:
    def __init__(self, app, options: ServerOptions) -> None:
        self.app = app
        self.options = options
        self.started = False
        self.should_exit = False
        self.servers: list[_FakeBoundServer] = []
        self.served = 0

    async def serve(self) -> None:
        self.served += 1
        self.servers = [_FakeBoundServer(self.options.resolved_port or 49152)]
        self.started = True
        while not self.should_exit:
            await asyncio.sleep(0.001)
        self.servers = []


def _listener_spy(monkeypatch) -> list[_FakeListener]:
    created: list[_FakeListener] = []

    def fake_create(app, options):
        listener = _FakeListener(app, options)
        created.append(listener)
        return listener

    monkeypatch.setattr("devhq.application.create_listener", fake_create)
    return created


def test_uvicorn_kwargs_plain() -> None:
    kwargs = _uvicorn_kwargs(ServerOptions(port=8080, hostname="0.0.0.0"))

    assert kwargs["host"] == "0.0.0.0"
    assert kwargs["port"] == 8080
    assert kwargs["lifespan"] == "on"
    assert "ssl_certfile" not in kwargs


def test_uvicorn_kwargs_default_port() -> None:
    assert _uvicorn_kwargs(ServerOptions())["port"] == 3000


def test_uvicorn_kwargs_configures_tls(tmp_path) -> None:
    cert = tmp_path / "server.crt"
    key = tmp_path / "server.key"
    for path in (cert, key):
        path.write_text("sample", encoding="utf-8")

    kwargs = _uvicorn_kwargs(ServerOptions(tls=TLSConfig(cert=str(cert), key=str(key))))

    assert kwargs["ssl_certfile"] == str(cert)
    assert kwargs["ssl_keyfile"] == str(key)


def test_uvicorn_kwargs_require_tls_files(tmp_path) -> None:
    cert = tmp_path / "server.crt"
    cert.write_text("sample", encoding="utf-8")
    missing = tmp_path / "missing.key"

    with pytest.raises(ConfigNotFound) as excinfo:
        _uvicorn_kwargs(ServerOptions(tls=TLSConfig(cert=str(cert), key=str(missing))))
    assert excinfo.value.path == str(missing)


def test_tls_takes_file_paths_not_pem_text() -> None:
    pem = "-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----\n"

    with pytest.raises(ConfigNotFound) as excinfo:
        _uvicorn_kwargs(ServerOptions(tls=TLSConfig(cert=pem, key=pem)))
    assert excinfo.value.path == pem


def test_create_listener_wraps_app(monkeypatch) -> None:
    calls: list[dict[str, object]] = []

    class DummyConfig:
        def __init__(self, app, **kwargs) -> None:
            calls.append({"app": app, "kwargs": kwargs})

    class DummyServer:
        def __init__(self, config) -> None:
            self.config = config

    monkeypatch.setattr("devhq.server.uvicorn.Config", DummyConfig)
    monkeypatch.setattr("devhq.server.uvicorn.Server", DummyServer)
    app = Server()

    listener = create_listener(app, ServerOptions(port=9000))

    assert isinstance(listener, DummyServer)
    assert calls[0]["app"] is app
    assert calls[0]["kwargs"]["port"] == 9000


def test_bound_port_before_serving_is_zero() -> None:
    listener = _FakeListener(None, ServerOptions())

    assert bound_port(listener) == 0  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_start_and_stop_lifecycle(monkeypatch, caplog) -> None:
    created = _listener_spy(monkeypatch)
    server = Server(ServerOptions(port=4321))
    server.add_route("GET", "/", lambda request, params: "ok")
    assert server.port == 0

    with caplog.at_level(logging.INFO, logger="devhq.application"):
        await server.start()

    assert server.state is ServerState.STARTED
    assert server.port == 4321
    assert created[0].app is server
    assert "http://localhost:4321" in caplog.text

    await server.stop()

    assert server.state is ServerState.STOPPED
    assert created[0].should_exit is True
    assert server.port == 0


@pytest.mark.asyncio
async def test_start_twice_raises(monkeypatch) -> None:
    _listener_spy(monkeypatch)
    server = Server(ServerOptions(port=4000))
    await server.start()
    try:
        with pytest.raises(ServerStateError):
            await server.start()
    finally:
        await server.stop()


@pytest.mark.asyncio
async def test_restart_after_stop_raises(monkeypatch) -> None:
    _listener_spy(monkeypatch)
    server = Server(ServerOptions(port=4000))
    await server.start()
    await server.stop()

    with pytest.raises(ServerStateError):
        await server.start()


@pytest.mark.asyncio
async def test_stop_is_idempotent(monkeypatch) -> None:
    created = _listener_spy(monkeypatch)
    server = Server(ServerOptions(port=4000))

    await server.stop()
    assert server.state is ServerState.CREATED

    await server.start()
    await server.stop()
    await server.stop()

    assert server.state is ServerState.STOPPED
    assert created[0].served == 1


@pytest.mark.asyncio
async def test_registration_after_start_is_rejected(monkeypatch) -> None:
    _listener_spy(monkeypatch)
    server = Server(ServerOptions(port=4000))
    await server.start()
    try:
        with pytest.raises(ServerStateError):
            server.add_route("GET", "/late", lambda request, params: None)
        with pytest.raises(ServerStateError):
            server.use(lambda request, next: None)
    finally:
        await server.stop()


@pytest.mark.asyncio
async def test_start_server_returns_listening_server(monkeypatch) -> None:
    created = _listener_spy(monkeypatch)
    seen: list[Server] = []

    def setup(server: Server) -> None:
        seen.append(server)
        server.add_route("GET", "/", lambda request, params: "ok")

    server = await start_server(ServerOptions(port=4500), setup)

    assert seen == [server]
    assert server.state is ServerState.STARTED
    assert server.port == 4500
    assert created[0].served == 1

    await server.stop()
    assert server.state is ServerState.STOPPED


def test_create_server_does_not_listen(monkeypatch) -> None:
    created = _listener_spy(monkeypatch)

    server = create_server(None, lambda server: server.add_route("GET", "/", lambda request, params: "ok"))

    assert server.state is ServerState.CONFIGURED
    assert created == []
