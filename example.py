"""Minimal devhq server.

Run ``python example.py`` to boot a local server on ``$PORT`` (default 3000).
It serves a JSON greeting at ``/api/hello/:name``, the process automation
routes under ``/api/processes`` and a WebSocket chat where every connection
joins the ``lobby`` topic.
"""

from __future__ import annotations

import logging
import time
from typing import Mapping
from urllib.parse import unquote

from devhq import (
    Automation,
    CORSConfig,
    Request,
    Response,
    Server,
    ServerOptions,
    WebSocketConnection,
    WebSocketHandler,
    create_server,
    mount_automation,
)
from devhq.middleware import Next

logger = logging.getLogger("devhq.example")


async def timing(request: Request, next: Next) -> Response:
    started = time.perf_counter()
    response = await next()
    elapsed = (time.perf_counter() - started) * 1000
    logger.info("%s %s -> %d (%.1fms)", request.method, request.path, response.status, elapsed)
    return response


async def hello(request: Request, params: Mapping[str, str]) -> dict[str, str]:
    return {"message": f"Hello, {unquote(params['name'])}!"}


def on_open(conn: WebSocketConnection) -> None:
    conn.subscribe("lobby")


async def on_message(conn: WebSocketConnection, message: str | bytes) -> None:
    text = message if isinstance(message, str) else message.decode("utf-8", errors="replace")
    await conn.publish("lobby", {"from": conn.data["path"], "text": text})


def setup(server: Server) -> None:
    server.use(timing)
    server.add_route("GET", "/hello/:name", hello)
    mount_automation(server, Automation(), prefix="/processes")
    server.websocket(WebSocketHandler(message=on_message, open=on_open))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    options = ServerOptions.from_env(base_path="/api", cors=CORSConfig(origin=("http://localhost:5173",)))
    create_server(options, setup).run()
