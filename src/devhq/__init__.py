"""devhq embeddable HTTP/WebSocket dispatch layer."""

from .application import Server, ServerState, create_server, start_server
from .automation import Automation, CommandResult, KillResult, ProcessStatus
from .automation_routes import mount_automation
from .config import (
    ConfigCache,
    ConfigStats,
    ServerOptions,
    TLSConfig,
    config_stats,
    load_config,
    load_config_sync,
    load_text_config,
    preload_configs,
)
from .cors import CORSConfig
from .exceptions import (
    ConfigError,
    ConfigNotFound,
    ConfigParseError,
    DevHQError,
    HandlerError,
    HTTPError,
    MiddlewareError,
    RouteNotFound,
    ServerStateError,
    SpawnError,
)
from .http import Status
from .middleware import MiddlewarePipeline, Next
from .requests import Request
from .responses import EmptyResponse, JSONResponse, PlainTextResponse, Response
from .routing import Router, RoutePattern
from .testing import TestClient
from .websockets import TopicHub, WebSocketConnection, WebSocketDisconnect, WebSocketHandler

__all__ = [
    "Automation",
    "CORSConfig",
    "CommandResult",
    "ConfigCache",
    "ConfigError",
    "ConfigNotFound",
    "ConfigParseError",
    "ConfigStats",
    "DevHQError",
    "EmptyResponse",
    "HTTPError",
    "HandlerError",
    "JSONResponse",
    "KillResult",
    "MiddlewareError",
    "MiddlewarePipeline",
    "Next",
    "PlainTextResponse",
    "ProcessStatus",
    "Request",
    "Response",
    "RouteNotFound",
    "RoutePattern",
    "Router",
    "Server",
    "ServerOptions",
    "ServerState",
    "ServerStateError",
    "SpawnError",
    "Status",
    "TLSConfig",
    "TestClient",
    "TopicHub",
    "WebSocketConnection",
    "WebSocketDisconnect",
    "WebSocketHandler",
    "config_stats",
    "create_server",
    "load_config",
    "load_config_sync",
    "load_text_config",
    "mount_automation",
    "preload_configs",
    "start_server",
]
