"""uvicorn integration helpers.

Translates :class:`~devhq.config.ServerOptions` into a listener. The
transport itself (HTTP parsing, TLS, WebSocket framing) belongs to uvicorn.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

import uvicorn

from .config import ServerOptions, TLSConfig
from .exceptions import ConfigNotFound


def _path_state(path: str | Path | None) -> tuple[Path | None, bool]:
    """Return a tuple of the normalized path and whether it exists."""

    if path is None:
        return None, False
    resolved = path if isinstance(path, Path) else Path(path)
    return resolved, resolved.exists()


def _require_tls_paths(tls: TLSConfig) -> tuple[Path, Path]:
    """Ensure the configured certificate and key exist before binding."""

    resolved: list[Path] = []
    for value in (tls.cert, tls.key):
        path, exists = _path_state(value)
        if path is None or not exists:
            raise ConfigNotFound(str(value))
        resolved.append(path)
    return resolved[0], resolved[1]


def _uvicorn_kwargs(options: ServerOptions) -> Mapping[str, Any]:
    kwargs: dict[str, Any] = {
        "host": options.hostname,
        "port": options.resolved_port,
        "lifespan": "on",
        "log_config": None,
    }
    if options.tls is not None:
        cert, key = _require_tls_paths(options.tls)
        kwargs["ssl_certfile"] = str(cert)
        kwargs["ssl_keyfile"] = str(key)
    return kwargs


def create_listener(app: Any, options: ServerOptions) -> uvicorn.Server:
    """Build an unstarted uvicorn server for ``app``."""

    config = uvicorn.Config(app, **_uvicorn_kwargs(options))
    return uvicorn.Server(config)


def bound_port(listener: uvicorn.Server) -> int:
    """Return the port the listener actually bound, ``0`` before it is serving."""

    for server in getattr(listener, "servers", None) or ():
        for sock in getattr(server, "sockets", None) or ():
            address = sock.getsockname()
            if isinstance(address, tuple) and len(address) >= 2:
                return int(address[1])
    return 0


__all__ = ["bound_port", "create_listener"]
