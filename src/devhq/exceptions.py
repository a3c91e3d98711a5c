"""Error taxonomy.

Only :class:`RouteNotFound` and :class:`HandlerError` map onto HTTP responses,
and only inside :meth:`devhq.application.Server.handle`. Configuration and
automation errors are raised to the caller untouched.
"""

from __future__ import annotations

from typing import Any, Sequence


class DevHQError(Exception):
    """Base error type."""


class HTTPError(DevHQError):
    """Raised by handlers or middleware to answer with a specific status.

    Rendered as ``{"error": detail}`` with ``status``.
    """

    def __init__(self, status: int, detail: Any) -> None:
        super().__init__(status, detail)
        self.status = int(status)
        self.detail = detail


class RouteNotFound(DevHQError, LookupError):
    """No registration matches the request method and path."""

    def __init__(self, method: str, path: str) -> None:
        super().__init__(f"No route matches {method} {path}")
        self.method = method
        self.path = path


class HandlerError(DevHQError):
    """Raised from anything that failed inside the middleware chain or a handler.

    The original exception is always available as ``__cause__``.
    """

    def __init__(self, method: str, path: str) -> None:
        super().__init__(f"Unhandled error while serving {method} {path}")
        self.method = method
        self.path = path


class MiddlewareError(DevHQError):
    """A middleware misused its ``next`` continuation."""


class ServerStateError(DevHQError):
    """Operation not permitted in the server's current lifecycle state."""


class ConfigError(DevHQError):
    """Base class for configuration loading failures."""

    def __init__(self, message: str, path: str) -> None:
        super().__init__(message)
        self.path = path


class ConfigNotFound(ConfigError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Configuration file not found: {path}", path)


class ConfigParseError(ConfigError):
    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed to parse configuration file {path}: {reason}", path)
        self.reason = reason


class SpawnError(DevHQError):
    """A command could not be started."""

    def __init__(self, label: str, cmd: Sequence[str], reason: str) -> None:
        super().__init__(f"Failed to spawn {label!r} ({' '.join(cmd)}): {reason}")
        self.label = label
        self.cmd = tuple(cmd)
        self.reason = reason


__all__ = [
    "ConfigError",
    "ConfigNotFound",
    "ConfigParseError",
    "DevHQError",
    "HTTPError",
    "HandlerError",
    "MiddlewareError",
    "RouteNotFound",
    "ServerStateError",
    "SpawnError",
]
