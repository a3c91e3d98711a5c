"""CORS policy.

Pure functions from a :class:`CORSConfig` and the request's ``Origin`` header
to response headers. The server applies them to every response it emits and
answers preflight ``OPTIONS`` requests with :func:`preflight_response` before
any middleware runs.
"""

from __future__ import annotations

from typing import Sequence

import msgspec

from .http import Status
from .requests import Request
from .responses import EmptyResponse, Headers, Response

DEFAULT_ALLOW_METHODS: tuple[str, ...] = ("GET", "POST", "PUT", "DELETE", "OPTIONS")
DEFAULT_ALLOW_HEADERS: tuple[str, ...] = ("Content-Type", "Authorization")


class CORSConfig(msgspec.Struct, frozen=True):
    """Cross-origin policy.

    ``origin`` may be a single string (always sent as-is), a list of allowed
    origins (the request origin is echoed when listed, otherwise the first
    entry is sent), or ``None`` for ``*``.
    """

    origin: str | tuple[str, ...] | None = None
    methods: tuple[str, ...] | None = None
    headers: tuple[str, ...] | None = None
    credentials: bool = False


def resolve_origin(config: CORSConfig, request_origin: str | None) -> str:
    allowed = config.origin
    if allowed is None:
        return "*"
    if isinstance(allowed, str):
        return allowed
    candidates: Sequence[str] = tuple(allowed)
    if not candidates:
        return "*"
    if request_origin is not None and request_origin in candidates:
        return request_origin
    return candidates[0]


def cors_headers(config: CORSConfig, request_origin: str | None) -> Headers:
    headers: list[tuple[str, str]] = [
        ("Access-Control-Allow-Origin", resolve_origin(config, request_origin)),
        ("Access-Control-Allow-Methods", ", ".join(config.methods or DEFAULT_ALLOW_METHODS)),
        ("Access-Control-Allow-Headers", ", ".join(config.headers or DEFAULT_ALLOW_HEADERS)),
    ]
    if config.credentials:
        headers.append(("Access-Control-Allow-Credentials", "true"))
    return tuple(headers)


def apply_cors(response: Response, request: Request, config: CORSConfig | None) -> Response:
    """Decorate ``response`` with CORS headers; untouched when ``config`` is ``None``."""

    if config is None:
        return response
    return response.replace_headers(cors_headers(config, request.origin))


def is_preflight(request: Request, config: CORSConfig | None) -> bool:
    return config is not None and request.method == "OPTIONS"


def preflight_response(request: Request, config: CORSConfig) -> Response:
    return apply_cors(EmptyResponse(int(Status.NO_CONTENT)), request, config)


__all__ = [
    "DEFAULT_ALLOW_HEADERS",
    "DEFAULT_ALLOW_METHODS",
    "CORSConfig",
    "apply_cors",
    "cors_headers",
    "is_preflight",
    "preflight_response",
    "resolve_origin",
]
