"""HTTP utilities and status code helpers."""

from __future__ import annotations

from enum import IntEnum


class Status(IntEnum):
    """Enumeration of the HTTP status codes used within the package."""

    OK = 200
    CREATED = 201
    NO_CONTENT = 204
    BAD_REQUEST = 400
    NOT_FOUND = 404
    CONFLICT = 409
    UNSUPPORTED_MEDIA_TYPE = 415
    INTERNAL_SERVER_ERROR = 500


HTTP_METHODS: frozenset[str] = frozenset({"GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"})


def normalize_method(method: str) -> str:
    """Return ``method`` upper-cased, rejecting verbs outside :data:`HTTP_METHODS`."""

    normalized = method.upper()
    if normalized not in HTTP_METHODS:
        raise ValueError(f"Unsupported HTTP method: {method}")
    return normalized


__all__ = ["HTTP_METHODS", "Status", "normalize_method"]
