"""Routing utilities.

Patterns are tokenised once, when the route is added, into literal, named
parameter (``:id``) and trailing wildcard (``*``) segments. Matching walks the
registrations in insertion order and compares segment by segment, so the first
registration whose method and pattern both match wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping

from .exceptions import RouteNotFound
from .http import normalize_method

if TYPE_CHECKING:
    from .requests import Request

Handler = Callable[["Request", Mapping[str, str]], Awaitable[Any] | Any]

WILDCARD_PARAM = "*"

_PARAM_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


class SegmentKind(str, Enum):
    LITERAL = "literal"
    PARAM = "param"
    WILDCARD = "wildcard"


@dataclass(slots=True, frozen=True)
class Segment:
    kind: SegmentKind
    value: str


@dataclass(slots=True, frozen=True)
class RoutePattern:
    """A compiled path template."""

    template: str
    segments: tuple[Segment, ...]

    @classmethod
    def compile(cls, template: str) -> "RoutePattern":
        if not template.startswith("/"):
            raise ValueError(f"Route pattern must start with '/': {template!r}")
        parts = _split(template)
        segments: list[Segment] = []
        seen: set[str] = set()
        for index, part in enumerate(parts):
            if part == "*":
                if index != len(parts) - 1:
                    raise ValueError(f"Wildcard must be the last segment: {template!r}")
                segments.append(Segment(SegmentKind.WILDCARD, WILDCARD_PARAM))
            elif part.startswith(":"):
                name = part[1:]
                if _PARAM_NAME.fullmatch(name) is None:
                    raise ValueError(f"Invalid parameter name {name!r} in {template!r}")
                if name in seen:
                    raise ValueError(f"Duplicate parameter {name!r} in {template!r}")
                seen.add(name)
                segments.append(Segment(SegmentKind.PARAM, name))
            elif "*" in part:
                raise ValueError(f"Wildcard must occupy a whole segment: {template!r}")
            else:
                segments.append(Segment(SegmentKind.LITERAL, part))
        return cls(template=template, segments=tuple(segments))

    @property
    def param_names(self) -> tuple[str, ...]:
        return tuple(seg.value for seg in self.segments if seg.kind is not SegmentKind.LITERAL)

    def match(self, path: str) -> dict[str, str] | None:
        """Return extracted parameters when ``path`` matches, otherwise ``None``.

        Parameter values are returned exactly as they appear in ``path``; no
        percent-decoding is applied.
        """

        parts = _split(path)
        segments = self.segments
        has_wildcard = bool(segments) and segments[-1].kind is SegmentKind.WILDCARD
        fixed = len(segments) - 1 if has_wildcard else len(segments)
        if has_wildcard:
            if len(parts) < fixed + 1:
                return None
        elif len(parts) != fixed:
            return None
        params: dict[str, str] = {}
        for segment, part in zip(segments[:fixed], parts):
            if segment.kind is SegmentKind.LITERAL:
                if part != segment.value:
                    return None
            else:
                if not part:
                    return None
                params[segment.value] = part
        if has_wildcard:
            params[WILDCARD_PARAM] = "/".join(parts[fixed:])
        return params


@dataclass(slots=True)
class Route:
    method: str
    pattern: RoutePattern
    handler: Handler

    @property
    def path(self) -> str:
        return self.pattern.template


@dataclass(slots=True)
class RouteMatch:
    route: Route
    params: Mapping[str, str]

    @property
    def handler(self) -> Handler:
        return self.route.handler


class Router:
    """Ordered route table."""

    def __init__(self) -> None:
        self._routes: list[Route] = []

    def add_route(self, method: str, path: str, handler: Handler) -> Route:
        route = Route(method=normalize_method(method), pattern=RoutePattern.compile(path), handler=handler)
        self._routes.append(route)
        return route

    def match(self, method: str, path: str) -> RouteMatch | None:
        method = method.upper()
        for route in self._routes:
            if route.method != method:
                continue
            params = route.pattern.match(path)
            if params is not None:
                return RouteMatch(route=route, params=params)
        return None

    def find(self, method: str, path: str) -> RouteMatch:
        match = self.match(method, path)
        if match is None:
            raise RouteNotFound(method.upper(), path)
        return match

    @property
    def routes(self) -> tuple[Route, ...]:
        return tuple(self._routes)

    def __len__(self) -> int:
        return len(self._routes)


def _split(path: str) -> list[str]:
    return path[1:].split("/") if path.startswith("/") else path.split("/")


__all__ = [
    "WILDCARD_PARAM",
    "Handler",
    "Route",
    "RouteMatch",
    "RoutePattern",
    "Router",
    "Segment",
    "SegmentKind",
]
