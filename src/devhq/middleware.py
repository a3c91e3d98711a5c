"""Middleware chaining primitives.

A middleware is any callable shaped like::

    async def timing(request: Request, next: Next) -> Response:
        response = await next()
        return response.with_headers([("x-served-by", "devhq")])

``next`` takes no arguments and resolves to the response produced by the rest
of the chain. Returning without awaiting it short-circuits everything
downstream, including routing. Calling it a second time raises
:class:`~devhq.exceptions.MiddlewareError`.
"""

from __future__ import annotations

import inspect
from typing import Awaitable, Callable, Iterable, Iterator, Protocol

from .exceptions import MiddlewareError
from .requests import Request
from .responses import Response, coerce_response

Next = Callable[[], Awaitable[Response]]
Terminal = Callable[[Request], Awaitable[Response]]


class Middleware(Protocol):
    async def __call__(self, request: Request, next: Next) -> Response:  # pragma: no cover - protocol
        ...


MiddlewareCallable = Callable[[Request, Next], Awaitable[Response] | Response]


class MiddlewarePipeline:
    """Ordered list of middleware executed by an index-based dispatcher."""

    __slots__ = ("_middlewares",)

    def __init__(self, middlewares: Iterable[MiddlewareCallable] = ()) -> None:
        self._middlewares: list[MiddlewareCallable] = list(middlewares)

    def use(self, middleware: MiddlewareCallable) -> None:
        self._middlewares.append(middleware)

    def __len__(self) -> int:
        return len(self._middlewares)

    def __iter__(self) -> Iterator[MiddlewareCallable]:
        return iter(self._middlewares)

    async def run(self, request: Request, terminal: Terminal) -> Response:
        """Execute the chain for ``request``, ending in ``terminal``."""

        chain = tuple(self._middlewares)
        return await _invoke(chain, 0, request, terminal)


async def _invoke(
    chain: tuple[MiddlewareCallable, ...],
    index: int,
    request: Request,
    terminal: Terminal,
) -> Response:
    if index >= len(chain):
        return await terminal(request)
    middleware = chain[index]
    result = middleware(request, _NextHandler(chain, index + 1, request, terminal))
    if inspect.isawaitable(result):
        result = await result
    return coerce_response(result)


class _NextHandler:
    __slots__ = ("_called", "_chain", "_index", "_request", "_terminal")

    def __init__(
        self,
        chain: tuple[MiddlewareCallable, ...],
        index: int,
        request: Request,
        terminal: Terminal,
    ) -> None:
        self._chain = chain
        self._index = index
        self._request = request
        self._terminal = terminal
        self._called = False

    async def __call__(self) -> Response:
        if self._called:
            culprit = self._chain[self._index - 1]
            name = getattr(culprit, "__qualname__", repr(culprit))
            raise MiddlewareError(f"next() called more than once by middleware {name}")
        self._called = True
        return await _invoke(self._chain, self._index, self._request, self._terminal)


__all__ = ["Middleware", "MiddlewareCallable", "MiddlewarePipeline", "Next", "Terminal"]
