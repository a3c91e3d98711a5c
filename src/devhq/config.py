"""Server options and configuration file loading.

``ServerOptions`` is the explicit configuration handed to
:class:`~devhq.application.Server`; the server itself never reads the process
environment. :meth:`ServerOptions.from_env` is the one place where the
``PORT`` override is consulted.

The loaders decode JSON with msgspec and raise
:class:`~devhq.exceptions.ConfigNotFound` or
:class:`~devhq.exceptions.ConfigParseError` to the caller.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Generic, Iterable, Mapping, TypeVar, overload

import msgspec
from msgspec import structs

from .cors import CORSConfig
from .exceptions import ConfigNotFound, ConfigParseError
from .serialization import json_decode

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PORT = 3000
DEFAULT_HOSTNAME = "localhost"
PORT_ENV_VAR = "PORT"


class TLSConfig(msgspec.Struct, frozen=True):
    """Paths to the PEM encoded certificate chain and private key.

    Inline PEM text is not accepted; uvicorn loads both from disk, so write
    in-memory material to files first.
    """

    cert: str
    key: str


class ServerOptions(msgspec.Struct, frozen=True, rename="camel"):
    """Immutable listener and policy settings for a server.

    Field names are read in camelCase (``basePath``) when decoded from a
    configuration mapping.
    """

    port: int | None = None
    hostname: str = DEFAULT_HOSTNAME
    base_path: str = ""
    tls: TLSConfig | None = None
    cors: CORSConfig | None = None

    @property
    def resolved_port(self) -> int:
        return DEFAULT_PORT if self.port is None else self.port

    @property
    def normalized_base_path(self) -> str:
        stripped = self.base_path.strip().strip("/")
        return f"/{stripped}" if stripped else ""

    @property
    def scheme(self) -> str:
        return "https" if self.tls is not None else "http"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ServerOptions":
        return msgspec.convert(dict(data), type=cls)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **fields: Any) -> "ServerOptions":
        """Build options, taking ``port`` from ``PORT`` when not given explicitly."""

        env = os.environ if environ is None else environ
        if fields.get("port") is None:
            fields["port"] = _env_port(env)
        return cls(**fields)

    def with_env(self, environ: Mapping[str, str] | None = None) -> "ServerOptions":
        """Return a copy whose unset ``port`` is filled from the environment."""

        if self.port is not None:
            return self
        env = os.environ if environ is None else environ
        return structs.replace(self, port=_env_port(env))


def _env_port(environ: Mapping[str, str]) -> int | None:
    raw = environ.get(PORT_ENV_VAR)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", PORT_ENV_VAR, raw)
        return None


class ConfigStats(msgspec.Struct, frozen=True):
    size: int
    modified: dt.datetime
    is_file: bool
    is_dir: bool


def _read_bytes(path: str | os.PathLike[str]) -> bytes:
    target = Path(path)
    try:
        return target.read_bytes()
    except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as exc:
        raise ConfigNotFound(str(target)) from exc


def _decode(path: str | os.PathLike[str], raw: bytes, type: type[T] | None) -> T | Any:
    try:
        data = json_decode(raw)
        if type is None:
            return data
        return msgspec.convert(data, type=type)
    except (msgspec.DecodeError, msgspec.ValidationError) as exc:
        raise ConfigParseError(str(path), str(exc)) from exc


@overload
def load_config_sync(path: str | os.PathLike[str]) -> Any: ...


@overload
def load_config_sync(path: str | os.PathLike[str], type: type[T]) -> T: ...


def load_config_sync(path: str | os.PathLike[str], type: type[T] | None = None) -> T | Any:
    """Read and decode a JSON configuration file."""

    return _decode(path, _read_bytes(path), type)


async def load_config(path: str | os.PathLike[str], type: type[T] | None = None) -> T | Any:
    """Async variant of :func:`load_config_sync`; file I/O runs in a worker thread."""

    raw = await asyncio.to_thread(_read_bytes, path)
    return _decode(path, raw, type)


async def load_text_config(path: str | os.PathLike[str]) -> str:
    raw = await asyncio.to_thread(_read_bytes, path)
    return raw.decode("utf-8")


def config_stats(path: str | os.PathLike[str]) -> ConfigStats:
    target = Path(path)
    try:
        stat = target.stat()
    except FileNotFoundError as exc:
        raise ConfigNotFound(str(target)) from exc
    return ConfigStats(
        size=stat.st_size,
        modified=dt.datetime.fromtimestamp(stat.st_mtime, tz=dt.timezone.utc),
        is_file=target.is_file(),
        is_dir=target.is_dir(),
    )


async def preload_configs(paths: Iterable[str | os.PathLike[str]]) -> dict[str, Any]:
    """Load every readable configuration in ``paths``; missing or broken files are skipped."""

    keys = [str(path) for path in paths]
    results = await asyncio.gather(*(load_config(key) for key in keys), return_exceptions=True)
    loaded: dict[str, Any] = {}
    for key, result in zip(keys, results):
        if isinstance(result, (ConfigNotFound, ConfigParseError)):
            logger.debug("Skipping configuration %s: %s", key, result)
            continue
        if isinstance(result, BaseException):
            raise result
        loaded[key] = result
    return loaded


class ConfigCache(Generic[T]):
    """Cache of decoded configuration files with a per-entry time-to-live (seconds)."""

    def __init__(
        self,
        ttl: float = 60.0,
        *,
        type: type[T] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self._type = type
        self._clock = clock
        self._entries: dict[str, tuple[float, T]] = {}

    async def get(self, path: str | os.PathLike[str], ttl: float | None = None) -> T:
        key = str(path)
        now = self._clock()
        cached = self._entries.get(key)
        if cached is not None and cached[0] > now:
            return cached[1]
        value = await load_config(key, self._type)
        self._entries[key] = (now + (self.ttl if ttl is None else ttl), value)
        return value

    def invalidate(self, path: str | os.PathLike[str] | None = None) -> None:
        if path is None:
            self._entries.clear()
        else:
            self._entries.pop(str(path), None)

    def __contains__(self, path: object) -> bool:
        return str(path) in self._entries

    def __len__(self) -> int:
        return len(self._entries)


__all__ = [
    "DEFAULT_HOSTNAME",
    "DEFAULT_PORT",
    "ConfigCache",
    "ConfigStats",
    "ServerOptions",
    "TLSConfig",
    "config_stats",
    "load_config",
    "load_config_sync",
    "load_text_config",
    "preload_configs",
]
