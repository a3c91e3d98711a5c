"""Command line utilities for devhq."""

from __future__ import annotations

import argparse
import asyncio
import importlib
import logging
import sys
import urllib.error
import urllib.request
from typing import Mapping, Sequence

import msgspec
from msgspec import structs

from .application import Server
from .automation import Automation
from .automation_routes import mount_automation
from .config import ServerOptions, load_config_sync
from .exceptions import ConfigError
from .requests import Request
from .serialization import json_decode, json_encode

PROG = "devhq"
HEALTH_PATH = "/health"


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


def build_default_server(
    options: ServerOptions,
    automation: Automation | None = None,
    *,
    allow_run: bool = False,
) -> Server:
    """Server exposing a health check and the process automation routes.

    The command-running route is only mounted with ``allow_run=True``.
    """

    automation = automation or Automation()
    server = Server(options)

    @server.get(HEALTH_PATH)
    async def health(request: Request, params: Mapping[str, str]) -> dict[str, str]:
        return {"status": "ok"}

    mount_automation(server, automation, allow_run=allow_run)
    server.on_shutdown(automation.cleanup)
    return server


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=PROG, description="devhq development server")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP/WebSocket server")
    serve.add_argument("--config", help="JSON file with server options")
    serve.add_argument("--host", dest="hostname", help="Hostname to bind")
    serve.add_argument("--port", type=int, help="Port to bind (defaults to $PORT, then 3000)")
    serve.add_argument("--base-path", help="Prefix stripped from every request path")
    serve.add_argument(
        "--allow-run",
        action="store_true",
        help="Expose POST /api/processes/:label/run, which executes arbitrary commands",
    )
    serve.add_argument(
        "--app",
        help="module:attribute naming a Server, or a callable taking ServerOptions and returning one",
    )
    serve.set_defaults(func=_cmd_serve)

    run = sub.add_parser("run", help="Run a command through the automation layer")
    run.add_argument("cmd", nargs=argparse.REMAINDER, help="Command and arguments")
    run.add_argument("--label", default="cli", help="Label to register the process under")
    run.add_argument("--json", action="store_true", help="Print the result as JSON")
    run.set_defaults(func=_cmd_run)

    health = sub.add_parser("health", help="Check a running server")
    health.add_argument("--url", default=f"http://localhost:3000{HEALTH_PATH}", help="Health endpoint URL")
    health.add_argument("--timeout", type=float, default=5.0)
    health.set_defaults(func=_cmd_health)

    return parser


def _resolve_options(args: argparse.Namespace) -> ServerOptions:
    if args.config:
        try:
            options = load_config_sync(args.config, ServerOptions)
        except ConfigError as exc:
            raise SystemExit(str(exc)) from exc
    else:
        options = ServerOptions()
    overrides = {
        name: value
        for name, value in (("hostname", args.hostname), ("port", args.port), ("base_path", args.base_path))
        if value is not None
    }
    if overrides:
        options = structs.replace(options, **overrides)
    return options.with_env()


def _load_app(target: str, options: ServerOptions) -> Server:
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise SystemExit(f"--app must look like module:attribute, got {target!r}")
    module = importlib.import_module(module_name)
    try:
        value = getattr(module, attribute)
    except AttributeError as exc:
        raise SystemExit(f"Module {module_name!r} has no attribute {attribute!r}") from exc
    if not isinstance(value, Server) and callable(value):
        value = value(options)
    if not isinstance(value, Server):
        raise SystemExit(f"{target} did not produce a devhq Server")
    return value


def _cmd_serve(args: argparse.Namespace) -> int:
    options = _resolve_options(args)
    server = _load_app(args.app, options) if args.app else build_default_server(options, allow_run=args.allow_run)
    try:
        server.run()
    except KeyboardInterrupt:  # pragma: no cover - interactive
        pass
    return 0


def _cmd_run(args: argparse.Namespace) -> int:
    cmd = list(args.cmd)
    if cmd and cmd[0] == "--":
        cmd = cmd[1:]
    if not cmd:
        raise SystemExit("run requires a command")
    result = asyncio.run(Automation().run_command(args.label, cmd))
    if args.json:
        print(json_encode(result).decode("utf-8"))
    else:
        sys.stdout.write(result.stdout)
        sys.stderr.write(result.stderr)
    return result.exit_code


def _cmd_health(args: argparse.Namespace) -> int:
    request = urllib.request.Request(args.url, method="GET", headers={"accept": "application/json"})
    try:
        with urllib.request.urlopen(request, timeout=args.timeout) as response:
            status = response.status
            payload = response.read()
    except urllib.error.HTTPError as exc:
        print(f"unhealthy: HTTP {exc.code}")
        return 1
    except urllib.error.URLError as exc:
        print(f"unreachable: {exc.reason}")
        return 1
    try:
        detail = json_decode(payload) if payload else None
    except msgspec.DecodeError:
        detail = None
    if status != 200 or not isinstance(detail, dict) or detail.get("status") != "ok":
        print(f"unhealthy: HTTP {status} {detail!r}")
        return 1
    print("ok")
    return 0


__all__ = ["build_default_server", "main"]
