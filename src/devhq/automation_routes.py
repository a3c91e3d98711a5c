"""HTTP surface for :class:`~devhq.automation.Automation`.

The run route executes arbitrary commands, so it is only registered when
``allow_run=True`` and only accepts ``application/json`` bodies. Browsers
cannot send that content type cross-origin without a preflight.
"""

from __future__ import annotations

from typing import Mapping
from urllib.parse import unquote

import msgspec

from .application import Server
from .automation import Automation
from .exceptions import HTTPError
from .http import Status
from .requests import Request
from .responses import JSONResponse, Response

JSON_MEDIA_TYPE = "application/json"


class RunCommand(msgspec.Struct, frozen=True):
    cmd: list[str]
    cwd: str | None = None
    env: dict[str, str] | None = None


def _require_json(request: Request) -> None:
    media_type = (request.header("content-type") or "").split(";", 1)[0].strip().lower()
    if media_type != JSON_MEDIA_TYPE:
        raise HTTPError(Status.UNSUPPORTED_MEDIA_TYPE, f"Content-Type must be {JSON_MEDIA_TYPE}")


def mount_automation(
    server: Server,
    automation: Automation,
    prefix: str = "/api/processes",
    *,
    allow_run: bool = False,
) -> Server:
    """Register process listing, inspection and kill routes under ``prefix``.

    ``POST {prefix}/:label/run`` is added only when ``allow_run`` is true.
    """

    base = "/" + prefix.strip("/")

    async def list_processes(request: Request, params: Mapping[str, str]) -> Response:
        return JSONResponse({"processes": automation.list_processes()})

    async def process_status(request: Request, params: Mapping[str, str]) -> Response:
        status = automation.status(unquote(params["label"]))
        if not status.exists:
            raise HTTPError(Status.NOT_FOUND, f"Unknown process {status.label!r}")
        return JSONResponse(status)

    async def kill_process(request: Request, params: Mapping[str, str]) -> Response:
        label = unquote(params["label"])
        result = automation.kill(label)
        if result.success:
            return JSONResponse(result)
        if label not in automation:
            return JSONResponse(result, status=int(Status.NOT_FOUND))
        return JSONResponse(result, status=int(Status.CONFLICT))

    async def run_process(request: Request, params: Mapping[str, str]) -> Response:
        _require_json(request)
        try:
            body = await request.json(RunCommand)
        except (msgspec.DecodeError, msgspec.ValidationError) as exc:
            raise HTTPError(Status.BAD_REQUEST, str(exc)) from exc
        if not body.cmd:
            raise HTTPError(Status.BAD_REQUEST, "cmd must not be empty")
        result = await automation.run_command(unquote(params["label"]), body.cmd, cwd=body.cwd, env=body.env)
        return JSONResponse(result)

    server.add_route("GET", base, list_processes)
    server.add_route("GET", f"{base}/:label", process_status)
    server.add_route("DELETE", f"{base}/:label", kill_process)
    if allow_run:
        server.add_route("POST", f"{base}/:label/run", run_process)
    return server


__all__ = ["RunCommand", "mount_automation"]
