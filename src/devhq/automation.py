"""Labelled subprocess automation.

:class:`Automation` keeps every process it started under a caller-chosen
label so it can later be inspected, killed or cleaned up. Commands are
spawned with :func:`asyncio.create_subprocess_exec`; nothing goes through a
shell.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Literal, Mapping, Sequence

import msgspec

from .exceptions import SpawnError

logger = logging.getLogger(__name__)

ProcessState = Literal["not_found", "running", "exited", "killed"]


class CommandResult(msgspec.Struct, frozen=True):
    stdout: str
    stderr: str
    exit_code: int
    error: bool = False

    @property
    def ok(self) -> bool:
        return not self.error and self.exit_code == 0


class ProcessStatus(msgspec.Struct, frozen=True):
    label: str
    exists: bool
    status: ProcessState
    pid: int | None = None
    exit_code: int | None = None


class KillResult(msgspec.Struct, frozen=True):
    success: bool
    pid: int | None = None
    reason: str | None = None


class _Tracked:
    __slots__ = ("cmd", "killed", "process")

    def __init__(self, process: asyncio.subprocess.Process, cmd: tuple[str, ...]) -> None:
        self.process = process
        self.cmd = cmd
        self.killed = False

    @property
    def state(self) -> ProcessState:
        if self.killed:
            return "killed"
        if self.process.returncode is None:
            return "running"
        return "exited"


class Automation:
    """Registry of labelled subprocesses.

    Starting a new command under a label that is already in use replaces the
    previous registration; the earlier process is left running. At most
    ``history`` finished (exited or killed) entries are kept; the oldest are
    forgotten as new commands start. Running processes are never dropped.
    """

    def __init__(self, *, raise_on_spawn_error: bool = False, history: int = 100) -> None:
        self.raise_on_spawn_error = raise_on_spawn_error
        self.history = history
        self._processes: dict[str, _Tracked] = {}

    async def spawn(
        self,
        label: str,
        cmd: Sequence[str],
        *,
        cwd: str | os.PathLike[str] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> asyncio.subprocess.Process:
        """Start ``cmd`` in the background with piped output and return the process."""

        if not cmd:
            raise SpawnError(label, cmd, "empty command")
        merged_env = {**os.environ, **env} if env else None
        logger.info("Running %s: %s", label, " ".join(cmd))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=cwd,
                env=merged_env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise SpawnError(label, cmd, str(exc)) from exc
        self._processes.pop(label, None)
        self._processes[label] = _Tracked(process, tuple(cmd))
        self._prune()
        return process

    async def run_command(
        self,
        label: str,
        cmd: Sequence[str],
        *,
        cwd: str | os.PathLike[str] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run ``cmd`` to completion and collect its output.

        A command that cannot be started yields ``CommandResult(exit_code=1,
        error=True)`` carrying the reason in ``stderr``, unless the automation
        was built with ``raise_on_spawn_error=True``.
        """

        try:
            process = await self.spawn(label, cmd, cwd=cwd, env=env)
        except SpawnError as exc:
            if self.raise_on_spawn_error:
                raise
            logger.warning("%s", exc)
            return CommandResult(stdout="", stderr=exc.reason, exit_code=1, error=True)
        stdout, stderr = await process.communicate()
        self._prune()
        exit_code = process.returncode if process.returncode is not None else 1
        logger.debug("%s exited with %d", label, exit_code)
        return CommandResult(
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            exit_code=exit_code,
        )

    def _prune(self) -> None:
        finished = [label for label, tracked in self._processes.items() if tracked.state != "running"]
        for label in finished[: max(len(finished) - self.history, 0)]:
            del self._processes[label]

    def status(self, label: str) -> ProcessStatus:
        tracked = self._processes.get(label)
        if tracked is None:
            return ProcessStatus(label=label, exists=False, status="not_found")
        return ProcessStatus(
            label=label,
            exists=True,
            status=tracked.state,
            pid=tracked.process.pid,
            exit_code=tracked.process.returncode,
        )

    def kill(self, label: str) -> KillResult:
        tracked = self._processes.get(label)
        if tracked is None:
            return KillResult(success=False, reason="Process not found")
        pid = tracked.process.pid
        if tracked.killed:
            return KillResult(success=False, pid=pid, reason="Process already killed")
        if tracked.process.returncode is not None:
            return KillResult(success=False, pid=pid, reason="Process already exited")
        try:
            tracked.process.kill()
        except ProcessLookupError:
            return KillResult(success=False, pid=pid, reason="Process already exited")
        tracked.killed = True
        logger.info("Killed %s (pid %d)", label, pid)
        return KillResult(success=True, pid=pid)

    def list_processes(self) -> list[ProcessStatus]:
        return [self.status(label) for label in self._processes]

    async def cleanup(self) -> None:
        """Kill every process still running and forget all labels."""

        for label, tracked in list(self._processes.items()):
            if tracked.state == "running":
                self.kill(label)
                await tracked.process.wait()
        self._processes.clear()

    def __contains__(self, label: object) -> bool:
        return label in self._processes

    def __len__(self) -> int:
        return len(self._processes)


__all__ = ["Automation", "CommandResult", "KillResult", "ProcessStatus"]
