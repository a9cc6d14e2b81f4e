"""Async subprocess execution with timeouts and captured output."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shutil
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO

logger = logging.getLogger(__name__)

COMMAND_NOT_FOUND = 127


class RunnerError(RuntimeError):
    """The process runner could not spawn a process at all."""


@dataclass
class CommandResult:
    """Outcome of one external command."""

    args: list[str]
    returncode: int
    stdout: bytes = b""
    stderr: bytes = b""
    timed_out: bool = False
    error: str | None = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def error_text(self) -> str:
        """Best single-line explanation of a failure."""
        if self.error:
            return self.error
        if self.timed_out:
            return "timed out"
        stderr = self.stderr.decode("utf-8", errors="replace").strip()
        if stderr:
            return stderr.splitlines()[-1]
        return f"exit code {self.returncode}"


class ProcessRunner:
    """Runs external commands; the only component touching the outside world."""

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        self._env = dict(env) if env is not None else None

    @staticmethod
    def which(name: str) -> str | None:
        return shutil.which(name)

    async def run(
        self,
        args: Sequence[str],
        *,
        timeout: float | None = None,
        input: bytes | None = None,
        stdin_path: Path | None = None,
        stdout_path: Path | None = None,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run *args*, never raising for a negative outcome.

        Timeouts and missing executables come back as a ``CommandResult``;
        only an OS-level failure to spawn raises ``RunnerError``.
        """
        argv = [str(a) for a in args]
        loop = asyncio.get_running_loop()
        start = loop.time()
        logger.debug("Running %s (timeout=%s)", argv, timeout)

        with contextlib.ExitStack() as stack:
            stdin: int | IO[bytes] | None = asyncio.subprocess.DEVNULL
            if input is not None:
                stdin = asyncio.subprocess.PIPE
            elif stdin_path is not None:
                stdin = stack.enter_context(open(stdin_path, "rb"))
            stdout: int | IO[bytes] = asyncio.subprocess.PIPE
            if stdout_path is not None:
                stdout = stack.enter_context(open(stdout_path, "wb"))

            merged_env = None
            if self._env is not None or env is not None:
                merged_env = {**os.environ, **(self._env or {}), **(env or {})}

            try:
                proc = await asyncio.create_subprocess_exec(
                    *argv,
                    stdin=stdin,
                    stdout=stdout,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=str(cwd) if cwd else None,
                    env=merged_env,
                )
            except FileNotFoundError as exc:
                logger.warning("Command not found: %s", argv[0])
                return CommandResult(
                    args=argv,
                    returncode=COMMAND_NOT_FOUND,
                    error=f"command not found: {exc.filename or argv[0]}",
                )
            except OSError as exc:
                raise RunnerError(f"Cannot execute {argv[0]}: {exc}") from exc

            try:
                out, err = await asyncio.wait_for(proc.communicate(input=input), timeout=timeout)
            except TimeoutError:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
                elapsed = (loop.time() - start) * 1000
                logger.warning("Command timed out after %ss: %s", timeout, argv)
                return CommandResult(
                    args=argv,
                    returncode=-1,
                    timed_out=True,
                    error=f"timed out after {timeout}s",
                    duration_ms=round(elapsed, 1),
                )

        elapsed = (loop.time() - start) * 1000
        result = CommandResult(
            args=argv,
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=out or b"",
            stderr=err or b"",
            duration_ms=round(elapsed, 1),
        )
        if not result.ok:
            logger.debug("Command failed (%s): %s", result.error_text, argv)
        return result
