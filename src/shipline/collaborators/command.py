"""Structured external command execution.

Every collaborator reaches its tool through CommandRunner. Commands are
argument vectors handed straight to the OS; nothing passes through a shell,
so arguments never need quoting.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Protocol

from shipline.observability.logging import get_logger

log = get_logger(__name__)


class CommandError(Exception):
    """Base exception for command execution problems."""

    def __init__(self, argv: Sequence[str], message: str) -> None:
        self.argv = list(argv)
        super().__init__(f"[{self.argv[0] if self.argv else '?'}] {message}")


class CommandNotFound(CommandError):
    """Raised when the executable is not installed or not on PATH."""


class CommandTimeout(CommandError):
    """Raised when a command does not finish within its timeout."""

    def __init__(self, argv: Sequence[str], timeout: float) -> None:
        self.timeout = timeout
        super().__init__(argv, f"timed out after {timeout:g}s")


@dataclass(frozen=True)
class CommandResult:
    """Captured outcome of a finished command."""

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr, stripped."""
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


class Runner(Protocol):
    """Anything that can run an argument vector."""

    async def run(
        self,
        argv: Sequence[str],
        *,
        input_data: str | None = None,
        timeout: float | None = None,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult: ...


class CommandRunner:
    """Run commands as asyncio subprocesses and capture their output."""

    def __init__(self, default_timeout: float | None = None) -> None:
        self._default_timeout = default_timeout

    async def run(
        self,
        argv: Sequence[str],
        *,
        input_data: str | None = None,
        timeout: float | None = None,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run a command to completion.

        Args:
            argv: Executable followed by its arguments.
            input_data: Text written to the command's stdin.
            timeout: Seconds before the command is killed.
            cwd: Working directory.
            env: Extra environment variables layered over os.environ.

        Returns:
            CommandResult with exit code and decoded output. A non-zero exit
            is returned, not raised.

        Raises:
            CommandNotFound: If the executable does not exist.
            CommandTimeout: If the timeout elapses.
        """
        if not argv:
            raise ValueError("argv must not be empty")

        argv = [str(arg) for arg in argv]
        timeout = timeout if timeout is not None else self._default_timeout
        process_env = {**os.environ, **env} if env else None

        log.debug("command_start", argv=argv, cwd=str(cwd) if cwd else None)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if input_data is not None else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=process_env,
            )
        except FileNotFoundError as e:
            raise CommandNotFound(argv, f"executable not found: {argv[0]}") from e

        stdin_bytes = input_data.encode() if input_data is not None else None
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(stdin_bytes), timeout=timeout
            )
        except TimeoutError as e:
            process.kill()
            await process.wait()
            log.warning("command_timeout", argv=argv, timeout=timeout)
            raise CommandTimeout(argv, timeout or 0.0) from e

        result = CommandResult(
            argv=argv,
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode(errors="replace") if stdout else "",
            stderr=stderr.decode(errors="replace") if stderr else "",
        )
        log.debug("command_finished", argv=argv, returncode=result.returncode)
        return result
