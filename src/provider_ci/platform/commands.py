from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from provider_ci.observability.adapters.logging import LogSink, MemoryLogSink, log

# Shell convention for "command not found".
COMMAND_NOT_FOUND = 127


@dataclass(frozen=True, slots=True)
class CommandResult:
    returncode: int
    stdout: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@runtime_checkable
class ToolRunner(Protocol):
    # Runs one external tool; only the exit code is interpreted.
    def run(self, argv: Sequence[str], *, env: Mapping[str, str] | None = None, quiet: bool = False) -> int:
        ...

    def capture(self, argv: Sequence[str], *, env: Mapping[str, str] | None = None) -> CommandResult:
        ...


class CommandRunner:
    """Runs build/test/analysis tools as blocking subprocesses.

    Tool output is not captured by `run`: it goes straight to the orchestrator's terminal
    and is the primary diagnostic surface of a failing phase.
    """

    def __init__(self, *, workdir: Path | None = None, log_sink: LogSink | None = None) -> None:
        self._workdir = workdir
        self._log = log_sink if log_sink is not None else MemoryLogSink()

    def run(self, argv: Sequence[str], *, env: Mapping[str, str] | None = None, quiet: bool = False) -> int:
        command = list(argv)
        log(self._log, "debug", "running command", argv=command)
        stderr = subprocess.DEVNULL if quiet else None
        try:
            completed = subprocess.run(command, cwd=self._workdir, env=self._child_env(env), stderr=stderr, check=False)
        except FileNotFoundError:
            log(self._log, "error", "command not found", argv=command)
            return COMMAND_NOT_FOUND
        return completed.returncode

    def capture(self, argv: Sequence[str], *, env: Mapping[str, str] | None = None) -> CommandResult:
        command = list(argv)
        try:
            completed = subprocess.run(
                command,
                cwd=self._workdir,
                env=self._child_env(env),
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                text=True,
                check=False,
            )
        except FileNotFoundError:
            return CommandResult(returncode=COMMAND_NOT_FOUND)
        return CommandResult(returncode=completed.returncode, stdout=completed.stdout)

    @staticmethod
    def _child_env(env: Mapping[str, str] | None) -> dict[str, str]:
        # Log verbosity/backtrace toggles are passed through, never interpreted here.
        merged = dict(os.environ)
        merged.update(env or {})
        return merged
