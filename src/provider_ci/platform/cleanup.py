from __future__ import annotations

import shutil
import signal
import threading
from collections.abc import Callable
from pathlib import Path
from types import FrameType, TracebackType

from provider_ci.config.models import HarnessProfile
from provider_ci.domain.errors import HarnessInterrupted
from provider_ci.domain.run import TestRun
from provider_ci.fixtures.mapping import FixtureInjector
from provider_ci.observability.adapters.logging import LogSink, MemoryLogSink, log
from provider_ci.platform.commands import ToolRunner
from provider_ci.platform.slots import strip_slot_lines
from provider_ci.platform.supervisor import ProcessSupervisor

EMULATOR_ROLE = "emulator"
SERVICE_ROLE = "service"

_GUARDED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class CleanupGuard:
    """Releases every run resource exactly once, whatever ends the run.

    Enter the guard before the first child process or fixture is created. Leaving the
    guarded block, normally or through an exception, runs the cleanup steps. SIGINT and
    SIGTERM received inside the block are turned into HarnessInterrupted so the block
    unwinds through the same path.
    """

    def __init__(
        self,
        *,
        run: TestRun,
        profile: HarnessProfile,
        workdir: Path,
        supervisor: ProcessSupervisor,
        injector: FixtureInjector,
        runner: ToolRunner,
        log_sink: LogSink | None = None,
        handle_signals: bool = True,
    ) -> None:
        self._run = run
        self._profile = profile
        self._workdir = workdir
        self._supervisor = supervisor
        self._injector = injector
        self._runner = runner
        self._log = log_sink if log_sink is not None else MemoryLogSink()
        self._handle_signals = handle_signals
        self._previous_handlers: dict[int, object] = {}
        self._done = False
        self.performed: list[str] = []
        self.failures: dict[str, BaseException] = {}

    @property
    def done(self) -> bool:
        return self._done

    def __enter__(self) -> CleanupGuard:
        if self._handle_signals and threading.current_thread() is threading.main_thread():
            for signum in _GUARDED_SIGNALS:
                self._previous_handlers[signum] = signal.signal(signum, _raise_interrupted)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            self.run_cleanup()
        finally:
            for signum, handler in self._previous_handlers.items():
                signal.signal(signum, handler)  # type: ignore[arg-type]
            self._previous_handlers.clear()

    def run_cleanup(self) -> bool:
        # Returns False when cleanup already ran.
        if self._done:
            return False
        self._done = True
        # A second interrupt must not cut the cleanup short.
        for signum in self._previous_handlers:
            signal.signal(signum, signal.SIG_IGN)

        log(self._log, "info", "Shutdown the service and clean up", phase="cleanup")
        for name, step in self._steps():
            try:
                step()
            except Exception as exc:  # noqa: BLE001 - one failing step must not skip the others
                self.failures[name] = exc
                log(self._log, "error", "cleanup step failed", step=name, error=str(exc))
            else:
                self.performed.append(name)
        return True

    def _steps(self) -> list[tuple[str, Callable[[], None]]]:
        steps: list[tuple[str, Callable[[], None]]] = [
            ("stop_service", lambda: self._stop_role(SERVICE_ROLE)),
            ("stop_emulator", lambda: self._stop_role(EMULATOR_ROLE)),
            ("reap_orphans", self._reap_orphans),
            ("strip_slot_lines", self._strip_slot_lines),
            ("remove_fixtures", self._remove_fixtures),
            ("remove_emulator_state", self._remove_emulator_state),
        ]
        if self._run.clean_on_exit and self._profile.commands.clean is not None:
            steps.append(("purge_artifacts", self._purge_artifacts))
        return steps

    def _stop_role(self, role: str) -> None:
        process = self._supervisor.get(role)
        if process is not None and process.running:
            self._supervisor.stop(process, timeout_seconds=self._profile.timing.stop_timeout_seconds)

    def _reap_orphans(self) -> None:
        patterns = [self._profile.service.role_pattern]
        if self._profile.provider(self._run.provider).needs_emulator and self._profile.emulator is not None:
            patterns.append(self._profile.emulator.role_pattern)
        for pattern in patterns:
            self._supervisor.reap(pattern)

    def _strip_slot_lines(self) -> None:
        removed = strip_slot_lines(self._workdir / self._run.config_path)
        if removed:
            log(self._log, "info", "slot number lines removed", config=str(self._run.config_path), count=removed)

    def _remove_fixtures(self) -> None:
        self._injector.remove_all()
        for root in self._profile.mapping_roots():
            path = self._workdir / root
            if path.is_dir():
                shutil.rmtree(path)

    def _remove_emulator_state(self) -> None:
        if self._profile.emulator is None or self._profile.emulator.state_file is None:
            return
        state_file = self._workdir / self._profile.emulator.state_file
        if state_file.is_file():
            state_file.unlink()

    def _purge_artifacts(self) -> None:
        clean = self._profile.commands.clean
        assert clean is not None
        returncode = self._runner.run(clean.render(), env=clean.env)
        if returncode != 0:
            raise RuntimeError(f"artifact purge exited with code {returncode}")


def _raise_interrupted(signum: int, frame: FrameType | None) -> None:
    _ = frame
    raise HarnessInterrupted(signum)
