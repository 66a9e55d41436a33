from __future__ import annotations

import os
import signal
import subprocess
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import psutil

from provider_ci.domain.errors import ProcessStartError, ProcessStateError, SignalDeliveryError
from provider_ci.observability.adapters.logging import LogSink, MemoryLogSink, log


class ProcessState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(slots=True)
class ManagedProcess:
    # Mutated only by ProcessSupervisor; one instance per started child.
    role: str
    command: list[str]
    pid: int | None = None
    state: ProcessState = ProcessState.NOT_STARTED
    handle: subprocess.Popen[bytes] | None = field(default=None, repr=False)

    @property
    def running(self) -> bool:
        return self.state is ProcessState.RUNNING


# A probe returns True once the process is ready to serve.
ReadinessProbe = Callable[[ManagedProcess], bool]


def pid_alive(pid: int | None) -> bool:
    # Present in the process table and not a zombie.
    if pid is None:
        return False
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return False


def find_by_pattern(pattern: str, *, exclude: Sequence[int] = ()) -> list[int]:
    # Equivalent of `pgrep -f pattern`: match against the full command line.
    own = {os.getpid(), *exclude}
    matches: list[int] = []
    for proc in psutil.process_iter(["pid", "cmdline"]):
        cmdline = proc.info.get("cmdline") or []
        if proc.info["pid"] in own:
            continue
        if pattern in " ".join(cmdline):
            matches.append(proc.info["pid"])
    return sorted(matches)


def pattern_probe(pattern: str) -> ReadinessProbe:
    # Ready once a process whose command line matches the role pattern exists.
    def _probe(process: ManagedProcess) -> bool:
        _ = process
        return bool(find_by_pattern(pattern))

    return _probe


def socket_probe(path: Path, pattern: str) -> ReadinessProbe:
    # Ready once the role is in the process table and its listening socket exists.
    def _probe(process: ManagedProcess) -> bool:
        _ = process
        return path.exists() and bool(find_by_pattern(pattern))

    return _probe


class ProcessSupervisor:
    """Starts, watches, signals and stops the harness child processes.

    At most one process per role is running at any time. Signals are fire-and-forget: the
    supervisor never waits for a child to finish reacting to a reload.
    """

    def __init__(
        self,
        *,
        workdir: Path | None = None,
        log_sink: LogSink | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._workdir = workdir
        self._log = log_sink if log_sink is not None else MemoryLogSink()
        self._sleep = sleep
        self._clock = clock
        self._processes: dict[str, ManagedProcess] = {}

    def get(self, role: str) -> ManagedProcess | None:
        return self._processes.get(role)

    def running(self) -> list[ManagedProcess]:
        return [process for process in self._processes.values() if process.running]

    def start(self, role: str, command: Sequence[str], *, env: Mapping[str, str] | None = None) -> ManagedProcess:
        current = self._processes.get(role)
        if current is not None and current.running:
            raise ProcessStateError(f"{role} is already running (pid={current.pid})")

        process = ManagedProcess(role=role, command=list(command))
        child_env = dict(os.environ)
        child_env.update(env or {})
        try:
            handle = subprocess.Popen(process.command, cwd=self._workdir, env=child_env)
        except OSError as exc:
            raise ProcessStartError(f"cannot start {role} ({process.command[0]}): {exc}") from exc
        process.handle = handle
        process.pid = handle.pid
        process.state = ProcessState.RUNNING
        self._processes[role] = process
        log(self._log, "info", "process started", role=role, pid=process.pid, command=process.command)
        return process

    def is_alive(self, process: ManagedProcess) -> bool:
        if not process.running:
            return False
        if process.handle is not None and process.handle.poll() is not None:
            process.state = ProcessState.STOPPED
            return False
        return pid_alive(process.pid)

    def await_ready(
        self,
        process: ManagedProcess,
        probe: ReadinessProbe | None = None,
        *,
        delay_seconds: float,
        poll_interval_seconds: float = 0.5,
    ) -> None:
        # The fixed delay is the upper bound; a probe may end the wait early.
        if probe is None:
            self._sleep(delay_seconds)
        elif not self._poll(process, probe, delay_seconds, poll_interval_seconds):
            if self.is_alive(process):
                log(self._log, "warning", "readiness probe did not succeed, continuing", role=process.role)

        if not self.is_alive(process):
            returncode = process.handle.poll() if process.handle is not None else None
            raise ProcessStartError(
                f"{process.role} (pid={process.pid}) is not running after its start wait (exit code {returncode})"
            )
        log(self._log, "info", "process ready", role=process.role, pid=process.pid)

    def reload(self, process: ManagedProcess) -> None:
        if not process.running:
            raise ProcessStateError(f"cannot reload {process.role}: process is {process.state.value}")
        # An exited child keeps its pid until reaped; signalling it would silently succeed.
        if not self.is_alive(process):
            process.state = ProcessState.STOPPED
            raise SignalDeliveryError(process.role, process.pid, "SIGHUP")
        try:
            psutil.Process(process.pid).send_signal(signal.SIGHUP)
        except psutil.NoSuchProcess as exc:
            raise SignalDeliveryError(process.role, process.pid, "SIGHUP") from exc
        log(self._log, "info", "reload signal sent", role=process.role, pid=process.pid)

    def stop(self, process: ManagedProcess, graceful: bool = True, *, timeout_seconds: float = 10.0) -> None:
        # Idempotent: a process that already exited counts as stopped.
        if process.state is not ProcessState.RUNNING:
            process.state = ProcessState.STOPPED
            return
        try:
            target = psutil.Process(process.pid)
            if graceful:
                target.terminate()
            else:
                target.kill()
        except psutil.NoSuchProcess:
            log(self._log, "info", "process already gone", role=process.role, pid=process.pid)
        else:
            self._wait_exit(process, target, timeout_seconds)
        if process.handle is not None:
            process.handle.poll()
        process.state = ProcessState.STOPPED
        log(self._log, "info", "process stopped", role=process.role, pid=process.pid, graceful=graceful)

    def stop_all(self, *, timeout_seconds: float = 10.0) -> None:
        # Reverse start order: the service goes down before the emulator.
        for process in reversed(self.running()):
            self.stop(process, timeout_seconds=timeout_seconds)

    def reap(self, pattern: str, *, timeout_seconds: float = 5.0) -> list[int]:
        # Kill leftovers found by role lookup, e.g. children orphaned by an abrupt kill.
        pids = find_by_pattern(pattern)
        procs: list[psutil.Process] = []
        for pid in pids:
            try:
                proc = psutil.Process(pid)
                proc.terminate()
                procs.append(proc)
            except psutil.NoSuchProcess:
                continue
        _, alive = psutil.wait_procs(procs, timeout=timeout_seconds)
        for proc in alive:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                continue
        if pids:
            log(self._log, "info", "orphans reaped", pattern=pattern, pids=pids)
        return pids

    def _poll(
        self,
        process: ManagedProcess,
        probe: ReadinessProbe,
        delay_seconds: float,
        poll_interval_seconds: float,
    ) -> bool:
        deadline = self._clock() + delay_seconds
        while True:
            if not self.is_alive(process):
                return False
            if probe(process):
                return True
            remaining = deadline - self._clock()
            if remaining <= 0:
                return False
            self._sleep(min(poll_interval_seconds, remaining))

    def _wait_exit(self, process: ManagedProcess, target: psutil.Process, timeout_seconds: float) -> None:
        if process.handle is not None:
            try:
                process.handle.wait(timeout=timeout_seconds)
                return
            except subprocess.TimeoutExpired:
                process.handle.kill()
                process.handle.wait()
                return
        try:
            target.wait(timeout=timeout_seconds)
        except psutil.TimeoutExpired:
            target.kill()
        except psutil.NoSuchProcess:
            return
