from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from provider_ci.config.models import CommandSpec, HarnessProfile
from provider_ci.domain.errors import PhaseFailure, ProcessStartError, ProcessStateError
from provider_ci.domain.run import Phase, TestRun
from provider_ci.fixtures.mapping import FixtureInjector, MappingFixture
from provider_ci.observability.adapters.logging import LogSink, MemoryLogSink, log
from provider_ci.platform.cleanup import EMULATOR_ROLE, SERVICE_ROLE, CleanupGuard
from provider_ci.platform.commands import ToolRunner
from provider_ci.platform.slots import append_slot_line, discover_slot
from provider_ci.platform.supervisor import (
    ManagedProcess,
    ProcessSupervisor,
    ReadinessProbe,
    find_by_pattern,
    socket_probe,
)


@dataclass(frozen=True, slots=True)
class PlannedPhase:
    phase: Phase
    action: Callable[[], None] | None
    skip_reason: str | None = None


class PhaseSequencer:
    """Runs the phases of one TestRun in their fixed order.

    The first failing phase aborts the rest of the plan. Whatever happens, the cleanup
    guard is left before the failure propagates, so child processes, the appended slot
    line and fixture directories never outlive the run.
    """

    def __init__(
        self,
        *,
        run: TestRun,
        profile: HarnessProfile,
        supervisor: ProcessSupervisor,
        runner: ToolRunner,
        injector: FixtureInjector,
        guard: CleanupGuard,
        workdir: Path,
        log_sink: LogSink | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._run = run
        self._profile = profile
        self._supervisor = supervisor
        self._runner = runner
        self._injector = injector
        self._guard = guard
        self._workdir = workdir
        self._log = log_sink if log_sink is not None else MemoryLogSink()
        self._sleep = sleep
        self._provider = profile.provider(run.provider)
        self.executed: list[Phase] = []
        self.skipped: list[Phase] = []
        self.failed: Phase | None = None

    def plan(self) -> list[PlannedPhase]:
        plan = [
            PlannedPhase(Phase.BUILD, lambda: self._tool(Phase.BUILD, self._profile.commands.build)),
            PlannedPhase(Phase.STATIC_CHECKS, self._static_checks),
            PlannedPhase(Phase.UNIT_TESTS, lambda: self._tool(Phase.UNIT_TESTS, self._profile.commands.unit_tests)),
            PlannedPhase(Phase.DOC_TESTS, lambda: self._tool(Phase.DOC_TESTS, self._profile.commands.doc_tests)),
        ]
        if self._provider.needs_emulator:
            plan.append(PlannedPhase(Phase.START_EMULATOR, self._start_emulator))
        else:
            plan.append(PlannedPhase(Phase.START_EMULATOR, None, "provider does not need an emulator"))

        if self._run.provider.is_combined:
            plan.append(PlannedPhase(Phase.RESOLVE_SLOT, None, "combined run does not resolve slots"))
        elif self._provider.needs_slot_discovery:
            plan.append(PlannedPhase(Phase.RESOLVE_SLOT, self._resolve_slot))
        else:
            plan.append(PlannedPhase(Phase.RESOLVE_SLOT, None, "provider does not need slot discovery"))

        plan.append(PlannedPhase(Phase.START_SERVICE, lambda: self._start_service(stress=False)))

        if self._run.provider.is_combined:
            plan.append(PlannedPhase(Phase.COMBINED_PROVIDER_TESTS, self._suite(Phase.COMBINED_PROVIDER_TESTS)))
            return plan

        plan.append(PlannedPhase(Phase.NORMAL_TESTS, self._suite(Phase.NORMAL_TESTS)))
        plan.append(PlannedPhase(Phase.PERSISTENT_BEFORE, self._suite(Phase.PERSISTENT_BEFORE)))
        if self._provider.fixture is not None:
            plan.append(PlannedPhase(Phase.INJECT_FIXTURE, self._inject_fixture))
        else:
            plan.append(PlannedPhase(Phase.INJECT_FIXTURE, None, "provider has no mapping fixture"))
        plan.append(PlannedPhase(Phase.RELOAD, self._reload))
        plan.append(PlannedPhase(Phase.PERSISTENT_AFTER, self._suite(Phase.PERSISTENT_AFTER)))

        if self._run.stress_enabled:
            plan.append(PlannedPhase(Phase.STOP_SERVICE, self._stop_service))
            plan.append(PlannedPhase(Phase.RESTART_SERVICE, lambda: self._start_service(stress=True)))
            plan.append(PlannedPhase(Phase.STRESS_TESTS, self._suite(Phase.STRESS_TESTS)))
        return plan

    def run(self) -> list[Phase]:
        try:
            with self._guard:
                for planned in self.plan():
                    self._execute(planned)
        finally:
            self.executed.append(Phase.CLEANUP)
        log(self._log, "info", "all phases passed", provider=self._run.provider.value)
        return list(self.executed)

    def _execute(self, planned: PlannedPhase) -> None:
        if planned.action is None:
            self.skipped.append(planned.phase)
            log(self._log, "debug", "phase skipped", phase=planned.phase.value, reason=planned.skip_reason)
            return
        log(self._log, "info", planned.phase.title, phase=planned.phase.value)
        self.executed.append(planned.phase)
        try:
            planned.action()
        except BaseException:
            self.failed = planned.phase
            raise

    def _render(self, command: CommandSpec, **extra: str) -> list[str]:
        return command.render(
            features=self._run.features_argument,
            config_path=str(self._run.config_path),
            **extra,
        )

    def _tool(self, phase: Phase, command: CommandSpec, **extra: str) -> None:
        returncode = self._runner.run(self._render(command, **extra), env=command.env)
        if returncode != 0:
            raise PhaseFailure(phase.value, returncode)

    def _suite(self, phase: Phase) -> Callable[[], None]:
        return lambda: self._tool(phase, self._profile.commands.test_suite, suite=self._profile.suite(phase))

    def _static_checks(self) -> None:
        # A missing analysis tool is a skip, not a failure.
        for check in self._profile.static_checks:
            probe = self._runner.capture(check.probe)
            if not probe.ok or check.component not in probe.stdout:
                log(self._log, "info", "static check not available, skipping", check=check.name)
                continue
            self._tool(Phase.STATIC_CHECKS, check.command)

    def _start_emulator(self) -> None:
        emulator = self._profile.emulator
        assert emulator is not None
        process = self._supervisor.start(EMULATOR_ROLE, self._render(emulator.start), env=emulator.start.env)
        self._supervisor.await_ready(process, delay_seconds=self._profile.timing.ready_delay_seconds)
        for init in emulator.init:
            returncode = self._runner.run(self._render(init), env=init.env, quiet=True)
            if returncode != 0:
                raise PhaseFailure(Phase.START_EMULATOR.value, returncode)

    def _resolve_slot(self) -> None:
        discovery = self._profile.slot_discovery
        assert discovery is not None
        slot = discover_slot(self._runner, discovery)
        append_slot_line(self._workdir / self._run.config_path, slot)
        log(self._log, "info", "slot number appended", slot=slot, config=str(self._run.config_path))

    def _start_service(self, *, stress: bool) -> None:
        service = self._profile.service
        env = dict(service.start.env)
        if stress:
            env.update(service.stress_env)
        if service.ready_socket is not None:
            # A socket left by the previous instance would satisfy the probe too early.
            (self._workdir / service.ready_socket).unlink(missing_ok=True)
        process = self._supervisor.start(SERVICE_ROLE, self._render(service.start), env=env)
        timing = self._profile.timing
        self._supervisor.await_ready(
            process,
            self._service_probe(),
            delay_seconds=timing.ready_delay_seconds,
            poll_interval_seconds=timing.poll_interval_seconds,
        )
        if not find_by_pattern(service.role_pattern):
            raise ProcessStartError(f"no running process matches {service.role_pattern!r} after start")

    def _service_probe(self) -> ReadinessProbe | None:
        service = self._profile.service
        if service.ready_socket is None:
            return None
        return socket_probe(self._workdir / service.ready_socket, service.role_pattern)

    def _service_process(self) -> ManagedProcess:
        process = self._supervisor.get(SERVICE_ROLE)
        if process is None:
            raise ProcessStateError("service was never started")
        return process

    def _inject_fixture(self) -> None:
        config = self._provider.fixture
        assert config is not None
        fixture = MappingFixture(
            provider=self._run.provider,
            application_id=config.application,
            slot=config.slot,
            key_name=config.key_name,
        )
        path = self._injector.inject(fixture, config.mappings_root)
        log(self._log, "info", "mapping fixture written", path=str(path))

    def _reload(self) -> None:
        self._supervisor.reload(self._service_process())
        # The reload itself is fire-and-forget; give the service time to reread its state.
        self._sleep(self._profile.timing.reload_delay_seconds)

    def _stop_service(self) -> None:
        self._supervisor.stop(self._service_process(), timeout_seconds=self._profile.timing.stop_timeout_seconds)
        self._sleep(self._profile.timing.stop_delay_seconds)
