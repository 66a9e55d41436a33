from __future__ import annotations

import signal
import sys
from pathlib import Path

import pytest

from provider_ci.config.models import HarnessProfile
from provider_ci.config.resolver import resolve_test_run
from provider_ci.domain.errors import HarnessInterrupted, PhaseFailure
from provider_ci.domain.run import Provider
from provider_ci.fixtures.mapping import FixtureInjector, MappingFixture
from provider_ci.observability.adapters.logging import MemoryLogSink
from provider_ci.platform.cleanup import EMULATOR_ROLE, SERVICE_ROLE, CleanupGuard
from provider_ci.platform.slots import append_slot_line
from provider_ci.platform.supervisor import ProcessSupervisor, find_by_pattern


def _guard(
    provider: str,
    profile: HarnessProfile,
    workdir: Path,
    runner,
    *,
    no_cargo_clean: bool = False,
    supervisor: ProcessSupervisor | None = None,
    injector: FixtureInjector | None = None,
) -> CleanupGuard:
    run = resolve_test_run([provider], no_cargo_clean=no_cargo_clean, no_stress_test=False, profile=profile)
    return CleanupGuard(
        run=run,
        profile=profile,
        workdir=workdir,
        supervisor=supervisor or ProcessSupervisor(workdir=workdir),
        injector=injector or FixtureInjector(workdir),
        runner=runner,
        log_sink=MemoryLogSink(),
    )


def test_cleanup_runs_once(profile: HarnessProfile, workdir: Path, fake_runner) -> None:
    guard = _guard("mbed-crypto", profile, workdir, fake_runner)
    with guard:
        pass
    assert guard.done
    assert guard.run_cleanup() is False
    assert fake_runner.count("clean") == 1


def test_cleanup_restores_every_run_resource(
    profile: HarnessProfile, workdir: Path, fake_runner, sleeper_code: str, marker: str
) -> None:
    supervisor = ProcessSupervisor(workdir=workdir)
    injector = FixtureInjector(workdir)
    config = workdir / "cfg" / "pkcs11" / "config.toml"
    original = config.read_text()
    (workdir / "NVChip").write_bytes(b"state")
    (workdir / "mappings" / "stale").mkdir(parents=True)

    guard = _guard("pkcs11", profile, workdir, fake_runner, supervisor=supervisor, injector=injector)
    with guard:
        service = supervisor.start(SERVICE_ROLE, [sys.executable, "-c", sleeper_code, f"{marker}-service"])
        append_slot_line(config, 2)
        injector.inject(MappingFixture(Provider.PKCS11, "root", 2, "Test Key"), "pkcs11_mappings")

    assert not service.running
    assert find_by_pattern(marker) == []
    assert config.read_text() == original
    assert not (workdir / "pkcs11_mappings").exists()
    assert not (workdir / "mappings").exists()
    assert not (workdir / "NVChip").exists()
    assert guard.failures == {}
    assert "purge_artifacts" in guard.performed


def test_emulator_is_stopped_after_service(
    profile: HarnessProfile, workdir: Path, fake_runner, sleeper_code: str, marker: str
) -> None:
    supervisor = ProcessSupervisor(workdir=workdir)
    guard = _guard("tpm", profile, workdir, fake_runner, supervisor=supervisor)
    with guard:
        emulator = supervisor.start(EMULATOR_ROLE, [sys.executable, "-c", sleeper_code, f"{marker}-emulator"])
        service = supervisor.start(SERVICE_ROLE, [sys.executable, "-c", sleeper_code, f"{marker}-service"])

    assert not emulator.running
    assert not service.running
    assert guard.performed.index("stop_service") < guard.performed.index("stop_emulator")


def test_purge_skipped_when_artifacts_are_kept(profile: HarnessProfile, workdir: Path, fake_runner) -> None:
    guard = _guard("mbed-crypto", profile, workdir, fake_runner, no_cargo_clean=True)
    with guard:
        pass
    assert fake_runner.count("clean") == 0
    assert "purge_artifacts" not in guard.performed


def test_cleanup_runs_when_block_raises(profile: HarnessProfile, workdir: Path, fake_runner) -> None:
    injector = FixtureInjector(workdir)
    guard = _guard("mbed-crypto", profile, workdir, fake_runner, injector=injector)
    with pytest.raises(PhaseFailure):
        with guard:
            injector.inject(MappingFixture(Provider.SOFTWARE, "root", 1, "Test Key"), "mbed_mappings")
            raise PhaseFailure("normal_tests", 101)
    assert guard.done
    assert not (workdir / "mbed_mappings").exists()


def test_failing_step_does_not_skip_the_others(profile: HarnessProfile, workdir: Path, fake_runner) -> None:
    fake_runner.fail_on["clean"] = 1
    (workdir / "NVChip").write_bytes(b"state")
    guard = _guard("mbed-crypto", profile, workdir, fake_runner)
    with guard:
        pass
    assert set(guard.failures) == {"purge_artifacts"}
    assert "remove_emulator_state" in guard.performed
    assert not (workdir / "NVChip").exists()


@pytest.mark.parametrize("signum", [signal.SIGINT, signal.SIGTERM])
def test_signal_inside_block_unwinds_through_cleanup(
    profile: HarnessProfile, workdir: Path, fake_runner, signum: int
) -> None:
    previous = signal.getsignal(signum)
    guard = _guard("mbed-crypto", profile, workdir, fake_runner)
    with pytest.raises(HarnessInterrupted) as excinfo:
        with guard:
            signal.raise_signal(signum)
    assert excinfo.value.exit_code == 128 + signum
    assert guard.done
    assert signal.getsignal(signum) == previous
