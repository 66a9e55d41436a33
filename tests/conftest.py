from __future__ import annotations

import sys
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from provider_ci.config.models import HarnessProfile
from provider_ci.platform.commands import CommandResult

# Child used as the service under test: announces readiness through a file and records
# every SIGHUP in a second file. argv: ready_path reload_path marker
SERVICE_CODE = (
    "import pathlib, signal, sys, time\n"
    "ready, reloads = pathlib.Path(sys.argv[1]), pathlib.Path(sys.argv[2])\n"
    "def _hup(signum, frame):\n"
    "    with reloads.open('a') as fh:\n"
    "        fh.write('reload\\n')\n"
    "signal.signal(signal.SIGHUP, _hup)\n"
    "ready.write_text('ready')\n"
    "time.sleep(60)\n"
)

SLEEPER_CODE = "import time; time.sleep(60)"


@dataclass
class FakeRunner:
    # Records tool invocations; a failing token maps to the exit code returned for it.
    fail_on: dict[str, int] = field(default_factory=dict)
    capture_output: dict[str, CommandResult] = field(default_factory=dict)
    on_run: Callable[[list[str]], None] | None = None
    calls: list[list[str]] = field(default_factory=list)
    envs: list[dict[str, str]] = field(default_factory=list)

    def run(self, argv: Sequence[str], *, env: Mapping[str, str] | None = None, quiet: bool = False) -> int:
        command = list(argv)
        self.calls.append(command)
        self.envs.append(dict(env or {}))
        if self.on_run is not None:
            self.on_run(command)
        for token, code in self.fail_on.items():
            if token in command:
                return code
        return 0

    def capture(self, argv: Sequence[str], *, env: Mapping[str, str] | None = None) -> CommandResult:
        command = list(argv)
        self.calls.append(command)
        self.envs.append(dict(env or {}))
        return self.capture_output.get(command[0], CommandResult(returncode=0, stdout=""))

    def count(self, token: str) -> int:
        return sum(1 for call in self.calls if token in call)


def profile_data(tmp_path: Path, marker: str) -> dict[str, Any]:
    ready = tmp_path / "service.ready"
    reloads = tmp_path / "service.reloads"
    return {
        "version": 1,
        "timing": {
            "ready_delay_seconds": 5,
            "reload_delay_seconds": 0.5,
            "stop_delay_seconds": 0,
            "stop_timeout_seconds": 5,
            "poll_interval_seconds": 0.05,
        },
        "commands": {
            "build": {"argv": ["build", "{features}"]},
            "unit_tests": {"argv": ["unit", "{features}"]},
            "doc_tests": {"argv": ["doc", "{features}"]},
            "test_suite": {"argv": ["suite", "{features}", "{suite}"], "env": {"RUST_BACKTRACE": "1"}},
            "clean": {"argv": ["clean"]},
        },
        "suites": {
            "normal_tests": "normal_tests",
            "persistent_before": "persistent_before",
            "persistent_after": "persistent_after",
            "stress_tests": "stress_test",
            "combined_provider_tests": "all_providers",
        },
        "static_checks": [
            {"name": "fmt", "probe": ["rustup", "component", "list"], "component": "fmt", "command": {"argv": ["fmt"]}},
        ],
        "emulator": {
            "start": {"argv": [sys.executable, "-c", SLEEPER_CODE, f"{marker}-emulator"]},
            "init": [{"argv": ["tpm-init", "startup"]}, {"argv": ["tpm-init", "changeauth"]}],
            "state_file": "NVChip",
            "role_pattern": f"{marker}-emulator",
        },
        "slot_discovery": {"command": {"argv": ["show-slots"]}},
        "service": {
            "start": {
                "argv": [sys.executable, "-c", SERVICE_CODE, str(ready), str(reloads), f"{marker}-service"],
                "env": {"RUST_LOG": "info"},
            },
            "stress_env": {"RUST_LOG": "error"},
            "role_pattern": f"{marker}-service",
            "ready_socket": str(ready),
        },
        "providers": {
            "mbed-crypto": {
                "features": ["mbed-crypto-provider"],
                "config_path": "cfg/mbed-crypto/config.toml",
                "fixture": {"mappings_root": "mbed_mappings", "slot": 1},
            },
            "pkcs11": {
                "features": ["pkcs11-provider"],
                "config_path": "cfg/pkcs11/config.toml",
                "needs_slot_discovery": True,
                "fixture": {"mappings_root": "pkcs11_mappings", "slot": 2},
            },
            "tpm": {"features": ["tpm-provider"], "config_path": "cfg/tpm/config.toml", "needs_emulator": True},
            "all": {"features": ["all-providers"], "config_path": "cfg/all/config.toml", "needs_emulator": True},
        },
        "cleanup": {"mapping_roots": ["mappings"]},
    }


@pytest.fixture
def marker() -> str:
    # Unique command-line marker so role lookups only see this test's children.
    return f"provider-ci-test-{uuid.uuid4().hex}"


@pytest.fixture
def profile(tmp_path: Path, marker: str) -> HarnessProfile:
    return HarnessProfile.model_validate(profile_data(tmp_path, marker))


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    # Service repository layout with one config file per provider.
    root = tmp_path / "repo"
    for name in ("mbed-crypto", "pkcs11", "tpm", "all"):
        config = root / "cfg" / name / "config.toml"
        config.parent.mkdir(parents=True)
        config.write_text('[core_settings]\nlog_level = "info"\n', encoding="utf-8")
    return root


@pytest.fixture
def raw_profile(tmp_path: Path, marker: str) -> dict[str, Any]:
    return profile_data(tmp_path, marker)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def sleeper_code() -> str:
    return SLEEPER_CODE


@pytest.fixture
def service_code() -> str:
    return SERVICE_CODE
