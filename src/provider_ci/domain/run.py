from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class Provider(str, Enum):
    # CLI tokens of the providers the service can be built with.
    SOFTWARE = "mbed-crypto"
    PKCS11 = "pkcs11"
    TPM = "tpm"
    TRUSTED_SERVICE = "trusted-service"
    CRYPTOAUTHLIB = "cryptoauthlib"
    ALL = "all"

    @classmethod
    def from_token(cls, token: str) -> Provider:
        # "software" is kept as a readable alias of the software key store token.
        if token == "software":
            return cls.SOFTWARE
        return cls(token)

    @property
    def is_combined(self) -> bool:
        return self is Provider.ALL


PROVIDER_TOKENS: tuple[str, ...] = tuple(provider.value for provider in Provider)


class Phase(str, Enum):
    # Phase tokens in execution order; the sequencer never reorders them.
    BUILD = "build"
    STATIC_CHECKS = "static_checks"
    UNIT_TESTS = "unit_tests"
    DOC_TESTS = "doc_tests"
    START_EMULATOR = "start_emulator"
    RESOLVE_SLOT = "resolve_slot"
    START_SERVICE = "start_service"
    NORMAL_TESTS = "normal_tests"
    PERSISTENT_BEFORE = "persistent_before"
    INJECT_FIXTURE = "inject_fixture"
    RELOAD = "reload"
    PERSISTENT_AFTER = "persistent_after"
    STOP_SERVICE = "stop_service"
    RESTART_SERVICE = "restart_service"
    STRESS_TESTS = "stress_tests"
    COMBINED_PROVIDER_TESTS = "combined_provider_tests"
    CLEANUP = "cleanup"

    @property
    def title(self) -> str:
        return _PHASE_TITLES[self]


_PHASE_TITLES = {
    Phase.BUILD: "Build test",
    Phase.STATIC_CHECKS: "Static checks",
    Phase.UNIT_TESTS: "Unit tests",
    Phase.DOC_TESTS: "Doc tests",
    Phase.START_EMULATOR: "Start and configure the emulator",
    Phase.RESOLVE_SLOT: "Find and append the slot number to the configuration",
    Phase.START_SERVICE: "Start the service for integration tests",
    Phase.NORMAL_TESTS: "Execute normal tests",
    Phase.PERSISTENT_BEFORE: "Execute persistent test, before the reload",
    Phase.INJECT_FIXTURE: "Create a fake mapping file",
    Phase.RELOAD: "Trigger a configuration reload to load the new mappings",
    Phase.PERSISTENT_AFTER: "Execute persistent test, after the reload",
    Phase.STOP_SERVICE: "Shutdown the service",
    Phase.RESTART_SERVICE: "Start the service for stress tests",
    Phase.STRESS_TESTS: "Execute stress tests",
    Phase.COMBINED_PROVIDER_TESTS: "Execute all-providers tests",
    Phase.CLEANUP: "Shutdown the service and clean up",
}

STRESS_PHASES: frozenset[Phase] = frozenset({Phase.STOP_SERVICE, Phase.RESTART_SERVICE, Phase.STRESS_TESTS})


@dataclass(frozen=True, slots=True)
class TestRun:
    # Validated run request; immutable for the lifetime of the run.
    __test__ = False

    provider: Provider
    stress_enabled: bool
    clean_on_exit: bool
    config_path: Path
    feature_gate: frozenset[str]

    def __post_init__(self) -> None:
        if not self.feature_gate:
            raise ValueError("TestRun requires a non-empty feature gate")

    @property
    def features_argument(self) -> str:
        return "--features=" + ",".join(sorted(self.feature_gate))
