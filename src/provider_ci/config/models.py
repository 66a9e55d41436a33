from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

from provider_ci.domain.run import PROVIDER_TOKENS, Phase, Provider

# Config models map the harness profile YAML sections to typed structures.

_SUITE_PHASES = {
    Phase.NORMAL_TESTS.value,
    Phase.PERSISTENT_BEFORE.value,
    Phase.PERSISTENT_AFTER.value,
    Phase.STRESS_TESTS.value,
    Phase.COMBINED_PROVIDER_TESTS.value,
}


class CommandSpec(BaseModel):
    # One external tool invocation; argv items may use {features}, {config_path}, {suite}.
    model_config = ConfigDict(extra="forbid")
    argv: list[str] = Field(min_length=1)
    env: dict[str, str] = Field(default_factory=dict)

    def render(self, **values: str) -> list[str]:
        return [item.format(**values) for item in self.argv]


class TimingConfig(BaseModel):
    # Fixed delays act as upper bounds when a readiness probe is available.
    model_config = ConfigDict(extra="forbid")
    ready_delay_seconds: float = Field(default=5.0, ge=0)
    reload_delay_seconds: float = Field(default=5.0, ge=0)
    stop_delay_seconds: float = Field(default=2.0, ge=0)
    stop_timeout_seconds: float = Field(default=10.0, gt=0)
    poll_interval_seconds: float = Field(default=0.5, gt=0)


class CommandsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    build: CommandSpec
    unit_tests: CommandSpec
    doc_tests: CommandSpec
    test_suite: CommandSpec
    clean: CommandSpec | None = None


class StaticCheckConfig(BaseModel):
    # A check runs only when the probe output lists its component.
    model_config = ConfigDict(extra="forbid")
    name: str
    probe: list[str] = Field(min_length=1)
    component: str
    command: CommandSpec


class EmulatorConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    start: CommandSpec
    init: list[CommandSpec] = Field(default_factory=list)
    state_file: str | None = None
    role_pattern: str


class SlotDiscoveryConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    command: CommandSpec
    pattern: str = r"^Slot (\d+)"


class ServiceConfig(BaseModel):
    # Service under test; stress_env is overlaid on start.env for the stress restart.
    model_config = ConfigDict(extra="forbid")
    start: CommandSpec
    stress_env: dict[str, str] = Field(default_factory=dict)
    role_pattern: str
    # Without a socket the start wait is the fixed ready delay.
    ready_socket: str | None = None


class FixtureConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    mappings_root: str
    slot: int = Field(ge=0, le=255)
    application: str = "root"
    key_name: str = "Test Key"


class ProviderConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    features: list[str] = Field(min_length=1)
    config_path: str
    needs_emulator: bool = False
    needs_slot_discovery: bool = False
    fixture: FixtureConfig | None = None


class CleanupConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    mapping_roots: list[str] = Field(default_factory=list)


class HarnessProfile(BaseModel):
    # Top-level typed view of the harness profile.
    model_config = ConfigDict(extra="forbid")
    version: int
    timing: TimingConfig = Field(default_factory=TimingConfig)
    commands: CommandsConfig
    suites: dict[str, str]
    static_checks: list[StaticCheckConfig] = Field(default_factory=list)
    emulator: EmulatorConfig | None = None
    slot_discovery: SlotDiscoveryConfig | None = None
    service: ServiceConfig
    providers: dict[str, ProviderConfig]
    cleanup: CleanupConfig = Field(default_factory=CleanupConfig)

    @model_validator(mode="after")
    def _check_consistency(self) -> HarnessProfile:
        unknown = set(self.providers) - set(PROVIDER_TOKENS)
        if unknown:
            raise ValueError(f"providers: unknown provider tokens {sorted(unknown)}")
        unknown_suites = set(self.suites) - _SUITE_PHASES
        if unknown_suites:
            raise ValueError(f"suites: unknown phases {sorted(unknown_suites)}")
        missing_suites = _SUITE_PHASES - set(self.suites)
        if missing_suites:
            raise ValueError(f"suites: missing phases {sorted(missing_suites)}")

        for token, provider in self.providers.items():
            if provider.needs_emulator and self.emulator is None:
                raise ValueError(f"providers.{token} needs an emulator but no emulator section is set")
            if provider.needs_slot_discovery and self.slot_discovery is None:
                raise ValueError(f"providers.{token} needs slot discovery but no slot_discovery section is set")

        # The combined run never resolves slots nor injects fixtures.
        combined = self.providers.get(Provider.ALL.value)
        if combined is not None and (combined.needs_slot_discovery or combined.fixture is not None):
            raise ValueError("providers.all cannot declare slot discovery or a fixture")
        return self

    def provider(self, provider: Provider) -> ProviderConfig:
        try:
            return self.providers[provider.value]
        except KeyError:
            raise KeyError(f"provider {provider.value!r} is not declared in the harness profile") from None

    def suite(self, phase: Phase) -> str:
        return self.suites[phase.value]

    def mapping_roots(self) -> list[str]:
        # Roots declared explicitly plus every fixture root, without duplicates.
        roots = list(self.cleanup.mapping_roots)
        for provider in self.providers.values():
            if provider.fixture is not None and provider.fixture.mappings_root not in roots:
                roots.append(provider.fixture.mappings_root)
        return roots
