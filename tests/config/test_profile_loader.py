from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from provider_ci.config.loader import DEFAULT_PROFILE_PATH, ConfigError, load_profile, load_yaml_config
from provider_ci.domain.run import PROVIDER_TOKENS, Phase, Provider


def _write(path: Path, data: object) -> Path:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def test_default_profile_declares_every_provider() -> None:
    profile = load_profile()
    assert set(profile.providers) == set(PROVIDER_TOKENS)
    assert profile.provider(Provider.ALL).features == ["all-providers"]
    assert profile.provider(Provider.PKCS11).config_path == "tests/per_provider/provider_cfg/pkcs11/config.toml"


def test_default_profile_fixture_slots() -> None:
    profile = load_profile(DEFAULT_PROFILE_PATH)
    software = profile.provider(Provider.SOFTWARE).fixture
    pkcs11 = profile.provider(Provider.PKCS11).fixture
    assert software is not None and software.slot == 1 and software.mappings_root == "mbed_mappings"
    assert pkcs11 is not None and pkcs11.slot == 2 and pkcs11.mappings_root == "pkcs11_mappings"
    assert profile.provider(Provider.TPM).fixture is None


def test_default_profile_timing_matches_fixed_delays() -> None:
    timing = load_profile().timing
    assert timing.ready_delay_seconds == 5
    assert timing.reload_delay_seconds == 5
    assert timing.stop_delay_seconds == 2


def test_mapping_roots_merge_cleanup_and_fixture_roots() -> None:
    assert load_profile().mapping_roots() == ["mappings", "pkcs11_mappings", "mbed_mappings"]


def test_suite_lookup_by_phase() -> None:
    profile = load_profile()
    assert profile.suite(Phase.STRESS_TESTS) == "stress_test"
    assert profile.suite(Phase.COMBINED_PROVIDER_TESTS) == "all_providers"


def test_profile_root_must_be_a_mapping(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_yaml_config(_write(tmp_path / "profile.yml", ["not", "a", "mapping"]))


def test_missing_profile_is_a_config_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_profile(tmp_path / "missing.yml")


def test_unknown_keys_are_rejected(tmp_path: Path, raw_profile: dict) -> None:
    data = raw_profile
    data["extra"] = True
    with pytest.raises(ConfigError):
        load_profile(_write(tmp_path / "profile.yml", data))


def test_unknown_provider_token_is_rejected(tmp_path: Path, raw_profile: dict) -> None:
    data = raw_profile
    data["providers"]["openssl"] = {"features": ["openssl-provider"], "config_path": "x.toml"}
    with pytest.raises(ConfigError):
        load_profile(_write(tmp_path / "profile.yml", data))


def test_combined_provider_cannot_inject_fixtures(tmp_path: Path, raw_profile: dict) -> None:
    data = raw_profile
    data["providers"]["all"]["fixture"] = {"mappings_root": "mappings", "slot": 1}
    with pytest.raises(ConfigError):
        load_profile(_write(tmp_path / "profile.yml", data))


def test_emulator_section_required_when_a_provider_needs_it(tmp_path: Path, raw_profile: dict) -> None:
    data = raw_profile
    del data["emulator"]
    with pytest.raises(ConfigError):
        load_profile(_write(tmp_path / "profile.yml", data))


def test_every_test_suite_phase_must_be_mapped(tmp_path: Path, raw_profile: dict) -> None:
    data = raw_profile
    del data["suites"]["stress_tests"]
    with pytest.raises(ConfigError):
        load_profile(_write(tmp_path / "profile.yml", data))


def test_command_templates_render_placeholders(tmp_path: Path, raw_profile: dict) -> None:
    profile = load_profile(_write(tmp_path / "profile.yml", raw_profile))
    argv = profile.commands.test_suite.render(features="--features=tpm-provider", suite="normal_tests")
    assert argv == ["suite", "--features=tpm-provider", "normal_tests"]
