from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import ValidationError

from provider_ci.config.models import HarnessProfile
from provider_ci.domain.errors import HarnessError

DEFAULT_PROFILE_PATH = Path(__file__).with_name("default_profile.yml")


# ConfigError is raised for an invalid harness profile (fail fast, before any resource).
class ConfigError(HarnessError, ValueError):
    pass


def load_yaml_config(path: Path) -> dict[str, object]:
    # YAML loader; returns a raw mapping for validation.
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read harness profile {path}: {exc}") from exc
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Harness profile {path} is not valid YAML: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping")
    return raw


def load_profile(path: Path | None = None) -> HarnessProfile:
    # Load and validate the harness profile; the packaged default is used when path is None.
    raw = load_yaml_config(path if path is not None else DEFAULT_PROFILE_PATH)
    try:
        return HarnessProfile.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid harness profile: {exc}") from exc
