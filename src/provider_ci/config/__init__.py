from .loader import DEFAULT_PROFILE_PATH, ConfigError, load_profile, load_yaml_config
from .models import HarnessProfile
from .resolver import resolve_provider, resolve_test_run

# Config exports are intentionally small.
__all__ = [
    "ConfigError",
    "DEFAULT_PROFILE_PATH",
    "HarnessProfile",
    "load_profile",
    "load_yaml_config",
    "resolve_provider",
    "resolve_test_run",
]
