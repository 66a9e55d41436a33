from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from provider_ci.config.models import HarnessProfile
from provider_ci.domain.errors import UsageError
from provider_ci.domain.run import Provider, TestRun


def resolve_provider(tokens: Sequence[str]) -> Provider:
    # Exactly one provider token must be given; duplicates never overwrite a prior choice.
    if not tokens:
        raise UsageError("a provider name needs to be given as input argument to that script.")
    if len(tokens) > 1:
        raise UsageError("Only one provider name must be given")
    try:
        return Provider.from_token(tokens[0])
    except ValueError:
        raise UsageError(f"Unknown argument: {tokens[0]}") from None


def resolve_test_run(
    tokens: Sequence[str],
    *,
    no_cargo_clean: bool,
    no_stress_test: bool,
    profile: HarnessProfile,
) -> TestRun:
    # Pure mapping from CLI selection to the immutable run description.
    provider = resolve_provider(tokens)
    try:
        provider_config = profile.provider(provider)
    except KeyError as exc:
        raise UsageError(str(exc.args[0])) from None
    return TestRun(
        provider=provider,
        stress_enabled=not no_stress_test and not provider.is_combined,
        clean_on_exit=not no_cargo_clean,
        config_path=Path(provider_config.config_path),
        feature_gate=frozenset(provider_config.features),
    )
