from __future__ import annotations

import argparse
from collections.abc import Sequence

from provider_ci.domain.errors import UsageError
from provider_ci.domain.run import PROVIDER_TOKENS

USAGE_TEXT = """
Continuous Integration test driver

Executes various tests targeting a platform with a single provider or all
providers included. Meant to be run from the root of the service repository,
inside a container providing the service's build and test toolchain.

Usage: provider-ci [--no-cargo-clean] [--no-stress-test] PROVIDER_NAME
where PROVIDER_NAME can be one of:
{providers}
"""


def usage_text() -> str:
    return USAGE_TEXT.format(providers="\n".join(f"    - {token}" for token in PROVIDER_TOKENS))


class _UsageArgumentParser(argparse.ArgumentParser):
    # argparse exits with status 2 on bad input; the harness reports UsageError instead.
    def error(self, message: str) -> None:  # type: ignore[override]
        raise UsageError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _UsageArgumentParser(
        prog="provider-ci",
        description="Build, test and stress the security service against one provider",
        usage="%(prog)s [--no-cargo-clean] [--no-stress-test] PROVIDER_NAME",
    )
    # Collected as a list so that missing and duplicate providers are reported explicitly.
    parser.add_argument("provider", nargs="*", metavar="PROVIDER_NAME", help=f"one of {', '.join(PROVIDER_TOKENS)}")
    parser.add_argument("--no-cargo-clean", action="store_true", help="keep build artifacts on exit")
    parser.add_argument("--no-stress-test", action="store_true", help="skip the stress test phase")
    parser.add_argument("--profile", help="path to a harness profile YAML overriding the packaged default")
    parser.add_argument("--log-jsonl", help="also append structured run logs to this JSONL file")
    return parser


def parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    # Caller passes argv for testability.
    return build_parser().parse_intermixed_args(argv)
