from __future__ import annotations

import sys
import time
from collections.abc import Callable, Sequence
from pathlib import Path

from provider_ci.app.cli import parse_args, usage_text
from provider_ci.config.loader import ConfigError, load_profile
from provider_ci.config.models import HarnessProfile
from provider_ci.config.resolver import resolve_test_run
from provider_ci.domain.errors import HarnessError, UsageError
from provider_ci.domain.run import TestRun
from provider_ci.execution.sequencer import PhaseSequencer
from provider_ci.fixtures.mapping import FixtureInjector
from provider_ci.observability.adapters.logging import FanoutLogSink, JsonlLogSink, LogSink, StdoutLogSink, log
from provider_ci.platform.cleanup import CleanupGuard
from provider_ci.platform.commands import CommandRunner, ToolRunner
from provider_ci.platform.supervisor import ProcessSupervisor


def build_sequencer(
    run: TestRun,
    profile: HarnessProfile,
    *,
    workdir: Path,
    log_sink: LogSink,
    runner: ToolRunner | None = None,
    sleep: Callable[[float], None] = time.sleep,
    handle_signals: bool = True,
) -> PhaseSequencer:
    # Composition root: wires one sequencer with its supervisor, injector and cleanup guard.
    supervisor = ProcessSupervisor(workdir=workdir, log_sink=log_sink, sleep=sleep)
    tool_runner = runner if runner is not None else CommandRunner(workdir=workdir, log_sink=log_sink)
    injector = FixtureInjector(workdir)
    guard = CleanupGuard(
        run=run,
        profile=profile,
        workdir=workdir,
        supervisor=supervisor,
        injector=injector,
        runner=tool_runner,
        log_sink=log_sink,
        handle_signals=handle_signals,
    )
    return PhaseSequencer(
        run=run,
        profile=profile,
        supervisor=supervisor,
        runner=tool_runner,
        injector=injector,
        guard=guard,
        workdir=workdir,
        log_sink=log_sink,
        sleep=sleep,
    )


def run(argv: Sequence[str] | None = None, *, workdir: Path | None = None) -> int:
    # Usage/config errors are reported before any resource is acquired.
    try:
        args = parse_args(argv)
        profile = load_profile(Path(args.profile) if args.profile else None)
        test_run = resolve_test_run(
            args.provider,
            no_cargo_clean=args.no_cargo_clean,
            no_stress_test=args.no_stress_test,
            profile=profile,
        )
    except UsageError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        print(usage_text(), file=sys.stderr)
        return exc.exit_code
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return exc.exit_code

    sinks: list[LogSink] = [StdoutLogSink()]
    if args.log_jsonl:
        sinks.append(JsonlLogSink(Path(args.log_jsonl)))
    log_sink = FanoutLogSink(sinks)
    try:
        sequencer = build_sequencer(
            test_run,
            profile,
            workdir=workdir if workdir is not None else Path.cwd(),
            log_sink=log_sink,
        )
        try:
            sequencer.run()
        except HarnessError as exc:
            log(log_sink, "error", "run failed", phase=_phase_value(sequencer), error=str(exc))
            return exc.exit_code
        return 0
    finally:
        log_sink.close()


def _phase_value(sequencer: PhaseSequencer) -> str | None:
    return sequencer.failed.value if sequencer.failed is not None else None
