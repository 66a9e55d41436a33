from __future__ import annotations

import re
from pathlib import Path

from provider_ci.config.models import SlotDiscoveryConfig
from provider_ci.domain.errors import SlotDiscoveryError
from provider_ci.platform.commands import ToolRunner

_SLOT_LINE = re.compile(r"^slot_number =.*$")


def discover_slot(runner: ToolRunner, config: SlotDiscoveryConfig) -> int:
    # First slot listed by the discovery tool.
    result = runner.capture(config.command.render(), env=config.command.env)
    if not result.ok:
        raise SlotDiscoveryError(f"slot discovery exited with code {result.returncode}")
    pattern = re.compile(config.pattern, re.MULTILINE)
    match = pattern.search(result.stdout)
    if match is None:
        raise SlotDiscoveryError("slot discovery output does not list any slot")
    return int(match.group(1))


def append_slot_line(config_path: Path, slot: int) -> None:
    text = config_path.read_text(encoding="utf-8") if config_path.exists() else ""
    if text and not text.endswith("\n"):
        text += "\n"
    config_path.write_text(f"{text}slot_number = {slot}\n", encoding="utf-8")


def strip_slot_lines(config_path: Path) -> int:
    # Returns the number of removed lines; a missing file has nothing to strip.
    if not config_path.exists():
        return 0
    lines = config_path.read_text(encoding="utf-8").splitlines(keepends=True)
    kept = [line for line in lines if not _SLOT_LINE.match(line.rstrip("\r\n"))]
    removed = len(lines) - len(kept)
    if removed:
        config_path.write_text("".join(kept), encoding="utf-8")
    return removed
