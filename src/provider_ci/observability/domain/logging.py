from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

LOG_LEVELS = frozenset({"debug", "info", "warning", "error"})


@dataclass(frozen=True, slots=True)
class LogMessage:
    # One harness event: a phase headline, a child process transition or a cleanup step.
    level: str
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    fields: dict[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.level not in LOG_LEVELS:
            raise ValueError(f"unknown log level {self.level!r}; expected one of {sorted(LOG_LEVELS)}")
        if not self.message:
            raise ValueError("a harness log message needs text")
