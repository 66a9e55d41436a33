from provider_ci.observability.adapters.logging import (
    FanoutLogSink,
    JsonlLogSink,
    LogSink,
    MemoryLogSink,
    StdoutLogSink,
    encode_line,
    log,
)
from provider_ci.observability.domain.logging import LOG_LEVELS, LogMessage

__all__ = [
    "FanoutLogSink",
    "JsonlLogSink",
    "LOG_LEVELS",
    "LogMessage",
    "LogSink",
    "MemoryLogSink",
    "StdoutLogSink",
    "encode_line",
    "log",
]
