from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, TextIO, runtime_checkable

from provider_ci.observability.domain.logging import LogMessage


@runtime_checkable
class LogSink(Protocol):
    def emit(self, message: LogMessage) -> None:
        ...


class StdoutLogSink:
    # Interleaves harness events with the tools' own terminal output, one line each.
    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    def emit(self, message: LogMessage) -> None:
        # Resolved per call so that a replaced sys.stdout is honoured.
        stream = self._stream if self._stream is not None else sys.stdout
        print(encode_line(message), file=stream, flush=True)


class JsonlLogSink:
    # Run record kept after the terminal scrolls away (`--log-jsonl`); appends across runs.
    def __init__(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        self.path = path
        self._handle = path.open("a", encoding="utf-8")

    def emit(self, message: LogMessage) -> None:
        # Flushed per event: an interrupted run keeps every event up to the signal.
        self._handle.write(f"{encode_line(message)}\n")
        self._handle.flush()

    def close(self) -> None:
        if not self._handle.closed:
            self._handle.close()


@dataclass(slots=True)
class MemoryLogSink:
    # Keeps messages in memory; used by tests and by callers inspecting a run.
    messages: list[LogMessage] = field(default_factory=list)

    def emit(self, message: LogMessage) -> None:
        self.messages.append(message)

    def texts(self) -> list[str]:
        return [message.message for message in self.messages]


@dataclass(slots=True)
class FanoutLogSink:
    sinks: list[LogSink]

    def emit(self, message: LogMessage) -> None:
        for sink in list(self.sinks):
            sink.emit(message)

    def close(self) -> None:
        for sink in list(self.sinks):
            close = getattr(sink, "close", None)
            if callable(close):
                close()


def log(sink: LogSink, level: str, message: str, **fields: object) -> None:
    sink.emit(LogMessage(level=level, message=message, fields=dict(fields)))


def encode_line(message: LogMessage) -> str:
    # Compact JSON; Path and enum field values are written as their string form.
    timestamp = message.timestamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    record = {"level": message.level, "message": message.message, "timestamp": timestamp, "fields": message.fields}
    return json.dumps(record, separators=(",", ":"), ensure_ascii=False, default=str)
