from .logging import FanoutLogSink, JsonlLogSink, LogSink, MemoryLogSink, StdoutLogSink, encode_line, log

__all__ = ["FanoutLogSink", "JsonlLogSink", "LogSink", "MemoryLogSink", "StdoutLogSink", "encode_line", "log"]
