from .cli import build_parser, parse_args, usage_text
from .runtime import build_sequencer, run

__all__ = ["build_parser", "build_sequencer", "parse_args", "run", "usage_text"]
