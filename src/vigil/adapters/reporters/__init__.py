"""Reporter adapters."""

from .logging_reporter import LoggingReporter
from .memory import MemoryReporter

__all__ = ["LoggingReporter", "MemoryReporter"]
