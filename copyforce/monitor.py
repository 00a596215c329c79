"""Progress reporting for an extraction run."""

from __future__ import annotations

import sys
from abc import ABC, abstractmethod
from typing import TextIO


class ExtractionMonitor(ABC):
    """Sink for progress messages produced during an extraction."""

    @abstractmethod
    def report_message(self, message: str) -> None:
        ...


class SilentExtractionMonitor(ExtractionMonitor):
    """Discards every message."""

    def report_message(self, message: str) -> None:
        pass


class VerboseExtractionMonitor(ExtractionMonitor):
    """Writes each message on its own line to a stream (stderr by default)."""

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        # sys.stderr is looked up on every write, not bound at construction.
        return self._stream if self._stream is not None else sys.stderr

    def report_message(self, message: str) -> None:
        self.stream.write(f"{message}\n")
        self.stream.flush()


def create_monitor(silent: bool, stream: TextIO | None = None) -> ExtractionMonitor:
    return SilentExtractionMonitor() if silent else VerboseExtractionMonitor(stream)
