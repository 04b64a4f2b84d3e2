"""
Console output helpers for axbuild.

All diagnostics go to stderr so that stdout stays free for the build tool.
"""
import sys
from typing import TextIO


class Console:
    """Simple diagnostics printer in cargo's ``status``/``warning``/``error`` style."""

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stderr

    def status(self, name: str, message: str) -> None:
        print(f"{name:>12} {message}", file=self.stream)

    def warn(self, message: str) -> None:
        print(f"warning: {message}", file=self.stream)

    def error(self, message: str) -> None:
        print(f"error: {message}", file=self.stream)

    def echo(self, line: str) -> None:
        print(line, file=self.stream)
