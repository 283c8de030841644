"""Interception of the process-wide standard output stream."""

import io
import logging
import re
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import ClassVar, TextIO

log = logging.getLogger(__name__)

ANSI_ESCAPE_RE = re.compile(r"\x1b(?:\[[0-?]*[ -/]*[@-~]|[@-Z\\-_])")


class InterceptionActiveError(Exception):
    """Raised when an interception begins while another one is active."""


def strip_ansi(text: str) -> str:
    """Remove terminal color and cursor escape sequences."""
    return ANSI_ESCAPE_RE.sub("", text)


@dataclass(frozen=True, kw_only=True)
class CaptureHandle:
    """Token returned by ``OutputInterceptor.begin``."""

    original: TextIO
    stream: io.TextIOWrapper = field(repr=False)
    buffer: io.BytesIO = field(repr=False)

    def text(self) -> str:
        self.stream.flush()
        return self.buffer.getvalue().decode("utf-8", errors="replace")


@dataclass(kw_only=True)
class OutputInterceptor:
    """Redirects ``sys.stdout`` into an in-memory buffer between begin and end.

    Only one interception may be active per process, across all instances,
    since ``sys.stdout`` is process-wide. Callers serialize their invocations;
    a second ``begin`` while one is active raises ``InterceptionActiveError``
    instead of silently nesting.
    """

    _active: ClassVar[CaptureHandle | None] = None

    @property
    def active(self) -> bool:
        return self._active is not None

    def begin(self) -> CaptureHandle:
        """Start capturing standard output."""
        if self._active is not None:
            raise InterceptionActiveError("Output interception is already active")

        buffer = io.BytesIO()
        # Text and binary writes (sys.stdout.buffer) land in the same buffer
        stream = io.TextIOWrapper(
            buffer, encoding="utf-8", errors="replace", write_through=True
        )
        handle = CaptureHandle(original=sys.stdout, stream=stream, buffer=buffer)
        sys.stdout = stream
        OutputInterceptor._active = handle
        return handle

    def end(self, handle: CaptureHandle) -> str:
        """Restore the original stream and return the captured text."""
        if handle is not self._active:
            raise ValueError("Capture handle does not belong to the active interception")

        sys.stdout = handle.original
        OutputInterceptor._active = None
        captured = handle.text()
        log.debug("Captured %d character(s) of output", len(captured))
        return strip_ansi(captured)

    @contextmanager
    def capture(self) -> Iterator["CapturedOutput"]:
        """Capture standard output for the duration of the block."""
        output = CapturedOutput()
        handle = self.begin()
        try:
            yield output
        finally:
            output.text = self.end(handle)


@dataclass(kw_only=True)
class CapturedOutput:
    """Filled with the captured text when a ``capture`` block exits."""

    text: str = ""
