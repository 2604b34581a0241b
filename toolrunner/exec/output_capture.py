"""
Output capture module for in-process tool runs.

Replaces the process-wide standard output and error streams with two
growable byte buffers, so everything a tool prints can be read back as text
instead of reaching the console.
"""

import io
import sys
from types import ModuleType
from typing import Optional, TextIO


class _CaptureBuffer(io.BytesIO):
    """Byte buffer that stays open for the whole session."""

    def close(self) -> None:
        # A guest closing stdout, or dropping its own wrapper around
        # stdout.buffer, must not end the capture.
        pass


class _CaptureTextStream(io.TextIOWrapper):
    """Text side of a captured stream; can't be closed or detached."""

    def close(self) -> None:
        self.flush()

    def detach(self):
        raise io.UnsupportedOperation("captured stream can't be detached")


class CapturedStream:
    """
    Text stream backed by an in-memory byte buffer.

    Guests can print text or write raw bytes to ``stream.buffer``; both end up
    in the same buffer. Closing either side is ignored.
    """

    def __init__(self, name: str, encoding: str = "utf-8"):
        self.name = name
        self.encoding = encoding
        self.active = False
        self._buffer = _CaptureBuffer()
        self.stream = _CaptureTextStream(
            self._buffer,
            encoding=encoding,
            errors="replace",
            newline="",
            write_through=True,
        )

    def read(self) -> str:
        """Return the text written since the last reset."""
        self.stream.flush()
        return self._buffer.getvalue().decode(self.encoding, errors="replace")

    def reset(self) -> None:
        self.stream.flush()
        self._buffer.seek(0)
        self._buffer.truncate()


class OutputCapture:
    """
    Owns the standard output streams of ``system`` while tools run.

    ``install`` must be called before the termination guard is installed;
    afterwards the guard refuses any further stream replacement, including a
    second ``install``.
    """

    def __init__(self, system: ModuleType = sys, encoding: str = "utf-8"):
        """
        Initialize output capture.

        Args:
            system: Module whose ``stdout``/``stderr`` get replaced (default: sys)
            encoding: Encoding used for the captured buffers
        """
        self.system = system
        self.out = CapturedStream("stdout", encoding)
        self.err = CapturedStream("stderr", encoding)
        self._saved_stdout: Optional[TextIO] = None
        self._saved_stderr: Optional[TextIO] = None

    @property
    def installed(self) -> bool:
        return self.out.active and self.err.active

    def install(self) -> None:
        """Point the process-wide stdout/stderr at the capture buffers."""
        if not self.installed:
            self._saved_stdout = getattr(self.system, "stdout", None)
            self._saved_stderr = getattr(self.system, "stderr", None)

        self.system.stdout = self.out.stream
        self.system.stderr = self.err.stream

        self.out.active = True
        self.err.active = True
        self.clear()

    def drain_output(self) -> str:
        return self.out.read()

    def drain_error(self) -> str:
        return self.err.read()

    def clear(self) -> None:
        """Empty both buffers before the next run."""
        self.out.reset()
        self.err.reset()

    def uninstall(self) -> None:
        """
        Restore the streams saved by ``install``.

        Only for harness teardown, after the termination guard is gone.
        """
        if not self.installed:
            return

        self.system.stdout = self._saved_stdout
        self.system.stderr = self._saved_stderr
        self.out.active = False
        self.err.active = False
        self._saved_stdout = None
        self._saved_stderr = None
