"""Exceptions raised by the launch sequence and the fixture handle.

Every failure surfaced to callers is a ``LaunchError``. Subclasses tell
fatal I/O problems apart from rejected RPC calls and from a daemon that
never became ready in time.
"""

from __future__ import annotations

from typing import Any


class LaunchError(Exception):
    """Fixture failure with diagnostic context.

    The ``diagnostics`` dict carries structured context (executable,
    datadir, attempt number, elapsed time) for debugging.

    Attributes:
        diagnostics: Structured diagnostic information about the failure.
    """

    def __init__(self, message: str, *, diagnostics: dict[str, Any] | None = None) -> None:
        """Initialize with a message and optional structured diagnostics.

        Args:
            message: Human-readable error description.
            diagnostics: Structured context about the failure.
        """
        super().__init__(message)
        self.diagnostics: dict[str, Any] = dict(diagnostics or {})


class LaunchIOError(LaunchError):
    """Port binding, directory creation, spawning or waiting failed.

    The originating ``OSError`` is chained as ``__cause__``.
    """


class DaemonExitedError(LaunchIOError):
    """The daemon exited before it answered an RPC call.

    Attributes:
        returncode: Exit status reported by the process.
    """

    def __init__(
        self,
        message: str,
        *,
        returncode: int,
        diagnostics: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, diagnostics=diagnostics)
        self.returncode = returncode


class LaunchRPCError(LaunchError):
    """An authenticated RPC call failed for a reason other than warm-up.

    The originating ``JSONRPCError`` is chained as ``__cause__``.
    """


class ReadinessTimeoutError(LaunchError):
    """The daemon did not become ready within ``timeout_seconds``."""


class FixtureStoppedError(LaunchError):
    """The fixture was stopped or closed; its client may no longer be used."""
