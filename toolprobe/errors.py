"""Shared exception types for the toolprobe harness."""

from __future__ import annotations

import signal
import typing as typ

if typ.TYPE_CHECKING:
    from pathlib import Path

    from .process import ProcessResult

EXCERPT_LIMIT = 800


def excerpt(text: str, limit: int = EXCERPT_LIMIT) -> str:
    """Return the tail of ``text`` trimmed to ``limit`` characters."""
    stripped = text.rstrip()
    if len(stripped) <= limit:
        return stripped
    return "..." + stripped[-limit:]


def _describe_output(stdout: str, stderr: str) -> str:
    sections: list[str] = []
    if stdout.strip():
        sections.append(f"--- stdout ---\n{excerpt(stdout)}")
    if stderr.strip():
        sections.append(f"--- stderr ---\n{excerpt(stderr)}")
    if not sections:
        return ""
    return "\n" + "\n".join(sections)


class ProbeError(RuntimeError):
    """Base error for toolprobe operations."""


class ConfigError(ProbeError):
    """Raised when the suite manifest or overrides are invalid."""


class CommandError(ProbeError):
    """Base class for failures observed while running a command."""

    def __init__(
        self,
        message: str,
        *,
        command: str,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        """Record the command and whatever output it produced."""
        super().__init__(message + _describe_output(stdout, stderr))
        self.command = command
        self.stdout = stdout
        self.stderr = stderr


class LaunchFailedError(CommandError):
    """Raised when the command could not be started at all."""

    def __init__(self, command: str, detail: str, *, stderr: str = "") -> None:
        """Describe why the launch failed."""
        super().__init__(
            f"Failed to launch {command!r}: {detail}",
            command=command,
            stderr=stderr,
        )


class AbnormalTerminationError(CommandError):
    """Raised when the process was killed by a signal."""

    def __init__(self, result: ProcessResult, number: int) -> None:
        """Name the signal that terminated the process."""
        try:
            name = signal.Signals(number).name
        except ValueError:
            name = f"signal {number}"
        super().__init__(
            f"{result.command!r} was terminated by {name}",
            command=result.command,
            stdout=result.stdout,
            stderr=result.stderr,
        )
        self.result = result
        self.signal_number = number


class CommandFailedError(CommandError):
    """Raised when a strict invocation exits with a non-zero code."""

    def __init__(self, result: ProcessResult) -> None:
        """Capture the failing result."""
        super().__init__(
            f"{result.command!r} exited with code {result.exit_code}",
            command=result.command,
            stdout=result.stdout,
            stderr=result.stderr,
        )
        self.result = result


class CommandTimeoutError(CommandError):
    """Raised when a command exceeds its time budget and is killed."""

    def __init__(
        self,
        command: str,
        timeout: float,
        *,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        """Record the budget that was exceeded."""
        super().__init__(
            f"{command!r} timed out after {timeout:g}s and was killed",
            command=command,
            stdout=stdout,
            stderr=stderr,
        )
        self.timeout = timeout


class ProbeAssertionError(ProbeError, AssertionError):
    """Base class for assertion failures inside scenarios."""


class UnexpectedExitCodeError(ProbeAssertionError):
    """Raised when a process exits with a code other than the expected one."""

    def __init__(self, result: ProcessResult, expected: int) -> None:
        """Report the actual and expected codes with captured output."""
        super().__init__(
            f"{result.command!r} exited with code {result.exit_code}, "
            f"expected {expected}" + _describe_output(result.stdout, result.stderr)
        )
        self.result = result
        self.expected = expected


class PatternMismatchError(ProbeAssertionError):
    """Raised when text does (or does not) match a pattern unexpectedly."""

    def __init__(
        self,
        pattern: str,
        text: str,
        *,
        required: bool,
        label: str = "output",
        message: str | None = None,
    ) -> None:
        """Describe the pattern, the expectation and an excerpt of the text."""
        verb = "to match" if required else "not to match"
        summary = f"Expected {label} {verb} /{pattern}/"
        if message:
            summary = f"{message}: {summary}"
        shown = excerpt(text) or "<empty>"
        super().__init__(f"{summary}\n--- {label} ---\n{shown}")
        self.pattern = pattern
        self.required = required


class ValueMismatchError(ProbeAssertionError):
    """Raised when two observed values differ."""

    def __init__(self, label: str, actual: object, expected: object) -> None:
        """Report both values."""
        super().__init__(f"{label}: got {actual!r}, expected {expected!r}")
        self.actual = actual
        self.expected = expected


class MissingPathError(ProbeAssertionError):
    """Raised when an expected file or directory is absent."""

    def __init__(self, path: Path) -> None:
        """Name the missing path."""
        super().__init__(f"Expected {path} to exist")
        self.path = path


class NoAssertionsError(ProbeAssertionError):
    """Raised when a scenario body finished without checking anything."""

    def __init__(self, description: str) -> None:
        """Name the scenario that made no assertions."""
        super().__init__(
            f"Scenario {description!r} completed without evaluating any assertion"
        )


class MatrixDriftError(ProbeAssertionError):
    """Raised when documented commands and the command matrix disagree."""

    def __init__(
        self,
        matrix: str,
        *,
        undocumented: typ.Sequence[str],
        untested: typ.Sequence[str],
    ) -> None:
        """List commands missing from either side."""
        lines = [f"Command matrix {matrix!r} drifted from its onboarding text"]
        lines.extend(f"  tested but not documented: {cmd}" for cmd in undocumented)
        lines.extend(f"  documented but not tested: {cmd}" for cmd in untested)
        super().__init__("\n".join(lines))
        self.undocumented = tuple(undocumented)
        self.untested = tuple(untested)


class FixtureError(ProbeError):
    """Base class for fixture lifecycle failures."""


class FixtureNotFoundError(FixtureError):
    """Raised when a named fixture template does not exist."""

    def __init__(self, name: str, template_root: Path) -> None:
        """Name the fixture and where it was looked up."""
        super().__init__(f"Fixture {name!r} not found under {template_root}")
        self.name = name


SETUP_FAILURES: tuple[type[ProbeError], ...] = (
    FixtureNotFoundError,
    LaunchFailedError,
)
