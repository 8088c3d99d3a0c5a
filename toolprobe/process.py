"""Synchronous command execution for conformance scenarios."""

from __future__ import annotations

import contextlib
import dataclasses
import logging
import os
import signal
import subprocess
import time
import typing as typ
from pathlib import Path

from .errors import (
    AbnormalTerminationError,
    CommandFailedError,
    CommandTimeoutError,
    LaunchFailedError,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc

_logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600.0

# Exit codes the shell itself uses for "not executable" and "not found".
LAUNCH_FAILURE_CODES = frozenset({9009}) if os.name == "nt" else frozenset({126, 127})
# A shell reports a child killed by signal N as exit code 128 + N.
SHELL_SIGNAL_OFFSET = 128


@dataclasses.dataclass(frozen=True, slots=True)
class ProcessResult:
    """Captured outcome of a single command invocation."""

    command: str
    exit_code: int
    stdout: str
    stderr: str
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        """Return True when the command exited with status zero."""
        return self.exit_code == 0

    def stream(self, name: str) -> str:
        """Return the captured ``stdout`` or ``stderr`` text by name."""
        if name == "stdout":
            return self.stdout
        if name == "stderr":
            return self.stderr
        msg = f"unknown stream {name!r}; expected 'stdout' or 'stderr'"
        raise ValueError(msg)


def write_stream_output(stream: typ.IO[str], content: str) -> None:
    """Write content to a stream, ensuring it ends with a newline."""
    stream.write(content)
    if not content.endswith("\n"):
        stream.write("\n")
    stream.flush()


def build_environment(
    *overrides: cabc.Mapping[str, str] | None,
) -> dict[str, str]:
    """Merge overrides, in order, over the inherited process environment."""
    merged = dict(os.environ)
    for mapping in overrides:
        if mapping:
            merged.update({key: str(value) for key, value in mapping.items()})
    return merged


def _kill_process_tree(process: subprocess.Popen[str]) -> None:
    if os.name == "posix":
        # The child leads its own session, so its pid is also the group id.
        with contextlib.suppress(ProcessLookupError):
            os.killpg(process.pid, signal.SIGKILL)
    else:  # pragma: no cover - exercised on Windows only
        process.kill()


class ProcessRunner:
    """Run shell commands one at a time and capture their output.

    The runner never mutates ``os.environ``: overrides are merged into a copy
    that only the spawned process sees, so variables meant for a single step
    (such as non-interactive generation flags) cannot leak into later ones.
    """

    def __init__(
        self,
        *,
        timeout: float | None = DEFAULT_TIMEOUT,
        env: cabc.Mapping[str, str] | None = None,
        echo: typ.IO[str] | None = None,
    ) -> None:
        """Store defaults applied to every invocation."""
        self.timeout = timeout
        self._env = dict(env or {})
        self._echo = echo

    def run(
        self,
        command: str,
        *,
        cwd: Path,
        env: cabc.Mapping[str, str] | None = None,
        tolerate_nonzero_exit: bool = False,
        timeout: float | None = None,
    ) -> ProcessResult:
        """Run ``command`` through the shell inside ``cwd``.

        Raises:
            LaunchFailedError: the working directory is missing or the shell
                could not find or execute the program.
            AbnormalTerminationError: the process was killed by a signal.
            CommandTimeoutError: the process outlived its time budget.
            CommandFailedError: the process exited non-zero and
                ``tolerate_nonzero_exit`` is False.

        """
        workdir = Path(cwd)
        if not workdir.is_dir():
            raise LaunchFailedError(
                command, f"working directory {workdir} does not exist"
            )
        budget = self.timeout if timeout is None else timeout
        environment = build_environment(self._env, env)

        _logger.debug("running %r in %s", command, workdir)
        started = time.monotonic()
        stdout, stderr, exit_code = self._spawn(command, workdir, environment, budget)
        result = ProcessResult(
            command=command,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration=time.monotonic() - started,
        )
        _logger.debug(
            "%r exited with %d after %.2fs",
            command,
            result.exit_code,
            result.duration,
        )
        self._echo_result(result)
        return _check_result(result, tolerate_nonzero_exit=tolerate_nonzero_exit)

    def _spawn(
        self,
        command: str,
        workdir: Path,
        environment: dict[str, str],
        budget: float | None,
    ) -> tuple[str, str, int]:
        try:
            process = subprocess.Popen(  # noqa: S602 - commands are shell strings
                command,
                shell=True,
                cwd=workdir,
                env=environment,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                start_new_session=os.name == "posix",
            )
        except OSError as error:
            raise LaunchFailedError(command, str(error)) from error

        with process:
            try:
                stdout, stderr = process.communicate(timeout=budget)
            except subprocess.TimeoutExpired:
                _kill_process_tree(process)
                stdout, stderr = process.communicate()
                _logger.warning("%r timed out after %ss", command, budget)
                raise CommandTimeoutError(
                    command,
                    budget or 0.0,
                    stdout=stdout or "",
                    stderr=stderr or "",
                ) from None
        return stdout or "", stderr or "", process.returncode

    def _echo_result(self, result: ProcessResult) -> None:
        if self._echo is None:
            return
        write_stream_output(self._echo, f"$ {result.command}")
        if result.stdout:
            write_stream_output(self._echo, result.stdout)
        if result.stderr:
            write_stream_output(self._echo, result.stderr)


def _check_result(
    result: ProcessResult, *, tolerate_nonzero_exit: bool
) -> ProcessResult:
    if (number := termination_signal(result.exit_code)) is not None:
        raise AbnormalTerminationError(result, number)
    if result.exit_code in LAUNCH_FAILURE_CODES:
        raise LaunchFailedError(
            result.command,
            f"shell reported exit code {result.exit_code} "
            "(command not found or not executable)",
            stderr=result.stderr,
        )
    if result.exit_code != 0 and not tolerate_nonzero_exit:
        raise CommandFailedError(result)
    return result


def termination_signal(exit_code: int) -> int | None:
    """Return the signal that ended a command, or None for a normal exit.

    A negative code means the shell itself was killed. On POSIX a code above
    128 naming a real signal means the shell saw its child die from that
    signal; a tool that deliberately exits with such a code is reported the
    same way.
    """
    if exit_code < 0:
        return -exit_code
    if os.name != "posix" or exit_code <= SHELL_SIGNAL_OFFSET:
        return None
    try:
        return signal.Signals(exit_code - SHELL_SIGNAL_OFFSET).value
    except ValueError:
        return None
