"""Assertions over captured process results.

Every function here is pure: it inspects its arguments and either returns
quietly (or with the extracted value) or raises a ``ProbeAssertionError``
subclass whose message carries enough captured output to diagnose the
failure without re-running the tool.
"""

from __future__ import annotations

import re
import typing as typ

from .errors import (
    MissingPathError,
    PatternMismatchError,
    UnexpectedExitCodeError,
    ValueMismatchError,
)

if typ.TYPE_CHECKING:
    from pathlib import Path

    from .process import ProcessResult


def assert_exit_code(result: ProcessResult, expected: int) -> None:
    """Fail unless ``result`` exited with ``expected``."""
    if result.exit_code != expected:
        raise UnexpectedExitCodeError(result, expected)


def assert_matches(
    text: str,
    pattern: str,
    expected: bool = True,  # noqa: FBT001, FBT002 - mirrors match/no-match flag
    *,
    label: str = "output",
    message: str | None = None,
) -> None:
    """Fail when ``pattern`` matching ``text`` differs from ``expected``."""
    found = re.search(pattern, text, re.MULTILINE) is not None
    if found != expected:
        raise PatternMismatchError(
            pattern,
            text,
            required=expected,
            label=label,
            message=message,
        )


def assert_not_matches(
    text: str,
    pattern: str,
    *,
    label: str = "output",
    message: str | None = None,
) -> None:
    """Fail when ``pattern`` occurs anywhere in ``text``."""
    assert_matches(text, pattern, False, label=label, message=message)


def extract_count(text: str, pattern: str, *, label: str = "output") -> int:
    """Return the integer captured by the first group of ``pattern``."""
    match = re.search(pattern, text, re.MULTILINE)
    if match is None or not match.groups():
        raise PatternMismatchError(pattern, text, required=True, label=label)
    return int(match.group(1))


def extract_counts(text: str, pattern: str, *, label: str = "output") -> list[int]:
    """Return every integer captured by ``pattern``, failing when none match."""
    counts = [
        int(match.group(1))
        for match in re.finditer(pattern, text, re.MULTILINE)
        if match.groups()
    ]
    if not counts:
        raise PatternMismatchError(pattern, text, required=True, label=label)
    return counts


def assert_equal(actual: object, expected: object, *, label: str) -> None:
    """Fail when two observed values differ."""
    if actual != expected:
        raise ValueMismatchError(label, actual, expected)


def assert_path_exists(path: Path) -> None:
    """Fail when ``path`` does not exist."""
    if not path.exists():
        raise MissingPathError(path)
