"""Unit tests for result assertions."""

from __future__ import annotations

import typing as typ

import pytest

from toolprobe import assertions
from toolprobe.errors import (
    MissingPathError,
    PatternMismatchError,
    ProbeAssertionError,
    UnexpectedExitCodeError,
    ValueMismatchError,
    excerpt,
)
from toolprobe.process import ProcessResult

if typ.TYPE_CHECKING:
    from pathlib import Path

VERSION_PATTERN = r"\A\d+\.\d+\.\d+\n\Z"


def test_exit_code_mismatch_includes_captured_output() -> None:
    """The failure message carries both streams for diagnosis."""
    result = ProcessResult("hh compile", 1, "partial output\n", "Error HH1\n")

    with pytest.raises(UnexpectedExitCodeError) as excinfo:
        assertions.assert_exit_code(result, 0)

    message = str(excinfo.value)
    assert "exited with code 1, expected 0" in message
    assert "partial output" in message
    assert "Error HH1" in message


def test_exit_code_match_passes() -> None:
    """Matching codes return quietly."""
    assertions.assert_exit_code(ProcessResult("hh", 1, "", ""), 1)


@pytest.mark.parametrize(
    ("text", "matches"),
    [
        ("2.9.9\n", True),
        ("2.9.9", False),
        ("2.9.9\n\n", False),
        ("v2.9.9\n", False),
        ("2.9.9-beta\n", False),
        ("warning\n2.9.9\n", False),
    ],
)
def test_version_pattern_is_exact(text: str, *, matches: bool) -> None:
    """The version pattern accepts only a bare version and one newline."""
    if matches:
        assertions.assert_matches(text, VERSION_PATTERN)
    else:
        with pytest.raises(PatternMismatchError):
            assertions.assert_matches(text, VERSION_PATTERN)


def test_negated_match_fails_when_pattern_occurs() -> None:
    """A forbidden pattern reports the custom message and the text."""
    with pytest.raises(PatternMismatchError) as excinfo:
        assertions.assert_not_matches(
            "  0 passing\n", r"(?<!\d)0 passing", message="stale cache"
        )

    message = str(excinfo.value)
    assert message.startswith("stale cache: Expected output not to match")
    assert "0 passing" in message
    assert excinfo.value.required is False


def test_zero_passing_pattern_ignores_larger_counts() -> None:
    """Counts that merely end in zero are not mistaken for zero."""
    assertions.assert_not_matches("  10 passing\n", r"(?<!\d)0 passing")


def test_extract_count_returns_the_first_capture() -> None:
    """The first capture group is parsed as an integer."""
    assert assertions.extract_count("  2 passing (3ms)\n", r"(\d+) passing") == 2


def test_extract_count_requires_a_match() -> None:
    """A missing count is an assertion failure, not zero."""
    with pytest.raises(PatternMismatchError):
        assertions.extract_count("no tests\n", r"(\d+) passing")


def test_extract_counts_returns_every_capture() -> None:
    """Repeated runs yield one count each, in order."""
    text = "  2 passing\n  0 passing\n"

    assert assertions.extract_counts(text, r"(\d+) passing") == [2, 0]


def test_assert_equal_names_the_quantity() -> None:
    """Value mismatches are labelled."""
    with pytest.raises(ValueMismatchError, match="passing tests: got 1, expected 2"):
        assertions.assert_equal(1, 2, label="passing tests")


def test_assert_path_exists(tmp_path: Path) -> None:
    """Missing paths fail with the path in the message."""
    assertions.assert_path_exists(tmp_path)

    with pytest.raises(MissingPathError, match="artifacts"):
        assertions.assert_path_exists(tmp_path / "artifacts")


def test_assertion_errors_are_assertion_errors() -> None:
    """Assertion failures can be caught as plain AssertionError."""
    assert issubclass(ProbeAssertionError, AssertionError)


def test_excerpt_keeps_the_tail() -> None:
    """Long output is trimmed from the front."""
    text = "x" * 1000 + "END"

    trimmed = excerpt(text, limit=10)

    assert trimmed == "...xxxxxxxEND"
