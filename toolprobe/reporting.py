"""Plain-text rendering of scenario trees and run reports."""

from __future__ import annotations

import textwrap
import typing as typ

from .scenarios import NodeState, ScenarioGroup

if typ.TYPE_CHECKING:
    from .scenarios import RunReport, ScenarioOutcome

_MARKERS = {
    NodeState.PASSED: "PASS",
    NodeState.FAILED: "FAIL",
    NodeState.SKIPPED: "SKIP",
}
_INDENT = "    "


def render_outcome(outcome: ScenarioOutcome) -> str:
    """Render a single outcome as one status line."""
    marker = _MARKERS.get(outcome.state, str(outcome.state).upper())
    line = f"{marker}  {outcome.name}"
    if outcome.state is NodeState.SKIPPED and outcome.detail:
        return f"{line} ({outcome.detail})"
    if outcome.state is not NodeState.SKIPPED:
        line = f"{line} [{outcome.duration:.2f}s]"
    return line


def render_summary(report: RunReport) -> str:
    """Render the pass/fail/skip counts."""
    parts = [
        f"{report.passed} passed",
        f"{report.failed} failed",
        f"{report.skipped} skipped",
    ]
    if report.group_errors:
        parts.append(f"{len(report.group_errors)} group errors")
    return ", ".join(parts)


def render_report(report: RunReport) -> str:
    """Render every outcome, then failure details, then the summary."""
    lines = [render_outcome(outcome) for outcome in report.outcomes]

    failures = report.failures()
    if failures or report.group_errors:
        lines.extend(("", "Failures:"))
    for outcome in failures:
        lines.append(f"- {outcome.name}")
        lines.append(textwrap.indent(f"{outcome.error}: {outcome.detail}", _INDENT))
    for error in report.group_errors:
        lines.append(f"- {error.name} ({error.phase})")
        lines.append(textwrap.indent(f"{error.error}: {error.detail}", _INDENT))

    lines.extend(("", render_summary(report)))
    return "\n".join(lines)


def render_tree(root: ScenarioGroup) -> str:
    """Render the scenario tree with one node per line."""
    lines: list[str] = []
    for depth, node in root.walk_nodes():
        prefix = "  " * depth
        if isinstance(node, ScenarioGroup):
            notes = []
            if node.fixture:
                notes.append(f"fixture: {node.fixture}")
            if node.skip_if is not None:
                notes.append("conditional")
            suffix = f" [{', '.join(notes)}]" if notes else ""
            lines.append(f"{prefix}{node.name}{suffix}")
        else:
            lines.append(f"{prefix}- {node.description}")
    return "\n".join(lines)
