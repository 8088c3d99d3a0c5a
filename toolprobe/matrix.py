"""Command matrices: documented follow-up commands executed as scenarios.

After generating a sample project the tool prints (and writes to the
project's README) a list of commands the user should try next. A command
matrix pins that list down so every documented command is executed, in
order, inside the freshly generated project and must exit with status zero.
"""

from __future__ import annotations

import dataclasses
import re
import typing as typ

from .errors import MatrixDriftError
from .scenarios import ScenarioGroup

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .fixtures import Fixture
    from .scenarios import (
        ExecutionContext,
        Hook,
        RunReport,
        ScenarioBody,
        SuiteRunner,
    )

BINARY_PLACEHOLDER = "{binary}"
SHELL_FENCE_LANGUAGES = frozenset({"shell", "sh", "bash", "console"})
DRIFT_SCENARIO = "documented commands match the command matrix"
_FENCE = re.compile(r"^\s*```\s*(?P<lang>[\w-]*)\s*$")


def render_command(template: str, binary: str) -> str:
    """Substitute the tool binary into a command template.

    Only the literal ``{binary}`` placeholder is replaced: commands routinely
    contain shell brace globs such as ``'**/*.{ts,js}'``.
    """
    return template.replace(BINARY_PLACEHOLDER, binary)


@dataclasses.dataclass(frozen=True, slots=True)
class CommandMatrixEntry:
    """One command expected to succeed, and the scenario label for it."""

    label: str
    command: str

    @classmethod
    def suggested(cls, command: str) -> CommandMatrixEntry:
        """Build an entry labelled as a suggested onboarding command."""
        return cls(
            label=(
                "should permit successful execution of the suggested command "
                f'"{command}"'
            ),
            command=command,
        )

    def render(self, binary: str) -> CommandMatrixEntry:
        """Return a copy with the binary substituted into label and command."""
        return CommandMatrixEntry(
            label=render_command(self.label, binary),
            command=render_command(self.command, binary),
        )


@dataclasses.dataclass(frozen=True, slots=True)
class CommandMatrix:
    """A generated sample project and the commands documented for it.

    When ``generate_env`` is non-empty the tool is first run without
    arguments inside the fixture with those variables set, which selects the
    non-interactive "create with defaults" flow. ``readme`` names the file,
    relative to the generated project, whose fenced shell blocks list the
    documented commands; ``documented_prefix`` is how the README spells the
    tool (for example ``npx hardhat``).
    """

    name: str
    fixture: str
    entries: tuple[CommandMatrixEntry, ...]
    generate_env: cabc.Mapping[str, str] = dataclasses.field(default_factory=dict)
    readme: str | None = None
    documented_prefix: str | None = None
    ignore: tuple[str, ...] = ()


def extract_documented_commands(text: str) -> list[str]:
    """Return the commands listed in fenced shell blocks, in order."""
    commands: list[str] = []
    in_block = False
    collecting = False
    for line in text.splitlines():
        fence = _FENCE.match(line)
        if fence is not None:
            if in_block:
                in_block = collecting = False
            else:
                in_block = True
                collecting = fence.group("lang").lower() in SHELL_FENCE_LANGUAGES
            continue
        if not collecting:
            continue
        command = line.strip().removeprefix("$ ").strip()
        if command and not command.startswith("#"):
            commands.append(command)
    return commands


def normalise_documented(command: str, prefix: str | None) -> str:
    """Rewrite a leading documented tool prefix to the binary placeholder."""
    if prefix and (command == prefix or command.startswith(f"{prefix} ")):
        return BINARY_PLACEHOLDER + command[len(prefix) :]
    return command


def find_drift(
    matrix: CommandMatrix, readme_text: str
) -> tuple[list[str], list[str]]:
    """Compare README commands with matrix commands.

    Returns:
        ``(undocumented, untested)``: matrix commands missing from the README
        and README commands the matrix does not run, each in source order.

    """
    prefix = matrix.documented_prefix
    ignored = {normalise_documented(item, prefix) for item in matrix.ignore}
    documented = [
        command
        for raw in extract_documented_commands(readme_text)
        if (command := normalise_documented(raw, prefix)) not in ignored
    ]
    tested = [entry.command for entry in matrix.entries]
    documented_set = set(documented)
    tested_set = set(tested)
    undocumented = [command for command in tested if command not in documented_set]
    untested = [command for command in documented if command not in tested_set]
    return undocumented, untested


def _entry_body(entry: CommandMatrixEntry) -> ScenarioBody:
    def body(context: ExecutionContext) -> None:
        context.run(entry.command, tolerate_nonzero_exit=True)
        context.expect_exit_code(0)

    return body


def _generation_hook(env: cabc.Mapping[str, str]) -> Hook:
    def generate(context: ExecutionContext) -> None:
        context.run_tool(env=dict(env))

    return generate


def _drift_body(matrix: CommandMatrix, readme_path: str) -> ScenarioBody:
    def body(context: ExecutionContext) -> None:
        readme = context.expect_path(readme_path)
        undocumented, untested = find_drift(
            matrix, readme.read_text(encoding="utf-8")
        )
        if undocumented or untested:
            raise MatrixDriftError(
                matrix.name, undocumented=undocumented, untested=untested
            )

    return body


def build_matrix_group(matrix: CommandMatrix, binary: str) -> ScenarioGroup:
    """Return a group with one scenario per entry, in declaration order.

    The group owns the matrix fixture; its setup hook generates the sample
    project, and the optional drift check runs before any listed command.
    """
    group = ScenarioGroup(matrix.name, fixture=matrix.fixture)
    if matrix.generate_env:
        group.setup.append(_generation_hook(matrix.generate_env))
    if matrix.readme:
        group.add_scenario(DRIFT_SCENARIO, _drift_body(matrix, matrix.readme))
    for entry in matrix.entries:
        rendered = entry.render(binary)
        group.add_scenario(rendered.label, _entry_body(rendered))
    return group


class CommandMatrixRunner:
    """Run command matrices through a ``SuiteRunner``, preserving order."""

    def __init__(self, suite: SuiteRunner) -> None:
        """Bind the suite runner that executes generated scenarios."""
        self.suite = suite

    def build_group(self, matrix: CommandMatrix) -> ScenarioGroup:
        """Return the scenario group for ``matrix`` using the suite's binary."""
        return build_matrix_group(matrix, self.suite.binary)

    def run_matrix(
        self, matrix: CommandMatrix, *, select: str | None = None
    ) -> RunReport:
        """Acquire the matrix fixture, generate the project and run every entry."""
        return self.suite.run(self.build_group(matrix), select=select)

    def run(
        self,
        entries: cabc.Sequence[CommandMatrixEntry],
        fixture: Fixture,
        *,
        name: str = "command matrix",
    ) -> RunReport:
        """Run ``entries`` in order inside an already acquired ``fixture``."""
        group = ScenarioGroup(name)
        for entry in entries:
            rendered = entry.render(self.suite.binary)
            group.add_scenario(rendered.label, _entry_body(rendered))
        return self.suite.run(group, fixture=fixture)
