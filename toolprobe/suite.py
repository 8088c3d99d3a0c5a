"""The standard conformance suite for a Hardhat-style build tool.

The tree mirrors the tool's documented contracts:

* ``basic project``: version output, clean/compile with the compiled file
  count and an artifacts directory, repeated programmatic test runs that
  must never report zero tests, test file arguments, and parallel test runs
  reporting the same pass count as serial ones.
* ``sample projects``: one command matrix per generated sample project.
* ``no project``: version output still works, compiling fails with a
  documented diagnostic.
"""

from __future__ import annotations

import platform
import typing as typ

from .fixtures import FixtureManager
from .matrix import build_matrix_group, render_command
from .process import ProcessRunner
from .scenarios import ScenarioGroup, SuiteRunner

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

    from .config import SuiteConfig, ToolProfile
    from .scenarios import (
        ExecutionContext,
        Hook,
        RunReport,
        ScenarioBody,
        SkipPredicate,
    )

ROOT_GROUP = "conformance"
STALE_CACHE_MESSAGE = "A test run occurred with 0 tests - potential caching issue"


def skip_on_platforms(platforms: cabc.Iterable[str]) -> SkipPredicate | None:
    """Return a predicate that is true on any of the named operating systems."""
    names = {name.lower() for name in platforms}
    if not names:
        return None
    return lambda: platform.system().lower() in names


def count_sources(workdir: Path, pattern: str) -> int:
    """Count the files under ``workdir`` matching the glob ``pattern``."""
    return sum(1 for path in workdir.glob(pattern) if path.is_file())


def fixture_setup_hook(commands: cabc.Sequence[str]) -> Hook:
    """Run preparation commands (strictly) in a freshly acquired fixture."""

    def prepare(context: ExecutionContext) -> None:
        for command in commands:
            context.run(render_command(command, context.binary))

    return prepare


def _clean(context: ExecutionContext, profile: ToolProfile) -> None:
    context.run_tool(*profile.clean_args, tolerate_nonzero_exit=True)
    context.expect_exit_code(0)


def version_body(profile: ToolProfile) -> ScenarioBody:
    """Check that the tool prints a bare version number."""

    def body(context: ExecutionContext) -> None:
        context.run_tool(*profile.version_args, tolerate_nonzero_exit=True)
        context.expect_exit_code(0)
        context.expect_match(profile.version_pattern)

    return body


def compile_body(profile: ToolProfile) -> ScenarioBody:
    """Check a clean compile reports every source file and writes artifacts."""

    def body(context: ExecutionContext) -> None:
        _clean(context, profile)
        sources = count_sources(context.workdir, profile.source_glob)
        context.run_tool(*profile.compile_args, tolerate_nonzero_exit=True)
        context.expect_exit_code(0)
        context.expect_path(profile.artifacts_dir)
        context.expect_match(
            profile.compiled_pattern.replace("{count}", str(sources))
        )
        _clean(context, profile)

    return body


def programmatic_test_body(profile: ToolProfile, script: str) -> ScenarioBody:
    """Check repeated in-process test runs never lose their tests."""

    def body(context: ExecutionContext) -> None:
        _clean(context, profile)
        context.run_tool(*profile.run_args, script, tolerate_nonzero_exit=True)
        context.expect_exit_code(0)
        counts = context.expect_counts(profile.passing_pattern)
        context.expect_no_match(
            profile.zero_passing_pattern, message=STALE_CACHE_MESSAGE
        )
        if profile.expected_passing is not None:
            for run, count in enumerate(counts, start=1):
                context.expect_equal(
                    count,
                    profile.expected_passing,
                    label=f"passing tests in run {run}",
                )
        _clean(context, profile)

    return body


def file_arguments_body(profile: ToolProfile) -> ScenarioBody:
    """Check the test command accepts file paths with and without ``./``."""

    def body(context: ExecutionContext) -> None:
        _clean(context, profile)
        for test_file in profile.test_files:
            bare = test_file.removeprefix("./")
            for spelling in (bare, f"./{bare}"):
                context.run_tool(
                    *profile.test_args, spelling, tolerate_nonzero_exit=True
                )
                context.expect_exit_code(0)

    return body


def _passing_count(context: ExecutionContext, profile: ToolProfile) -> int:
    context.expect_exit_code(0)
    count = context.expect_count(profile.passing_pattern)
    context.expect_no_match(profile.zero_passing_pattern, message=STALE_CACHE_MESSAGE)
    return count


def parallel_body(profile: ToolProfile) -> ScenarioBody:
    """Check parallel test runs pass exactly as many tests as serial runs."""

    def body(context: ExecutionContext) -> None:
        _clean(context, profile)
        context.run_tool(*profile.test_args, tolerate_nonzero_exit=True)
        serial = _passing_count(context, profile)

        _clean(context, profile)
        context.run_tool(
            *profile.test_args, *profile.parallel_args, tolerate_nonzero_exit=True
        )
        parallel = _passing_count(context, profile)

        context.expect_equal(
            parallel, serial, label="passing tests in parallel vs serial mode"
        )
        if profile.expected_passing is not None:
            context.expect_equal(
                serial, profile.expected_passing, label="passing tests"
            )
        _clean(context, profile)

    return body


def no_project_body(profile: ToolProfile) -> ScenarioBody:
    """Check compiling outside a project fails with the documented diagnostic."""

    def body(context: ExecutionContext) -> None:
        context.run_tool(*profile.compile_args, tolerate_nonzero_exit=True)
        context.expect_exit_code(profile.no_project_exit_code)
        for pattern in profile.no_project_patterns:
            context.expect_match(pattern, stream="stderr")

    return body


def _basic_project_group(config: SuiteConfig, fixture: str) -> ScenarioGroup:
    profile = config.profile
    group = ScenarioGroup("basic project", fixture=fixture)
    if config.fixtures.setup:
        group.setup.append(fixture_setup_hook(config.fixtures.setup))
    group.add_scenario("should print the tool version", version_body(profile))
    group.add_scenario("should compile", compile_body(profile))
    if profile.programmatic_script:
        group.add_scenario(
            "should test programmatically",
            programmatic_test_body(profile, profile.programmatic_script),
        )
    if profile.test_files:
        group.add_scenario(
            "the test task should accept test files", file_arguments_body(profile)
        )
    group.add_scenario("should run tests in parallel", parallel_body(profile))
    return group


def _sample_projects_group(config: SuiteConfig) -> ScenarioGroup:
    group = ScenarioGroup(
        "sample projects", skip_if=skip_on_platforms(config.sample_skip_on)
    )
    for matrix in config.matrices:
        matrix_group = build_matrix_group(matrix, config.binary)
        if config.fixtures.setup:
            # Preparing the fixture must precede project generation.
            matrix_group.setup.insert(0, fixture_setup_hook(config.fixtures.setup))
        group.add(matrix_group)
    return group


def _no_project_group(config: SuiteConfig, fixture: str) -> ScenarioGroup:
    profile = config.profile
    group = ScenarioGroup("no project", fixture=fixture)
    group.add_scenario("should print the tool version", version_body(profile))
    group.add_scenario(
        "should print an error message if you try to compile",
        no_project_body(profile),
    )
    return group


def build_suite(config: SuiteConfig) -> ScenarioGroup:
    """Build the root scenario group described by ``config``."""
    root = ScenarioGroup(ROOT_GROUP)
    if config.basic_project:
        root.add(_basic_project_group(config, config.basic_project))
    if config.matrices:
        root.add(_sample_projects_group(config))
    if config.empty_project:
        root.add(_no_project_group(config, config.empty_project))
    return root


def build_runner(
    config: SuiteConfig,
    *,
    echo: typ.IO[str] | None = None,
) -> SuiteRunner:
    """Create the suite runner for ``config``."""
    fixtures = FixtureManager(config.fixtures.root, temp_root=config.temp_root)
    runner = ProcessRunner(timeout=config.timeout, echo=echo)
    return SuiteRunner(fixtures, runner, binary=config.binary)


def run_suite(
    config: SuiteConfig,
    *,
    select: str | None = None,
    echo: typ.IO[str] | None = None,
) -> RunReport:
    """Build and run the standard suite, returning its report."""
    runner = build_runner(config, echo=echo)
    return runner.run(build_suite(config), select=select)
