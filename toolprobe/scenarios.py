"""Scenario tree, execution context and the sequential suite runner.

A suite is an explicit tree: ``ScenarioGroup`` nodes own ordered children
(scenarios or further groups) plus hooks, and ``SuiteRunner`` interprets the
tree depth-first on the calling thread. Nothing is registered through import
side effects and no state is shared between scenarios except through the
``ExecutionContext`` each body receives.
"""

from __future__ import annotations

import contextlib
import dataclasses
import enum
import logging
import shlex
import time
import typing as typ
import weakref

from . import assertions
from .errors import SETUP_FAILURES, NoAssertionsError, ProbeError

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

    from .fixtures import Fixture, FixtureManager
    from .process import ProcessResult, ProcessRunner

_logger = logging.getLogger(__name__)

ScenarioBody: typ.TypeAlias = "typ.Callable[[ExecutionContext], None]"
Hook: typ.TypeAlias = "typ.Callable[[ExecutionContext], None]"
SkipPredicate: typ.TypeAlias = typ.Callable[[], bool]

_N = typ.TypeVar("_N", "Scenario", "ScenarioGroup")

PATH_SEPARATOR = " > "
SKIPPED_BY_PREDICATE = "skipped by predicate"


class NodeState(enum.StrEnum):
    """Lifecycle state of a scenario."""

    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


_TRANSITIONS: dict[NodeState, frozenset[NodeState]] = {
    NodeState.PENDING: frozenset({NodeState.RUNNING, NodeState.SKIPPED}),
    NodeState.RUNNING: frozenset({NodeState.PASSED, NodeState.FAILED}),
}


def _parent_of(
    ref: weakref.ReferenceType[ScenarioGroup] | None,
) -> ScenarioGroup | None:
    return ref() if ref is not None else None


@dataclasses.dataclass(eq=False)
class Scenario:
    """A single behavioural check against the tool under test."""

    description: str
    body: ScenarioBody
    skip_if: SkipPredicate | None = None
    fixture: str | None = None
    _parent: weakref.ReferenceType[ScenarioGroup] | None = dataclasses.field(
        default=None, init=False, repr=False
    )

    @property
    def parent(self) -> ScenarioGroup | None:
        """Return the owning group, if it is still alive."""
        return _parent_of(self._parent)

    @property
    def path(self) -> tuple[str, ...]:
        """Return group names from the root down to this scenario."""
        parent = self.parent
        prefix = parent.path if parent is not None else ()
        return (*prefix, self.description)


@dataclasses.dataclass(eq=False)
class ScenarioGroup:
    """A named collection of scenarios and groups sharing hooks.

    ``before_each`` and ``after_each`` wrap every scenario in the subtree;
    ``setup`` and ``teardown`` run once around the whole group. A ``fixture``
    declared on a group is shared by its whole subtree.
    """

    name: str
    children: list[Scenario | ScenarioGroup] = dataclasses.field(default_factory=list)
    before_each: list[Hook] = dataclasses.field(default_factory=list)
    after_each: list[Hook] = dataclasses.field(default_factory=list)
    setup: list[Hook] = dataclasses.field(default_factory=list)
    teardown: list[Hook] = dataclasses.field(default_factory=list)
    skip_if: SkipPredicate | None = None
    fixture: str | None = None
    _parent: weakref.ReferenceType[ScenarioGroup] | None = dataclasses.field(
        default=None, init=False, repr=False
    )

    def __post_init__(self) -> None:
        """Adopt children passed to the constructor."""
        for child in self.children:
            child._parent = weakref.ref(self)  # noqa: SLF001

    @property
    def parent(self) -> ScenarioGroup | None:
        """Return the enclosing group, or None for the root."""
        return _parent_of(self._parent)

    @property
    def path(self) -> tuple[str, ...]:
        """Return group names from the root down to this group."""
        parent = self.parent
        prefix = parent.path if parent is not None else ()
        return (*prefix, self.name)

    def add(self, node: _N) -> _N:
        """Append ``node`` as the last child and return it."""
        node._parent = weakref.ref(self)  # noqa: SLF001
        self.children.append(node)
        return node

    def group(self, name: str, **options: typ.Any) -> ScenarioGroup:  # noqa: ANN401
        """Create, attach and return a child group."""
        return self.add(ScenarioGroup(name, **options))

    def add_scenario(
        self,
        description: str,
        body: ScenarioBody,
        *,
        skip_if: SkipPredicate | None = None,
        fixture: str | None = None,
    ) -> Scenario:
        """Create, attach and return a scenario."""
        return self.add(
            Scenario(description, body, skip_if=skip_if, fixture=fixture)
        )

    def scenario(
        self,
        description: str,
        *,
        skip_if: SkipPredicate | None = None,
        fixture: str | None = None,
    ) -> typ.Callable[[ScenarioBody], ScenarioBody]:
        """Register the decorated function as a scenario body."""

        def register(body: ScenarioBody) -> ScenarioBody:
            self.add_scenario(description, body, skip_if=skip_if, fixture=fixture)
            return body

        return register

    def walk(self) -> cabc.Iterator[Scenario]:
        """Yield every scenario in the subtree, depth-first."""
        for child in self.children:
            if isinstance(child, ScenarioGroup):
                yield from child.walk()
            else:
                yield child

    def walk_nodes(
        self, depth: int = 0
    ) -> cabc.Iterator[tuple[int, Scenario | ScenarioGroup]]:
        """Yield ``(depth, node)`` for this group and its whole subtree."""
        yield depth, self
        for child in self.children:
            if isinstance(child, ScenarioGroup):
                yield from child.walk_nodes(depth + 1)
            else:
                yield depth + 1, child


class ExecutionContext:
    """Per-scenario view of the active fixture and the last command result."""

    def __init__(
        self,
        *,
        runner: ProcessRunner,
        binary: str,
        fixture: Fixture | None,
        name: str,
    ) -> None:
        """Bind the runner, tool binary and fixture for one node."""
        self._runner = runner
        self.binary = binary
        self.fixture = fixture
        self.name = name
        self._last_result: ProcessResult | None = None
        self.assertion_count = 0

    @property
    def workdir(self) -> Path:
        """Return the instance directory of the active fixture."""
        if self.fixture is None:
            msg = f"{self.name!r} has no active fixture"
            raise ProbeError(msg)
        return self.fixture.instance_path

    @property
    def last_result(self) -> ProcessResult:
        """Return the result of the most recent command."""
        if self._last_result is None:
            msg = f"{self.name!r} has not run a command yet"
            raise ProbeError(msg)
        return self._last_result

    def command(self, *args: str) -> str:
        """Build ``<binary> <args...>`` with the arguments shell-quoted."""
        if not args:
            return self.binary
        return f"{self.binary} {shlex.join(args)}"

    def run(
        self,
        command: str,
        *,
        env: cabc.Mapping[str, str] | None = None,
        tolerate_nonzero_exit: bool = False,
        timeout: float | None = None,
    ) -> ProcessResult:
        """Run a shell command inside the fixture and remember the result."""
        result = self._runner.run(
            command,
            cwd=self.workdir,
            env=env,
            tolerate_nonzero_exit=tolerate_nonzero_exit,
            timeout=timeout,
        )
        self._last_result = result
        return result

    def run_tool(
        self,
        *args: str,
        env: cabc.Mapping[str, str] | None = None,
        tolerate_nonzero_exit: bool = False,
        timeout: float | None = None,
    ) -> ProcessResult:
        """Run the tool binary with ``args`` inside the fixture."""
        return self.run(
            self.command(*args),
            env=env,
            tolerate_nonzero_exit=tolerate_nonzero_exit,
            timeout=timeout,
        )

    def expect_exit_code(
        self, expected: int, result: ProcessResult | None = None
    ) -> None:
        """Assert the exit code of ``result`` (default: the last result)."""
        assertions.assert_exit_code(result or self.last_result, expected)
        self.assertion_count += 1

    def expect_match(
        self,
        pattern: str,
        *,
        stream: str = "stdout",
        result: ProcessResult | None = None,
        message: str | None = None,
    ) -> None:
        """Assert that ``pattern`` occurs in the chosen output stream."""
        text = (result or self.last_result).stream(stream)
        assertions.assert_matches(text, pattern, True, label=stream, message=message)
        self.assertion_count += 1

    def expect_no_match(
        self,
        pattern: str,
        *,
        stream: str = "stdout",
        result: ProcessResult | None = None,
        message: str | None = None,
    ) -> None:
        """Assert that ``pattern`` does not occur in the chosen output stream."""
        text = (result or self.last_result).stream(stream)
        assertions.assert_not_matches(text, pattern, label=stream, message=message)
        self.assertion_count += 1

    def expect_count(
        self,
        pattern: str,
        *,
        stream: str = "stdout",
        result: ProcessResult | None = None,
    ) -> int:
        """Assert that ``pattern`` captures a number and return it."""
        text = (result or self.last_result).stream(stream)
        count = assertions.extract_count(text, pattern, label=stream)
        self.assertion_count += 1
        return count

    def expect_counts(
        self,
        pattern: str,
        *,
        stream: str = "stdout",
        result: ProcessResult | None = None,
    ) -> list[int]:
        """Assert that ``pattern`` captures at least one number; return all."""
        text = (result or self.last_result).stream(stream)
        counts = assertions.extract_counts(text, pattern, label=stream)
        self.assertion_count += 1
        return counts

    def expect_equal(self, actual: object, expected: object, *, label: str) -> None:
        """Assert two observed values are equal."""
        assertions.assert_equal(actual, expected, label=label)
        self.assertion_count += 1

    def expect_path(self, relative: str) -> Path:
        """Assert a path exists inside the fixture and return it."""
        path = self.workdir / relative
        assertions.assert_path_exists(path)
        self.assertion_count += 1
        return path


@dataclasses.dataclass(frozen=True, slots=True)
class ScenarioOutcome:
    """Terminal record for one scenario."""

    path: tuple[str, ...]
    state: NodeState
    duration: float = 0.0
    error: str | None = None
    detail: str | None = None

    @property
    def name(self) -> str:
        """Return the scenario path joined for display."""
        return PATH_SEPARATOR.join(self.path)


@dataclasses.dataclass(frozen=True, slots=True)
class GroupError:
    """A failure raised by a group's setup, teardown or fixture release."""

    path: tuple[str, ...]
    phase: str
    error: str
    detail: str

    @property
    def name(self) -> str:
        """Return the group path joined for display."""
        return PATH_SEPARATOR.join(self.path)


@dataclasses.dataclass
class RunReport:
    """Ordered outcomes of one suite run."""

    outcomes: list[ScenarioOutcome] = dataclasses.field(default_factory=list)
    group_errors: list[GroupError] = dataclasses.field(default_factory=list)

    def count(self, state: NodeState) -> int:
        """Return how many scenarios ended in ``state``."""
        return sum(1 for outcome in self.outcomes if outcome.state is state)

    @property
    def passed(self) -> int:
        """Number of passed scenarios."""
        return self.count(NodeState.PASSED)

    @property
    def failed(self) -> int:
        """Number of failed scenarios."""
        return self.count(NodeState.FAILED)

    @property
    def skipped(self) -> int:
        """Number of skipped scenarios."""
        return self.count(NodeState.SKIPPED)

    @property
    def ok(self) -> bool:
        """Return True when nothing failed."""
        return self.failed == 0 and not self.group_errors

    def failures(self) -> list[ScenarioOutcome]:
        """Return the failed outcomes in run order."""
        return [o for o in self.outcomes if o.state is NodeState.FAILED]

    def outcome(self, *path: str) -> ScenarioOutcome:
        """Look up the outcome recorded for ``path``."""
        for candidate in self.outcomes:
            if candidate.path == path:
                return candidate
        msg = f"no outcome recorded for {PATH_SEPARATOR.join(path)!r}"
        raise KeyError(msg)


class _Tracker:
    """Enforce the scenario state machine and time the running phase."""

    def __init__(self, path: tuple[str, ...]) -> None:
        self.path = path
        self.state = NodeState.PENDING
        self._started = 0.0

    def _advance(self, target: NodeState) -> None:
        if target not in _TRANSITIONS.get(self.state, frozenset()):
            msg = f"invalid transition {self.state} -> {target} for {self.path}"
            raise ProbeError(msg)
        self.state = target

    def start(self) -> None:
        self._advance(NodeState.RUNNING)
        self._started = time.monotonic()

    def skip(self, detail: str) -> ScenarioOutcome:
        self._advance(NodeState.SKIPPED)
        return ScenarioOutcome(self.path, self.state, detail=detail)

    def finish(self, error: BaseException | None) -> ScenarioOutcome:
        duration = time.monotonic() - self._started
        if error is None:
            self._advance(NodeState.PASSED)
            return ScenarioOutcome(self.path, self.state, duration)
        self._advance(NodeState.FAILED)
        return ScenarioOutcome(
            self.path,
            self.state,
            duration,
            error=type(error).__name__,
            detail=str(error),
        )


class _GroupAbortedError(Exception):
    """Unwind to ``owner`` so the rest of its subtree is not run."""

    def __init__(self, owner: ScenarioGroup, cause: BaseException) -> None:
        super().__init__(str(cause))
        self.owner = owner
        self.cause = cause


@dataclasses.dataclass(frozen=True, slots=True)
class _Scope:
    fixture: Fixture | None
    groups: tuple[ScenarioGroup, ...] = ()


def _summarise(error: BaseException) -> str:
    first_line = str(error).splitlines()[0] if str(error) else ""
    return f"{type(error).__name__}: {first_line}".rstrip(": ")


class SuiteRunner:
    """Interpret a scenario tree sequentially and collect a ``RunReport``."""

    def __init__(
        self,
        fixtures: FixtureManager,
        runner: ProcessRunner,
        *,
        binary: str,
    ) -> None:
        """Bind the fixture manager, process runner and tool binary."""
        self.fixtures = fixtures
        self.runner = runner
        self.binary = binary

    def run(
        self,
        root: ScenarioGroup,
        *,
        fixture: Fixture | None = None,
        select: str | None = None,
    ) -> RunReport:
        """Run every scenario under ``root`` and return the report.

        ``fixture`` seeds the scope with an already acquired fixture; the
        caller stays responsible for releasing it. ``select`` keeps only
        scenarios whose joined path contains the keyword (case-insensitive).
        """
        report = RunReport()
        keyword = select.lower() if select else None
        self._run_group(root, _Scope(fixture=fixture), report, keyword)
        _logger.info(
            "run finished: %d passed, %d failed, %d skipped",
            report.passed,
            report.failed,
            report.skipped,
        )
        return report

    def _context(self, scope: _Scope, path: tuple[str, ...]) -> ExecutionContext:
        return ExecutionContext(
            runner=self.runner,
            binary=self.binary,
            fixture=scope.fixture,
            name=PATH_SEPARATOR.join(path),
        )

    def _run_group(
        self,
        group: ScenarioGroup,
        scope: _Scope,
        report: RunReport,
        keyword: str | None,
    ) -> None:
        if not any(_selected(s, keyword) for s in group.walk()):
            return
        if group.skip_if is not None and group.skip_if():
            _logger.info("skipping group %s", PATH_SEPARATOR.join(group.path))
            _skip_subtree(group, report, keyword, SKIPPED_BY_PREDICATE)
            return

        release_failures: list[Exception] = []
        with contextlib.ExitStack() as stack:
            stack.callback(
                _record_release_failures, group, release_failures, report
            )
            try:
                fixture = scope.fixture
                if group.fixture:
                    fixture = stack.enter_context(
                        self._use_fixture(group.fixture, release_failures)
                    )
                inner = _Scope(fixture=fixture, groups=(*scope.groups, group))
                context = self._context(inner, group.path)
                stack.callback(self._teardown, group, context, report)
                for hook in group.setup:
                    hook(context)
            except Exception as error:  # noqa: BLE001 - recorded in the report
                _logger.warning(
                    "setup of %s failed: %s",
                    PATH_SEPARATOR.join(group.path),
                    _summarise(error),
                )
                report.group_errors.append(
                    GroupError(group.path, "setup", type(error).__name__, str(error))
                )
                _skip_subtree(
                    group, report, keyword, f"aborted: {_summarise(error)}"
                )
                return

            for index, child in enumerate(group.children):
                try:
                    if isinstance(child, ScenarioGroup):
                        self._run_group(child, inner, report, keyword)
                    else:
                        self._run_scenario(child, inner, report, keyword)
                except _GroupAbortedError as abort:
                    detail = f"aborted: {_summarise(abort.cause)}"
                    for later in group.children[index + 1 :]:
                        _skip_node(later, report, keyword, detail)
                    if abort.owner is not group:
                        raise
                    _logger.warning(
                        "aborted the rest of %s", PATH_SEPARATOR.join(group.path)
                    )
                    break

    @contextlib.contextmanager
    def _use_fixture(
        self, name: str, failures: list[Exception]
    ) -> cabc.Iterator[Fixture]:
        """Acquire ``name`` and collect, rather than raise, release failures."""
        fixture = self.fixtures.acquire(name)
        try:
            yield fixture
        finally:
            try:
                self.fixtures.release(fixture)
            except Exception as error:  # noqa: BLE001 - recorded in the report
                _logger.warning(
                    "could not release fixture %r: %s", name, _summarise(error)
                )
                failures.append(error)

    def _teardown(
        self,
        group: ScenarioGroup,
        context: ExecutionContext,
        report: RunReport,
    ) -> None:
        for hook in group.teardown:
            try:
                hook(context)
            except Exception as error:  # noqa: BLE001 - recorded in the report
                _logger.warning(
                    "teardown of %s failed: %s",
                    PATH_SEPARATOR.join(group.path),
                    _summarise(error),
                )
                report.group_errors.append(
                    GroupError(
                        group.path, "teardown", type(error).__name__, str(error)
                    )
                )

    def _run_scenario(
        self,
        scenario: Scenario,
        scope: _Scope,
        report: RunReport,
        keyword: str | None,
    ) -> None:
        if not _selected(scenario, keyword):
            return
        tracker = _Tracker(scenario.path)
        if scenario.skip_if is not None and scenario.skip_if():
            report.outcomes.append(tracker.skip(SKIPPED_BY_PREDICATE))
            return

        tracker.start()
        error, abort_owner = self._execute(scenario, scope)
        outcome = tracker.finish(error)
        report.outcomes.append(outcome)
        if error is None:
            _logger.info("passed: %s", outcome.name)
        else:
            _logger.info("failed: %s (%s)", outcome.name, outcome.error)
        if error is not None and abort_owner is not None:
            raise _GroupAbortedError(abort_owner, error)

    def _execute(
        self,
        scenario: Scenario,
        scope: _Scope,
    ) -> tuple[BaseException | None, ScenarioGroup | None]:
        """Run hooks and body; return the first error and the group to abort."""
        enclosing = scope.groups[-1] if scope.groups else None
        release_failures: list[Exception] = []
        with contextlib.ExitStack() as stack:
            fixture = scope.fixture
            if scenario.fixture:
                try:
                    fixture = stack.enter_context(
                        self._use_fixture(scenario.fixture, release_failures)
                    )
                except Exception as error:  # noqa: BLE001 - recorded in the report
                    owner = enclosing if isinstance(error, SETUP_FAILURES) else None
                    return error, owner

            context = self._context(_Scope(fixture, scope.groups), scenario.path)
            error: BaseException | None = None
            abort_owner: ScenarioGroup | None = None
            entered: list[ScenarioGroup] = []
            try:
                for group in scope.groups:
                    entered.append(group)
                    for hook in group.before_each:
                        hook(context)
            except Exception as hook_error:  # noqa: BLE001 - recorded in the report
                error, abort_owner = hook_error, entered[-1]
            else:
                error = self._run_body(scenario, context)
                if isinstance(error, SETUP_FAILURES):
                    abort_owner = enclosing

            for group in reversed(entered):
                for hook in group.after_each:
                    try:
                        hook(context)
                    except Exception as hook_error:  # noqa: BLE001 - first error wins
                        _logger.debug("after_each hook failed", exc_info=True)
                        error = error or hook_error
        if release_failures and error is None:
            error = release_failures[0]
        return error, abort_owner

    @staticmethod
    def _run_body(
        scenario: Scenario, context: ExecutionContext
    ) -> BaseException | None:
        try:
            scenario.body(context)
        except Exception as error:  # noqa: BLE001 - recorded in the report
            _logger.debug("scenario body raised", exc_info=True)
            return error
        if context.assertion_count == 0:
            return NoAssertionsError(scenario.description)
        return None


def _record_release_failures(
    group: ScenarioGroup, failures: list[Exception], report: RunReport
) -> None:
    report.group_errors.extend(
        GroupError(group.path, "release", type(error).__name__, str(error))
        for error in failures
    )


def _selected(scenario: Scenario, keyword: str | None) -> bool:
    if keyword is None:
        return True
    return keyword in PATH_SEPARATOR.join(scenario.path).lower()


def _skip_subtree(
    group: ScenarioGroup,
    report: RunReport,
    keyword: str | None,
    detail: str,
) -> None:
    for scenario in group.walk():
        if _selected(scenario, keyword):
            report.outcomes.append(_Tracker(scenario.path).skip(detail))


def _skip_node(
    node: Scenario | ScenarioGroup,
    report: RunReport,
    keyword: str | None,
    detail: str,
) -> None:
    if isinstance(node, ScenarioGroup):
        _skip_subtree(node, report, keyword, detail)
    elif _selected(node, keyword):
        report.outcomes.append(_Tracker(node.path).skip(detail))
