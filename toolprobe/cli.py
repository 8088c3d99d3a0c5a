"""Command line entry points for the toolprobe harness."""

from __future__ import annotations

import dataclasses
import logging
import sys
import typing as typ
from pathlib import Path  # noqa: TC003 - cyclopts resolves annotations at runtime

from cyclopts import App

from .config import SuiteConfig, load_config, parse_timeout
from .errors import ConfigError, ProbeError
from .fixtures import FixtureManager
from .matrix import find_drift
from .reporting import render_report, render_tree
from .suite import build_suite, run_suite

if typ.TYPE_CHECKING:
    from .matrix import CommandMatrix

app = App(help="Run conformance scenarios against a build tool binary.")

ERROR_README_MISSING = "README not found: {path}"
ERROR_NO_MATRICES = "The manifest does not declare any command matrices."
ERROR_UNKNOWN_MATRIX = "Unknown command matrix {name!r}; choose one of: {names}"
ERROR_MATRIX_REQUIRED = "Several command matrices are declared; pass --matrix."
LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def _configure_logging(*, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


def _load(
    manifest: Path | None,
    *,
    binary: str | None = None,
    fixtures_root: Path | None = None,
    timeout: str | None = None,
) -> SuiteConfig:
    """Load the manifest and apply command-line overrides on top."""
    config = load_config(manifest)
    changes: dict[str, object] = {}
    if binary:
        changes["binary"] = binary
    if timeout is not None:
        changes["timeout"] = parse_timeout(timeout)
    if fixtures_root is not None:
        changes["fixtures"] = dataclasses.replace(
            config.fixtures, root=fixtures_root.resolve()
        )
    return dataclasses.replace(config, **changes) if changes else config


@app.command()
def run(
    *,
    manifest: Path | None = None,
    binary: str | None = None,
    fixtures_root: Path | None = None,
    timeout: str | None = None,
    select: str | None = None,
    echo: bool = False,
    verbose: bool = False,
) -> int:
    """Run the conformance suite and print a report."""
    _configure_logging(verbose=verbose)
    config = _load(
        manifest, binary=binary, fixtures_root=fixtures_root, timeout=timeout
    )
    report = run_suite(config, select=select, echo=sys.stderr if echo else None)
    print(render_report(report))
    return 0 if report.ok else 1


@app.command(name="list")
def list_scenarios(
    *,
    manifest: Path | None = None,
    binary: str | None = None,
) -> None:
    """Print the scenario tree without running anything."""
    config = _load(manifest, binary=binary)
    print(render_tree(build_suite(config)))


@app.command()
def fixtures(
    *,
    manifest: Path | None = None,
    fixtures_root: Path | None = None,
) -> None:
    """List the fixture templates available to the suite."""
    config = _load(manifest, fixtures_root=fixtures_root)
    manager = FixtureManager(config.fixtures.root)
    for name in manager.available():
        print(name)


@app.command()
def drift(
    readme: Path,
    *,
    matrix: str | None = None,
    manifest: Path | None = None,
) -> int:
    """Compare a command matrix with the commands documented in a README."""
    if not readme.is_file():
        raise ConfigError(ERROR_README_MISSING.format(path=readme))
    config = _load(manifest)
    selected = _select_matrix(config, matrix)
    undocumented, untested = find_drift(
        selected, readme.read_text(encoding="utf-8")
    )
    for command in undocumented:
        print(f"tested but not documented: {command}")
    for command in untested:
        print(f"documented but not tested: {command}")
    if undocumented or untested:
        return 1
    print(f"{selected.name}: no drift")
    return 0


def _select_matrix(config: SuiteConfig, name: str | None) -> CommandMatrix:
    if not config.matrices:
        raise ConfigError(ERROR_NO_MATRICES)
    if name is None:
        if len(config.matrices) > 1:
            raise ConfigError(ERROR_MATRIX_REQUIRED)
        return config.matrices[0]
    for candidate in config.matrices:
        if candidate.name == name:
            return candidate
    names = ", ".join(candidate.name for candidate in config.matrices)
    raise ConfigError(ERROR_UNKNOWN_MATRIX.format(name=name, names=names))


def main(argv: list[str] | tuple[str, ...] | None = None) -> int:
    """Entry point for the toolprobe CLI."""
    try:
        result = app(argv)
    except ProbeError as error:
        print(f"toolprobe: {error}")
        return 1
    return int(result or 0)


if __name__ == "__main__":
    raise SystemExit(main())
