"""Unit tests for the toolprobe command line."""

from __future__ import annotations

import textwrap
import typing as typ

import pytest

from toolprobe import cli

if typ.TYPE_CHECKING:
    from pathlib import Path

    from tests.conftest import FakeTool


@pytest.fixture
def manifest(tmp_path: Path, templates: Path, fake_tool: FakeTool) -> Path:
    """Write a manifest pointing at the fake tool and the test templates."""
    path = tmp_path / "toolprobe.yaml"
    path.write_text(
        textwrap.dedent(
            f"""
            binary: {fake_tool.binary}
            timeout: 60
            temp_root: instances
            fixtures:
              root: {templates}
            sample_projects:
              skip_on: []
              matrices:
                - name: sample project
                  fixture: sample-project
                  generate_env:
                    FAKE_TOOL_CREATE_SAMPLE_WITH_DEFAULTS: "true"
                  commands:
                    - "{{binary}} accounts"
                    - "{{binary}} compile"
                    - "{{binary}} test"
            """
        ),
        encoding="utf-8",
    )
    return path


def test_run_reports_and_exits_zero(
    manifest: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    """A conforming tool yields a clean report and exit code zero."""
    exit_code = cli.main(["run", "--manifest", str(manifest)])

    output = capsys.readouterr().out
    assert exit_code == 0
    assert "PASS  conformance > basic project > should compile" in output
    assert output.rstrip().endswith("10 passed, 0 failed, 0 skipped")


def test_run_exits_one_on_failure(
    manifest: Path,
    capsys: pytest.CaptureFixture[str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Failures are listed with their details and the exit code is one."""
    monkeypatch.setenv("FAKE_TOOL_STALE_PARALLEL", "1")

    exit_code = cli.main(
        ["run", "--manifest", str(manifest), "--select", "tests in parallel"]
    )

    output = capsys.readouterr().out
    assert exit_code == 1
    assert "Failures:" in output
    assert "potential caching issue" in output
    assert "0 passed, 1 failed, 0 skipped" in output


def test_binary_flag_overrides_the_manifest(
    manifest: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    """A binary that cannot be launched aborts the affected groups."""
    exit_code = cli.main(
        [
            "run",
            "--manifest",
            str(manifest),
            "--binary",
            "toolprobe-definitely-not-installed",
            "--select",
            "no project",
        ]
    )

    output = capsys.readouterr().out
    assert exit_code == 1
    assert "LaunchFailedError" in output
    assert "aborted: LaunchFailedError" in output


def test_list_prints_the_tree(
    manifest: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    """The tree shows groups, fixtures and scenarios without running them."""
    exit_code = cli.main(["list", "--manifest", str(manifest)])

    lines = capsys.readouterr().out.splitlines()
    assert exit_code == 0
    assert lines[0] == "conformance"
    assert "  basic project [fixture: basic-project]" in lines
    assert "    - should run tests in parallel" in lines
    assert "  sample projects" in lines


def test_fixtures_lists_templates(
    manifest: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    """Every template directory is printed on its own line."""
    exit_code = cli.main(["fixtures", "--manifest", str(manifest)])

    assert exit_code == 0
    assert capsys.readouterr().out.splitlines() == [
        "basic-project",
        "empty",
        "sample-project",
    ]


def test_drift_reports_differences(
    manifest: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    """Commands only on one side are printed and the exit code is one."""
    readme = tmp_path / "README.md"
    readme.write_text(
        "```shell\nnpx hardhat accounts\nnpx hardhat node\nnpx hardhat test\n```\n",
        encoding="utf-8",
    )

    exit_code = cli.main(["drift", str(readme), "--manifest", str(manifest)])

    output = capsys.readouterr().out.splitlines()
    assert exit_code == 1
    assert output == [
        "tested but not documented: {binary} compile",
        "documented but not tested: {binary} node",
    ]


def test_drift_passes_when_in_sync(
    manifest: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    """A README listing exactly the matrix commands has no drift."""
    readme = tmp_path / "README.md"
    readme.write_text(
        "```sh\nnpx hardhat accounts\nnpx hardhat compile\nnpx hardhat test\n```\n",
        encoding="utf-8",
    )

    exit_code = cli.main(
        [
            "drift",
            str(readme),
            "--matrix",
            "sample project",
            "--manifest",
            str(manifest),
        ]
    )

    assert exit_code == 0
    assert capsys.readouterr().out.strip() == "sample project: no drift"


def test_unknown_matrix_is_a_config_error(
    manifest: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    """Asking for a matrix the manifest lacks fails cleanly."""
    readme = tmp_path / "README.md"
    readme.write_text("", encoding="utf-8")

    exit_code = cli.main(
        ["drift", str(readme), "--matrix", "other", "--manifest", str(manifest)]
    )

    assert exit_code == 1
    assert "Unknown command matrix 'other'" in capsys.readouterr().out


def test_missing_manifest_is_reported(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    """Errors from the harness are printed with the program prefix."""
    exit_code = cli.main(["list", "--manifest", str(tmp_path / "absent.yaml")])

    assert exit_code == 1
    assert capsys.readouterr().out.startswith("toolprobe: Manifest not found")
