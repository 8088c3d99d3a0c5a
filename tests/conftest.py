"""Shared pytest fixtures for toolprobe tests."""

from __future__ import annotations

import dataclasses
import os
import pathlib
import shlex
import sys
import textwrap

import pytest

from toolprobe.config import FixtureSource, SuiteConfig
from toolprobe.matrix import CommandMatrix, CommandMatrixEntry

SAMPLE_ENV = "FAKE_TOOL_CREATE_SAMPLE_WITH_DEFAULTS"

FAKE_TOOL = textwrap.dedent(
    """
    import os
    import pathlib
    import shutil
    import sys

    ARGS = sys.argv[1:]
    CWD = pathlib.Path.cwd()
    FENCE = "`" * 3
    README = "\\n".join(
        [
            "# Sample project",
            "",
            "Try running some of the following tasks:",
            "",
            FENCE + "shell",
            "npx hardhat accounts",
            "npx hardhat compile",
            "npx hardhat test",
            FENCE,
            "",
        ]
    )

    LOG = os.environ.get("FAKE_TOOL_LOG")
    if LOG:
        with open(LOG, "a", encoding="utf-8") as handle:
            handle.write(" ".join(ARGS) + "\\n")

    if ARGS == ["--version"]:
        print("2.9.9")
        raise SystemExit(0)

    if not ARGS:
        if os.environ.get("FAKE_TOOL_CREATE_SAMPLE_WITH_DEFAULTS") == "true":
            (CWD / "hardhat.config.js").write_text("module.exports = {};\\n")
            (CWD / "contracts").mkdir(exist_ok=True)
            (CWD / "contracts" / "Greeter.sol").write_text("contract Greeter {}\\n")
            (CWD / "README.md").write_text(README)
            print("Project created")
        else:
            print("Usage: fake-tool <task>")
        raise SystemExit(0)

    if not (CWD / "hardhat.config.js").exists():
        print("Error HH1: You are not inside a Hardhat project.", file=sys.stderr)
        raise SystemExit(1)

    TASK, REST = ARGS[0], ARGS[1:]
    if TASK == "clean":
        shutil.rmtree(CWD / "artifacts", ignore_errors=True)
    elif TASK == "compile":
        sources = [p for p in CWD.glob("contracts/**/*.sol") if p.is_file()]
        (CWD / "artifacts").mkdir(exist_ok=True)
        reported = len(sources) + int(os.environ.get("FAKE_TOOL_COMPILED_OFFSET", "0"))
        noun = "file" if reported == 1 else "files"
        print(f"Compiled {reported} Solidity {noun} successfully")
    elif TASK == "test":
        for name in [arg for arg in REST if not arg.startswith("--")]:
            if not (CWD / name).is_file():
                print(f"Error HH601: Script {name} doesn't exist.", file=sys.stderr)
                raise SystemExit(1)
        parallel = "--parallel" in REST
        if parallel and os.environ.get("FAKE_TOOL_STALE_PARALLEL"):
            print("  0 passing")
        elif parallel and os.environ.get("FAKE_TOOL_PARALLEL_COUNT"):
            print(f"  {os.environ['FAKE_TOOL_PARALLEL_COUNT']} passing (9ms)")
        else:
            print("  2 passing (12ms)")
    elif TASK == "run":
        if not REST or not (CWD / REST[0]).is_file():
            print("Error HH601: Script doesn't exist.", file=sys.stderr)
            raise SystemExit(1)
        print("  2 passing (10ms)")
        print("  0 passing" if os.environ.get("FAKE_TOOL_STALE_RUN") else "  2 passing")
    elif TASK == "accounts":
        print("0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266")
    else:
        print(f"Error HH303: Unrecognized task {TASK}", file=sys.stderr)
        raise SystemExit(1)
    """
)


@dataclasses.dataclass(slots=True)
class FakeTool:
    """Location of the fake tool script and its invocation log."""

    path: pathlib.Path
    log: pathlib.Path

    @property
    def binary(self) -> str:
        """Return the shell fragment that invokes the fake tool."""
        return shlex.quote(str(self.path))

    def invocations(self) -> list[str]:
        """Return the argument lines the fake tool has recorded."""
        if not self.log.exists():
            return []
        return self.log.read_text(encoding="utf-8").splitlines()


@pytest.fixture
def fake_tool(tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> FakeTool:
    """Write a stand-in for the build tool and put it on PATH."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / "fake-tool"
    script.write_text("#!" + sys.executable + "\n" + FAKE_TOOL, encoding="utf-8")
    script.chmod(0o755)
    log_path = tmp_path / "fake-tool.log"
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    monkeypatch.setenv("FAKE_TOOL_LOG", str(log_path))
    monkeypatch.delenv(SAMPLE_ENV, raising=False)
    monkeypatch.delenv("FAKE_TOOL_STALE_PARALLEL", raising=False)
    monkeypatch.delenv("FAKE_TOOL_STALE_RUN", raising=False)
    monkeypatch.delenv("FAKE_TOOL_PARALLEL_COUNT", raising=False)
    monkeypatch.delenv("FAKE_TOOL_COMPILED_OFFSET", raising=False)
    return FakeTool(path=script, log=log_path)


def _write(root: pathlib.Path, relative: str, content: str) -> None:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


@pytest.fixture
def templates(tmp_path: pathlib.Path) -> pathlib.Path:
    """Create fixture templates: a basic project, an empty dir and a sample."""
    root = tmp_path / "fixture-projects"
    basic = root / "basic-project"
    _write(basic, "hardhat.config.js", "module.exports = {};\n")
    _write(basic, "contracts/Greeter.sol", "contract Greeter {}\n")
    _write(basic, "contracts/lib/Math.sol", "library Math {}\n")
    _write(basic, "scripts/multi-run-test.js", "// runs the tests twice\n")
    _write(basic, "test/simple.js", "// two passing tests\n")
    (root / "empty").mkdir(parents=True)
    _write(root / "sample-project", "package.json", "{}\n")
    return root


@pytest.fixture
def sample_matrix() -> CommandMatrix:
    """Return a matrix that generates a sample project and exercises it."""
    return CommandMatrix(
        name="sample project",
        fixture="sample-project",
        entries=(
            CommandMatrixEntry.suggested("{binary} accounts"),
            CommandMatrixEntry.suggested("{binary} compile"),
            CommandMatrixEntry.suggested("{binary} test"),
        ),
        generate_env={SAMPLE_ENV: "true"},
        readme="README.md",
        documented_prefix="npx hardhat",
    )


@pytest.fixture
def suite_config(
    tmp_path: pathlib.Path,
    fake_tool: FakeTool,
    templates: pathlib.Path,
    sample_matrix: CommandMatrix,
) -> SuiteConfig:
    """Return a suite configuration pointing at the fake tool."""
    return SuiteConfig(
        fixtures=FixtureSource(root=templates),
        binary=fake_tool.binary,
        timeout=60.0,
        temp_root=tmp_path / "instances",
        sample_skip_on=(),
        matrices=(sample_matrix,),
    )

