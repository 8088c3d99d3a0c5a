"""Suite manifest loading and environment overrides.

The manifest is a YAML file (``toolprobe.yaml`` by default) describing the
tool binary, where fixture templates live, the tool's documented output
patterns, and the command matrices for generated sample projects. Relative
paths are resolved against the manifest's directory. A handful of
``TOOLPROBE_*`` environment variables override the manifest, and CLI flags
override both.
"""

from __future__ import annotations

import dataclasses
import os
import typing as typ
from pathlib import Path

from cyclopts import config as cyclopts_config
from ruamel.yaml import YAML

from .errors import ConfigError
from .matrix import CommandMatrix, CommandMatrixEntry
from .process import DEFAULT_TIMEOUT

if typ.TYPE_CHECKING:
    import collections.abc as cabc

DEFAULT_MANIFEST = Path("toolprobe.yaml")
DEFAULT_BINARY = "node_modules/.bin/hardhat"
DEFAULT_FIXTURES_ROOT = "fixture-projects"
ENV_BINARY = "TOOLPROBE_BINARY"
ENV_FIXTURES = "TOOLPROBE_FIXTURES"
ENV_TIMEOUT = "TOOLPROBE_TIMEOUT"
ENV_TEMP_ROOT = "TOOLPROBE_TEMP_ROOT"
ERROR_MANIFEST_MISSING = "Manifest not found: {path}"
ERROR_NOT_MAPPING = "{where} must be a mapping"
ERROR_NOT_LIST = "{where} must be a list"
ERROR_UNKNOWN_KEYS = "{where} has unknown keys: {keys}"
ERROR_REQUIRED = "{where} must be a non-empty string"
ERROR_NOT_INTEGER = "{where} must be an integer"
ERROR_BAD_TIMEOUT = (
    "timeout must be a positive number of seconds or 'none', got {value!r}"
)

# Profile fields that accept null to switch the related check off.
NULLABLE_PROFILE_FIELDS = frozenset(
    {"expected_passing", "programmatic_script", "documented_prefix"}
)

_yaml = YAML(typ="safe")


class _YamlConfig(cyclopts_config.ConfigFromFile):
    """Cyclopts config provider backed by ruamel.yaml."""

    def _load_config(self, path: Path) -> dict[str, typ.Any]:
        if not path.exists():
            return {}
        with path.open("r", encoding="utf-8") as handle:
            contents = _yaml.load(handle) or {}
        return dict(contents) if isinstance(contents, dict) else {}


@dataclasses.dataclass(frozen=True, slots=True)
class ToolProfile:
    """Subcommands and documented output of the tool under test.

    ``compiled_pattern`` may contain ``{count}``, replaced by the number of
    source files found with ``source_glob`` before compiling.
    """

    version_args: tuple[str, ...] = ("--version",)
    version_pattern: str = r"\A\d+\.\d+\.\d+\n\Z"
    clean_args: tuple[str, ...] = ("clean",)
    compile_args: tuple[str, ...] = ("compile",)
    test_args: tuple[str, ...] = ("test",)
    parallel_args: tuple[str, ...] = ("--parallel",)
    run_args: tuple[str, ...] = ("run",)
    source_glob: str = "contracts/**/*.sol"
    artifacts_dir: str = "artifacts"
    compiled_pattern: str = r"Compiled {count} Solidity files? successfully"
    passing_pattern: str = r"(\d+) passing"
    zero_passing_pattern: str = r"(?<!\d)0 passing"
    expected_passing: int | None = 2
    programmatic_script: str | None = "./scripts/multi-run-test.js"
    test_files: tuple[str, ...] = ("test/simple.js",)
    no_project_exit_code: int = 1
    no_project_patterns: tuple[str, ...] = (r"You are not inside", r"HH15?")
    documented_prefix: str | None = "npx hardhat"


@dataclasses.dataclass(frozen=True, slots=True)
class FixtureSource:
    """Where fixture templates come from."""

    root: Path
    setup: tuple[str, ...] = ()


@dataclasses.dataclass(frozen=True, slots=True)
class SuiteConfig:
    """Everything needed to build and run the conformance suite."""

    fixtures: FixtureSource
    binary: str = DEFAULT_BINARY
    timeout: float | None = DEFAULT_TIMEOUT
    temp_root: Path | None = None
    profile: ToolProfile = dataclasses.field(default_factory=ToolProfile)
    basic_project: str | None = "basic-project"
    empty_project: str | None = "empty"
    sample_skip_on: tuple[str, ...] = ("Windows",)
    matrices: tuple[CommandMatrix, ...] = ()
    manifest_path: Path | None = None


def load_config(
    manifest_path: Path | None = None,
    *,
    env: cabc.Mapping[str, str] | None = None,
) -> SuiteConfig:
    """Load the manifest (if present) and apply environment overrides.

    An explicitly named manifest must exist; the default ``toolprobe.yaml``
    is optional and the built-in defaults apply without it.
    """
    path = manifest_path or DEFAULT_MANIFEST
    if manifest_path is not None and not path.exists():
        raise ConfigError(ERROR_MANIFEST_MISSING.format(path=path))
    provider = _YamlConfig(path=str(path), must_exist=False)
    raw = provider.config or {}
    data = dict(raw) if isinstance(raw, dict) else {}
    base_dir = path.resolve().parent
    config = parse_config(data, base_dir=base_dir)
    config = dataclasses.replace(
        config, manifest_path=path.resolve() if path.exists() else None
    )
    return apply_environment(config, os.environ if env is None else env, base_dir)


def parse_config(data: cabc.Mapping[str, typ.Any], *, base_dir: Path) -> SuiteConfig:
    """Build a ``SuiteConfig`` from already-parsed manifest data."""
    _reject_unknown(
        data,
        {
            "binary",
            "timeout",
            "temp_root",
            "fixtures",
            "profile",
            "basic_project",
            "empty_project",
            "sample_projects",
        },
        "manifest",
    )
    fixtures = _parse_fixtures(data.get("fixtures"), base_dir)
    profile = _parse_profile(data.get("profile"))
    samples = _mapping(data.get("sample_projects"), "sample_projects")
    _reject_unknown(
        samples, {"skip_on", "documented_prefix", "matrices"}, "sample_projects"
    )
    prefix = samples.get("documented_prefix", profile.documented_prefix)
    matrices = tuple(
        _parse_matrix(entry, index, prefix)
        for index, entry in enumerate(_list(samples.get("matrices"), "matrices"))
    )
    temp_root = data.get("temp_root")
    return SuiteConfig(
        fixtures=fixtures,
        binary=str(data.get("binary") or DEFAULT_BINARY),
        timeout=parse_timeout(data.get("timeout", DEFAULT_TIMEOUT)),
        temp_root=_resolve(base_dir, temp_root) if temp_root else None,
        profile=profile,
        basic_project=_optional_str(data.get("basic_project", "basic-project")),
        empty_project=_optional_str(data.get("empty_project", "empty")),
        sample_skip_on=_str_tuple(samples.get("skip_on", ["Windows"]), "skip_on"),
        matrices=matrices,
    )


def apply_environment(
    config: SuiteConfig,
    env: cabc.Mapping[str, str],
    base_dir: Path | None = None,
) -> SuiteConfig:
    """Apply ``TOOLPROBE_*`` overrides from ``env``."""
    base = base_dir or Path.cwd()
    changes: dict[str, typ.Any] = {}
    if binary := env.get(ENV_BINARY, "").strip():
        changes["binary"] = binary
    if timeout := env.get(ENV_TIMEOUT, "").strip():
        changes["timeout"] = parse_timeout(timeout)
    if temp_root := env.get(ENV_TEMP_ROOT, "").strip():
        changes["temp_root"] = _resolve(base, temp_root)
    if fixtures_root := env.get(ENV_FIXTURES, "").strip():
        changes["fixtures"] = dataclasses.replace(
            config.fixtures, root=_resolve(base, fixtures_root)
        )
    return dataclasses.replace(config, **changes) if changes else config


def parse_timeout(value: object) -> float | None:
    """Interpret a timeout setting; ``None``/``"none"`` disables it."""
    if value is None or (isinstance(value, str) and value.lower() == "none"):
        return None
    if isinstance(value, bool):
        raise ConfigError(ERROR_BAD_TIMEOUT.format(value=value))
    try:
        seconds = float(typ.cast("typ.Any", value))
    except (TypeError, ValueError) as error:
        raise ConfigError(ERROR_BAD_TIMEOUT.format(value=value)) from error
    if seconds <= 0:
        raise ConfigError(ERROR_BAD_TIMEOUT.format(value=value))
    return seconds


def _parse_fixtures(raw: object, base_dir: Path) -> FixtureSource:
    data = _mapping(raw, "fixtures")
    _reject_unknown(data, {"root", "setup"}, "fixtures")
    return FixtureSource(
        root=_resolve(base_dir, data.get("root") or DEFAULT_FIXTURES_ROOT),
        setup=_str_tuple(data.get("setup", []), "fixtures.setup"),
    )


def _parse_profile(raw: object) -> ToolProfile:
    data = _mapping(raw, "profile")
    fields = {field.name: field for field in dataclasses.fields(ToolProfile)}
    _reject_unknown(data, set(fields), "profile")
    defaults = ToolProfile()
    values: dict[str, typ.Any] = {}
    for name, value in data.items():
        default = getattr(defaults, name)
        if isinstance(default, tuple):
            values[name] = _str_tuple(value, f"profile.{name}")
        elif name == "expected_passing":
            values[name] = _optional_int(value, f"profile.{name}")
        elif name == "no_project_exit_code":
            values[name] = _required_int(value, f"profile.{name}")
        elif name in NULLABLE_PROFILE_FIELDS:
            values[name] = _optional_str(value)
        else:
            values[name] = _required_str(value, f"profile.{name}")
    return dataclasses.replace(defaults, **values)


def _parse_matrix(raw: object, index: int, prefix: str | None) -> CommandMatrix:
    where = f"matrices[{index}]"
    data = _mapping(raw, where)
    _reject_unknown(
        data,
        {"name", "fixture", "generate_env", "readme", "ignore", "commands"},
        where,
    )
    try:
        name = str(data["name"])
        fixture = str(data["fixture"])
    except KeyError as error:
        msg = f"{where} is missing {error.args[0]!r}"
        raise ConfigError(msg) from error
    generate_env = {
        str(key): _env_value(value)
        for key, value in _mapping(data.get("generate_env"), where).items()
    }
    entries = tuple(
        _parse_entry(entry, f"{where}.commands[{position}]")
        for position, entry in enumerate(_list(data.get("commands"), where))
    )
    readme = data.get("readme")
    return CommandMatrix(
        name=name,
        fixture=fixture,
        entries=entries,
        generate_env=generate_env,
        readme=str(readme) if readme else None,
        documented_prefix=prefix,
        ignore=_str_tuple(data.get("ignore", []), f"{where}.ignore"),
    )


def _parse_entry(raw: object, where: str) -> CommandMatrixEntry:
    if isinstance(raw, str):
        return CommandMatrixEntry.suggested(raw)
    data = _mapping(raw, where)
    _reject_unknown(data, {"label", "command"}, where)
    if "command" not in data:
        msg = f"{where} is missing 'command'"
        raise ConfigError(msg)
    command = str(data["command"])
    if label := data.get("label"):
        return CommandMatrixEntry(label=str(label), command=command)
    return CommandMatrixEntry.suggested(command)


def _env_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _resolve(base_dir: Path, value: object) -> Path:
    path = Path(str(value)).expanduser()
    return path if path.is_absolute() else base_dir / path


def _mapping(raw: object, where: str) -> dict[str, typ.Any]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(ERROR_NOT_MAPPING.format(where=where))
    return dict(raw)


def _list(raw: object, where: str) -> list[typ.Any]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConfigError(ERROR_NOT_LIST.format(where=where))
    return list(raw)


def _str_tuple(raw: object, where: str) -> tuple[str, ...]:
    if isinstance(raw, str):
        return (raw,)
    return tuple(str(item) for item in _list(raw, where))


def _optional_str(raw: object) -> str | None:
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def _required_str(raw: object, where: str) -> str:
    # Patterns are kept verbatim, surrounding whitespace included.
    if raw is None or raw == "":
        raise ConfigError(ERROR_REQUIRED.format(where=where))
    return str(raw)


def _optional_int(raw: object, where: str) -> int | None:
    if raw is None:
        return None
    return _required_int(raw, where)


def _required_int(raw: object, where: str) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ConfigError(ERROR_NOT_INTEGER.format(where=where))
    return raw


def _reject_unknown(
    data: cabc.Mapping[str, typ.Any], known: set[str], where: str
) -> None:
    if unknown := sorted(set(data) - known):
        raise ConfigError(
            ERROR_UNKNOWN_KEYS.format(where=where, keys=", ".join(unknown))
        )
