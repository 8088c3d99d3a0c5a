"""Isolated working copies of fixture project templates."""

from __future__ import annotations

import contextlib
import dataclasses
import logging
import shutil
import tempfile
import typing as typ
from pathlib import Path

from .errors import FixtureNotFoundError

if typ.TYPE_CHECKING:
    import collections.abc as cabc

_logger = logging.getLogger(__name__)

INSTANCE_PREFIX = "toolprobe-"


@dataclasses.dataclass(frozen=True, slots=True)
class Fixture:
    """A named template and the private copy made from it."""

    name: str
    template_path: Path
    instance_path: Path


class FixtureManager:
    """Copy fixture templates into fresh directories and remove them again."""

    def __init__(self, template_root: Path, *, temp_root: Path | None = None) -> None:
        """Configure where templates live and where instances are created."""
        self.template_root = Path(template_root)
        self.temp_root = Path(temp_root) if temp_root is not None else None

    def template_path(self, name: str) -> Path:
        """Return the template directory for ``name`` or raise if absent."""
        candidate = (self.template_root / name).resolve()
        root = self.template_root.resolve()
        if not name or not candidate.is_relative_to(root) or candidate == root:
            raise FixtureNotFoundError(name, self.template_root)
        if not candidate.is_dir():
            raise FixtureNotFoundError(name, self.template_root)
        return candidate

    def available(self) -> list[str]:
        """Return the names of every template directory, sorted."""
        if not self.template_root.is_dir():
            return []
        return sorted(
            entry.name for entry in self.template_root.iterdir() if entry.is_dir()
        )

    def acquire(self, name: str) -> Fixture:
        """Copy the template ``name`` into a uniquely named directory."""
        template = self.template_path(name)
        if self.temp_root is not None:
            self.temp_root.mkdir(parents=True, exist_ok=True)
        instance = Path(
            tempfile.mkdtemp(
                prefix=f"{INSTANCE_PREFIX}{_slug(name)}-",
                dir=self.temp_root,
            )
        )
        try:
            shutil.copytree(template, instance, symlinks=True, dirs_exist_ok=True)
        except OSError:
            shutil.rmtree(instance, ignore_errors=True)
            raise
        _logger.debug("acquired fixture %r at %s", name, instance)
        return Fixture(name=name, template_path=template, instance_path=instance)

    def release(self, fixture: Fixture) -> None:
        """Delete the fixture instance; releasing twice is a no-op."""
        instance = fixture.instance_path
        if not instance.exists():
            return
        shutil.rmtree(instance)
        _logger.debug("released fixture %r from %s", fixture.name, instance)

    @contextlib.contextmanager
    def use(self, name: str) -> cabc.Iterator[Fixture]:
        """Yield a fresh fixture instance that is removed on every exit path."""
        fixture = self.acquire(name)
        try:
            yield fixture
        finally:
            self.release(fixture)


def _slug(name: str) -> str:
    cleaned = "".join(char if char.isalnum() else "-" for char in name)
    return cleaned.strip("-") or "fixture"
