"""
Dependency entries and the tables they are written to.

A dependency has exactly one source: a registry requirement, a git
repository or a local path. Its kind and optional target select the
manifest table it lives in.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

from .manifest import TomlValue, inline_table


@dataclass(frozen=True)
class RegistrySource:
    """A version requirement resolved against the package registry."""

    requirement: str

    kind = "registry"


@dataclass(frozen=True)
class GitSource:
    """A dependency fetched from a git repository."""

    url: str

    kind = "git"


@dataclass(frozen=True)
class PathSource:
    """A dependency on a crate in the local filesystem."""

    path: str

    kind = "path"


DependencySource = Union[RegistrySource, GitSource, PathSource]


@dataclass(frozen=True)
class Dependency:
    """A single dependency entry to be written to a manifest."""

    name: str
    source: DependencySource
    optional: bool = False

    def to_toml(self) -> TomlValue:
        """
        Render the entry the way it is stored in the manifest.

        A plain registry requirement is stored as a bare string; anything
        else becomes an inline table with `optional` only when it is set.
        """
        if isinstance(self.source, RegistrySource) and not self.optional:
            return self.source.requirement

        table = inline_table()
        if isinstance(self.source, RegistrySource):
            table["version"] = self.source.requirement
        elif isinstance(self.source, GitSource):
            table["git"] = self.source.url
        else:
            table["path"] = self.source.path
        if self.optional:
            table["optional"] = True
        return table


class DependencyKind(Enum):
    """Which dependency table an entry belongs to."""

    NORMAL = "dependencies"
    DEV = "dev-dependencies"
    BUILD = "build-dependencies"

    @classmethod
    def from_flags(cls, dev: bool = False, build: bool = False) -> "DependencyKind":
        if dev:
            return cls.DEV
        if build:
            return cls.BUILD
        return cls.NORMAL


def dependency_table_path(
    kind: DependencyKind, target: Optional[str] = None
) -> Tuple[str, ...]:
    """
    Map a dependency kind and optional target to a table path.

    The target is kept as a single opaque segment, so "cfg(unix)" or
    "x86_64/windows.json" are never split.
    """
    if target is None:
        return (kind.value,)
    return ("target", target, kind.value)


def format_table_path(path: Tuple[str, ...]) -> str:
    """Render a table path as a TOML header key, quoting where needed."""
    return ".".join(
        segment if segment.replace("-", "").replace("_", "").isalnum()
        else '"' + segment.replace("\\", "\\\\").replace('"', '\\"') + '"'
        for segment in path
    )
