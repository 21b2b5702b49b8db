"""Dependency entity model and its TOML representation."""

import re
from dataclasses import dataclass, fields, replace
from typing import Any, Union

import tomlkit
from tomlkit.items import Item

from .errors import ConflictError, ParseError
from .models import DependencyKind, DependencyTable

CRATE_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")

# Keys that describe where a dependency comes from; replaced as a group on merge.
SOURCE_KEYS = ("version", "path", "git", "branch", "tag", "rev")


@dataclass(frozen=True)
class RegistrySource:
    requirement: str


@dataclass(frozen=True)
class GitSource:
    url: str
    branch: str | None = None
    tag: str | None = None
    rev: str | None = None
    version: str | None = None


@dataclass(frozen=True)
class PathSource:
    path: str
    version: str | None = None


DependencySource = Union[RegistrySource, GitSource, PathSource]


@dataclass(frozen=True)
class Dependency:
    """One dependency entry.

    The key it occupies in a table is ``rename`` when present, else ``name``.
    """

    name: str
    source: DependencySource
    optional: bool = False
    rename: str | None = None
    default_features: bool | None = None
    features: tuple[str, ...] | None = None

    @property
    def key(self) -> str:
        return self.rename or self.name

    @property
    def requirement(self) -> str | None:
        """Version requirement regardless of source kind, if any."""
        if isinstance(self.source, RegistrySource):
            return self.source.requirement
        return self.source.version

    @property
    def is_registry(self) -> bool:
        return isinstance(self.source, RegistrySource)

    @classmethod
    def from_toml(cls, key: str, item: Any) -> "Dependency":
        """Read a dependency from its manifest key and value.

        Raises:
            ParseError: If the value is neither a string nor a table with a
                version, path or git source
        """
        value = _plain(item)
        if isinstance(value, str):
            return cls(name=key, source=RegistrySource(value))
        if not isinstance(value, dict):
            raise ParseError(f"Dependency '{key}' is neither a string nor a table")

        if "git" in value:
            source: DependencySource = GitSource(
                url=value["git"],
                branch=value.get("branch"),
                tag=value.get("tag"),
                rev=value.get("rev"),
                version=value.get("version"),
            )
        elif "path" in value:
            source = PathSource(path=value["path"], version=value.get("version"))
        elif "version" in value:
            source = RegistrySource(value["version"])
        else:
            raise ParseError(f"Dependency '{key}' has no version, path or git source")

        package = value.get("package")
        default_features = value.get("default-features", value.get("default_features"))
        features = value.get("features")
        return cls(
            name=package or key,
            source=source,
            optional=bool(value.get("optional", False)),
            rename=key if package else None,
            default_features=default_features,
            features=tuple(features) if features is not None else None,
        )


@dataclass(frozen=True)
class DependencyUpdate:
    """A partial Dependency: ``None`` means "keep the existing value"."""

    source: DependencySource | None = None
    optional: bool | None = None
    rename: str | None = None
    default_features: bool | None = None
    features: tuple[str, ...] | None = None

    @classmethod
    def from_dependency(cls, dep: Dependency) -> "DependencyUpdate":
        return cls(
            source=dep.source,
            optional=dep.optional or None,
            rename=dep.rename,
            default_features=dep.default_features,
            features=dep.features,
        )


def _plain(item: Any) -> Any:
    return item.unwrap() if isinstance(item, Item) else item


def validate_crate_name(name: str) -> str:
    """Check a crate identifier, returning it unchanged."""
    if not name or not CRATE_NAME_RE.match(name):
        raise ParseError(f"Invalid crate name '{name}'")
    return name


def validate_for_table(dep: Dependency, table: DependencyTable) -> None:
    """Reject combinations Cargo does not allow before anything is written."""
    if table.kind is DependencyKind.NORMAL:
        return
    if dep.optional:
        raise ConflictError(f"'{dep.name}': {table.kind.value} cannot be optional")
    if table.target:
        raise ConflictError(
            f"'{dep.name}': {table.kind.value} cannot be scoped to target '{table.target}'"
        )


def merge(existing: Dependency, requested: DependencyUpdate) -> Dependency:
    """Overlay the fields present in ``requested`` onto ``existing``."""
    changes = {
        f.name: getattr(requested, f.name)
        for f in fields(requested)
        if getattr(requested, f.name) is not None
    }
    return replace(existing, **changes)


def _source_entries(source: DependencySource) -> list[tuple[str, str]]:
    if isinstance(source, RegistrySource):
        return [("version", source.requirement)]
    if isinstance(source, PathSource):
        entries = [("version", source.version)] if source.version else []
        return entries + [("path", source.path)]
    if isinstance(source, GitSource):
        entries = [("version", source.version)] if source.version else []
        entries.append(("git", source.url))
        for ref in ("branch", "tag", "rev"):
            value = getattr(source, ref)
            if value:
                entries.append((ref, value))
        return entries
    raise TypeError(f"Unknown dependency source {source!r}")


def toml_entries(dep: Dependency) -> list[tuple[str, Any]]:
    """Key/value pairs of the detailed form, in canonical order."""
    entries: list[tuple[str, Any]] = list(_source_entries(dep.source))
    if dep.rename:
        entries.append(("package", dep.name))
    if dep.default_features is False:
        entries.append(("default-features", False))
    if dep.features:
        entries.append(("features", list(dep.features)))
    if dep.optional:
        entries.append(("optional", True))
    return entries


def is_minimal(dep: Dependency) -> bool:
    """True when the dependency can be written as a bare requirement string."""
    return (
        isinstance(dep.source, RegistrySource)
        and not dep.optional
        and not dep.rename
        and dep.default_features is not False
        and not dep.features
    )


def to_toml_value(dep: Dependency) -> Any:
    """Bare string for registry-only dependencies, inline table otherwise."""
    if is_minimal(dep):
        return tomlkit.string(dep.source.requirement)

    table = tomlkit.inline_table()
    for key, value in toml_entries(dep):
        table[key] = value
    return table
