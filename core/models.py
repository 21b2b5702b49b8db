"""Core data models for cratefix."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class UpgradeMethod(str, Enum):
    """How much version drift a written requirement permits."""

    EXACT = "exact"  # 1.2.3
    PATCH = "patch"  # ~1.2.3
    MINOR = "minor"  # ^1.2.3
    ALL = "all"  # >=1.2.3


class DependencyKind(str, Enum):
    """Dependency table a crate lives in."""

    NORMAL = "dependencies"
    DEVELOPMENT = "dev-dependencies"
    BUILD = "build-dependencies"


@dataclass(frozen=True)
class DependencyTable:
    """One dependency table of a manifest: a kind, optionally under a target."""

    kind: DependencyKind = DependencyKind.NORMAL
    target: str | None = None

    @property
    def path(self) -> tuple[str, ...]:
        if self.target:
            return ("target", self.target, self.kind.value)
        return (self.kind.value,)

    def __str__(self) -> str:
        return ".".join(self.path)


@dataclass
class EditOptions:
    """Per-invocation flags shared by every verb."""

    all_members: bool = False
    dry_run: bool = False
    sort: bool = False
    strict: bool = False
    upgrade_method: UpgradeMethod = UpgradeMethod.MINOR
    allow_prerelease: bool = False
    allow_wildcard: bool = False
    all_tables: bool = False


@dataclass
class DependencyChange:
    """A single edit applied (or, in dry-run, proposed) to a manifest."""

    manifest: Path | None
    table: DependencyTable
    name: str
    action: str  # added, updated, removed, upgraded, sorted
    old: str | None = None
    new: str | None = None


@dataclass
class ItemFailure:
    """A per-dependency failure collected instead of aborting the batch."""

    name: str
    error: Exception
    manifest: Path | None = None

    @property
    def message(self) -> str:
        return str(self.error)


@dataclass
class OperationReport:
    """Aggregate result of one verb over every targeted manifest."""

    changes: list[DependencyChange] = field(default_factory=list)
    failures: list[ItemFailure] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    written: list[Path] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def fail(self, name: str, error: Exception, manifest: Path | None = None) -> None:
        self.failures.append(ItemFailure(name=name, error=error, manifest=manifest))
