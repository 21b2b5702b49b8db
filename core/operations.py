"""The add, remove, upgrade and tidy verbs.

Every verb follows the same protocol: resolve the target manifests (and
read all of them before touching any), work out each dependency's desired
state, apply the edits in memory, then validate and write each changed
manifest once. Per-dependency problems are collected into the report
instead of aborting the run.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from pathlib import Path

import semver

from .dependency import (
    Dependency,
    GitSource,
    PathSource,
    RegistrySource,
    validate_crate_name,
    validate_for_table,
)
from .errors import ConflictError, CrateFixError, ManifestError, NotFoundError, ParseError
from .manifest import Manifest
from .models import (
    DependencyChange,
    DependencyTable,
    EditOptions,
    OperationReport,
)
from .storage import read_manifest, write_manifest
from .version import format_requirement, parse_requirement, parse_version
from .workspace import resolve_targets

logger = logging.getLogger(__name__)

# Version sentinel meaning "take the version from the git/path source itself".
FROM_SOURCE = "source"


def split_crate_spec(spec: str) -> tuple[str, str | None]:
    """Split ``name@requirement`` into its parts."""
    name, sep, requirement = spec.partition("@")
    return name.strip(), (requirement.strip() if sep else None)


@dataclass
class AddRequest:
    """What the caller asked to add, before any lookup."""

    crate: str | None = None
    version: str | None = None
    git: str | None = None
    branch: str | None = None
    tag: str | None = None
    rev: str | None = None
    path: str | None = None
    rename: str | None = None
    optional: bool = False
    features: list[str] | None = None
    default_features: bool | None = None

    @property
    def label(self) -> str:
        return self.crate or self.git or self.path or "<unnamed>"

    @classmethod
    def from_spec(cls, spec: str | None, **kwargs) -> "AddRequest":
        """Build a request from ``name`` or ``name@requirement``."""
        if spec is None:
            return cls(**kwargs)
        name, requirement = split_crate_spec(spec)
        if requirement is not None:
            if kwargs.get("version"):
                raise ConflictError(f"'{spec}': cannot combine '@' with an explicit version")
            kwargs["version"] = requirement
        return cls(crate=name, **kwargs)


def load_targets(manifest_path: str | Path, options: EditOptions) -> list[Manifest]:
    """Read every manifest the invocation applies to, before any edit.

    Raises:
        ManifestError: If any target cannot be read
        ParseError: If any target is not valid TOML
    """
    paths = resolve_targets(manifest_path, options.all_members)
    manifests = [read_manifest(path) for path in paths]
    if not options.all_members:
        manifests[0].validate()
    return manifests


def _commit(manifests: list[Manifest], options: EditOptions, report: OperationReport) -> None:
    if options.strict and report.failures:
        report.notes.append("Strict mode: no manifest was written")
        return
    if options.dry_run:
        report.notes.append("Dry run: no manifest was written")
        return

    for manifest in manifests:
        if not manifest.is_modified:
            continue
        try:
            manifest.validate()
            write_manifest(manifest.path, manifest)
        except ManifestError as e:
            # Earlier writes in the batch stay committed.
            report.fail(str(manifest.path), e, manifest.path)
            continue
        report.written.append(manifest.path)


async def resolve_add_request(
    request: AddRequest, options: EditOptions, registry, inspector
) -> Dependency:
    """Turn an AddRequest into a concrete Dependency.

    Raises:
        ConflictError: For mutually exclusive inputs
        ParseError: For invalid names or requirements
        NotFoundError, NetworkError: From the registry or source inspector
    """
    refs = [ref for ref in (request.branch, request.tag, request.rev) if ref]
    if request.git and request.path:
        raise ConflictError(f"'{request.label}': cannot specify both git and path")
    if refs and not request.git:
        raise ConflictError(f"'{request.label}': branch, tag and rev require a git source")
    if len(refs) > 1:
        raise ConflictError(f"'{request.label}': only one of branch, tag or rev may be given")

    source: GitSource | PathSource | None = None
    if request.git:
        source = GitSource(url=request.git, branch=request.branch, tag=request.tag, rev=request.rev)
    elif request.path:
        source = PathSource(path=request.path)

    if request.version == FROM_SOURCE and source is None:
        raise ConflictError(f"'{request.label}': version '{FROM_SOURCE}' needs a git or path source")
    if source is not None and request.version and request.version != FROM_SOURCE:
        raise ConflictError(
            f"'{request.label}': cannot combine an explicit version with a git or path source"
        )

    name = request.crate
    if not name:
        if source is None:
            raise ParseError("A crate name is required unless git or path is given")
        name = await inspector.infer_crate_name(source)
    validate_crate_name(name)
    if request.rename:
        validate_crate_name(request.rename)

    if source is not None:
        if request.version == FROM_SOURCE:
            found = parse_version(await inspector.infer_crate_version(source))
            source = replace(source, version=str(format_requirement(found, options.upgrade_method)))
        resolved = source
    elif request.version:
        resolved = RegistrySource(
            str(parse_requirement(request.version, allow_wildcard=options.allow_wildcard))
        )
    else:
        latest = await registry.fetch_latest(name, options.allow_prerelease)
        # The index may publish the crate under the other '-'/'_' spelling.
        name = latest.name
        resolved = RegistrySource(str(format_requirement(latest.version, options.upgrade_method)))

    return Dependency(
        name=name,
        source=resolved,
        optional=request.optional,
        rename=request.rename,
        default_features=request.default_features,
        features=tuple(request.features) if request.features else None,
    )


async def add_dependencies(
    manifest_path: str | Path,
    requests: list[AddRequest],
    table: DependencyTable,
    options: EditOptions,
    registry,
    inspector,
) -> OperationReport:
    """Add (or update in place) dependencies in every targeted manifest."""
    report = OperationReport()
    manifests = load_targets(manifest_path, options)

    resolved: list[Dependency] = []
    for request in requests:
        try:
            dep = await resolve_add_request(request, options, registry, inspector)
            validate_for_table(dep, table)
        except CrateFixError as e:
            report.fail(request.label, e)
            continue
        resolved.append(dep)

    if options.strict and report.failures:
        report.notes.append("Strict mode: no manifest was written")
        return report

    for manifest in manifests:
        if manifest.kind == "virtual":
            report.notes.append(f"Skipping virtual manifest {manifest.path}")
            continue
        for dep in resolved:
            try:
                action, previous, written = manifest.insert(table, dep, sort=options.sort)
            except CrateFixError as e:
                report.fail(dep.key, e, manifest.path)
                continue
            if action == "unchanged":
                continue
            report.changes.append(
                DependencyChange(
                    manifest=manifest.path,
                    table=table,
                    name=dep.key,
                    action=action,
                    old=previous.requirement if previous else None,
                    new=written.requirement,
                )
            )

    _commit(manifests, options, report)
    return report


def remove_dependencies(
    manifest_path: str | Path,
    names: list[str],
    table: DependencyTable,
    options: EditOptions,
) -> OperationReport:
    """Remove dependencies from exactly the requested table.

    In workspace mode a name only fails when no targeted manifest had it.
    """
    report = OperationReport()
    manifests = load_targets(manifest_path, options)

    for name in names:
        try:
            validate_crate_name(name)
        except ParseError as e:
            report.fail(name, e)
            continue

        misses: list[tuple[Manifest, NotFoundError]] = []
        found = False
        for manifest in manifests:
            if manifest.kind == "virtual":
                continue
            try:
                removed = manifest.remove(table, name)
            except NotFoundError as e:
                misses.append((manifest, e))
                continue
            found = True
            report.changes.append(
                DependencyChange(
                    manifest=manifest.path,
                    table=table,
                    name=name,
                    action="removed",
                    old=removed.requirement if removed else None,
                )
            )

        if found:
            continue
        if options.all_members:
            report.fail(name, NotFoundError(f"The dependency '{name}' could not be found in '{table}' of any workspace member"))
        else:
            for manifest, error in misses:
                report.fail(name, error, manifest.path)

    _commit(manifests, options, report)
    return report


async def _fetch_latest(
    registry, names: list[str], allow_prerelease: bool
) -> dict[str, semver.Version | CrateFixError]:
    """Query the registry for every name; all lookups finish before any edit."""

    async def one(name: str) -> semver.Version | CrateFixError:
        try:
            return await registry.fetch_latest_version(name, allow_prerelease)
        except CrateFixError as e:
            return e

    results = await asyncio.gather(*(one(name) for name in names))
    return dict(zip(names, results))


async def upgrade_dependencies(
    manifest_path: str | Path,
    specs: list[str],
    options: EditOptions,
    registry,
) -> OperationReport:
    """Upgrade registry dependencies to the latest published versions.

    ``specs`` lists crate names, optionally pinned as ``name@requirement``.
    When empty, every registry dependency in every table (target-scoped ones
    included) is a candidate. Git and path dependencies are skipped.
    """
    report = OperationReport()
    manifests = load_targets(manifest_path, options)

    wanted: list[str] | None = None
    pinned: dict[str, str] = {}
    if specs:
        wanted = []
        for spec in specs:
            name, requirement = split_crate_spec(spec)
            try:
                validate_crate_name(name)
                if requirement is not None:
                    pinned[name] = str(
                        parse_requirement(requirement, allow_wildcard=options.allow_wildcard)
                    )
            except ParseError as e:
                report.fail(name or spec, e)
                continue
            if name not in wanted:
                wanted.append(name)

    candidates = []
    present: set[str] = set()
    for manifest in manifests:
        if wanted is None:
            entries = list(manifest.dependencies())
        else:
            entries = [entry for name in wanted for entry in manifest.find(name)]
        for table, key, dep in entries:
            present.add(dep.name)
            if not dep.is_registry:
                logger.debug("Skipping %s in %s: not a registry dependency", key, table)
                if wanted is not None:
                    report.notes.append(f"Skipping {dep.name}: not a registry dependency")
                continue
            candidates.append((manifest, table, key, dep))

    for name in wanted or []:
        if name not in present:
            report.fail(name, NotFoundError(f"Dependency '{name}' not found in any targeted manifest"))

    lookups = sorted({dep.name for _, _, _, dep in candidates if dep.name not in pinned})
    latest = await _fetch_latest(registry, lookups, options.allow_prerelease)
    for name, result in latest.items():
        if isinstance(result, CrateFixError):
            report.fail(name, result)

    for manifest, table, key, dep in candidates:
        if dep.name in pinned:
            new = pinned[dep.name]
        else:
            result = latest[dep.name]
            if isinstance(result, CrateFixError):
                continue
            new = str(format_requirement(result, options.upgrade_method))

        old = dep.requirement
        if old == new:
            continue
        report.changes.append(
            DependencyChange(
                manifest=manifest.path, table=table, name=key, action="upgraded", old=old, new=new
            )
        )
        if not options.dry_run:
            manifest.set_requirement(table, key, new)

    _commit(manifests, options, report)
    return report


def tidy_manifests(manifest_path: str | Path, options: EditOptions) -> OperationReport:
    """Sort ``[dependencies]`` (or every dependency table) of each target."""
    report = OperationReport()
    manifests = load_targets(manifest_path, options)

    for manifest in manifests:
        if options.all_tables:
            tables = [table for table, _ in manifest.sections()]
        else:
            tables = [DependencyTable()]
        for table in tables:
            try:
                changed = manifest.normalize_sort(table)
            except ParseError as e:
                report.fail(str(table), e, manifest.path)
                continue
            if changed:
                report.changes.append(
                    DependencyChange(manifest=manifest.path, table=table, name=str(table), action="sorted")
                )

    _commit(manifests, options, report)
    return report
