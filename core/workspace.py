"""Workspace expansion: which manifests an invocation applies to."""

import glob
import logging
from pathlib import Path
from typing import Callable

from .dependency import PathSource
from .detect import MANIFEST_FILENAME
from .errors import ManifestError
from .manifest import Manifest
from .storage import read_manifest

logger = logging.getLogger(__name__)


def _expand_member(root_dir: Path, pattern: str) -> list[Path]:
    """Directories matched by one ``members`` entry, sorted for determinism."""
    if glob.has_magic(pattern):
        matches = sorted(glob.glob(str(root_dir / pattern)))
        return [Path(m) for m in matches if Path(m).is_dir()]
    return [root_dir / pattern]


def _string_list(manifest: Manifest, key: str) -> list[str]:
    workspace = manifest.document.get("workspace") or {}
    values = workspace.get(key, [])
    if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
        raise ManifestError(manifest.path, f"workspace.{key} must be a list of strings")
    return [str(v) for v in values]


def _implicit_members(manifest: Manifest, root_dir: Path) -> list[Path]:
    """Path dependencies of the root package that live inside the workspace."""
    if manifest.kind != "mixed":
        return []
    found = []
    for _, _, dep in manifest.dependencies():
        if isinstance(dep.source, PathSource):
            directory = (root_dir / dep.source.path).resolve()
            if directory.is_relative_to(root_dir.resolve()):
                found.append(directory)
    return found


def resolve_targets(
    root_manifest_path: str | Path,
    all_members: bool,
    read: Callable[[Path], Manifest] = read_manifest,
) -> list[Path]:
    """Ordered manifest paths an operation must apply to.

    Without ``all_members`` this is just the root. Otherwise the root comes
    first, followed by ``[workspace].members`` in declaration order (each glob
    sorted), then implicit path-dependency members, minus ``exclude``.

    Raises:
        ManifestError: If the root or any member manifest is missing
    """
    root = Path(root_manifest_path)
    if not all_members:
        return [root]

    manifest = read(root)
    root_dir = root.parent
    targets = [root]
    seen = {root.resolve()}

    excluded = {(root_dir / e).resolve() for e in _string_list(manifest, "exclude")}

    directories: list[Path] = []
    for pattern in _string_list(manifest, "members"):
        directories.extend(_expand_member(root_dir, pattern))
    directories.extend(_implicit_members(manifest, root_dir))

    for directory in directories:
        if directory.resolve() in excluded:
            logger.debug("Skipping excluded member %s", directory)
            continue
        member = directory / MANIFEST_FILENAME
        if not member.is_file():
            raise ManifestError(member, f"Workspace member manifest {member} not found")
        key = member.resolve()
        if key in seen:
            continue
        seen.add(key)
        targets.append(member)

    logger.debug("Resolved %d workspace targets from %s", len(targets), root)
    return targets
