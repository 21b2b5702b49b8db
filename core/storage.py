"""Manifest discovery, reading and writing."""

import logging
import os
import shutil
import tempfile
from pathlib import Path

from .detect import MANIFEST_FILENAME
from .errors import ManifestError
from .manifest import Manifest

logger = logging.getLogger(__name__)


def find_manifest(specified: str | Path | None = None, cwd: Path | None = None) -> Path:
    """Locate the manifest to operate on.

    A file path is returned as is; a directory (or, when nothing is given,
    the working directory) is searched upwards for ``Cargo.toml``.
    """
    if specified is not None:
        path = Path(specified)
        if path.is_file():
            return path
        if not path.exists():
            raise ManifestError(path, f"Manifest {path} not found")
        start = path
    else:
        start = cwd or Path.cwd()

    for directory in (start, *start.resolve().parents):
        candidate = directory / MANIFEST_FILENAME
        if candidate.is_file():
            return candidate
    raise ManifestError(None, f"Unable to find {MANIFEST_FILENAME} in {start} or any parent directory")


def read_manifest(path: str | Path) -> Manifest:
    """Read and parse a manifest, keeping its exact text and line endings.

    Raises:
        ManifestError: If the file cannot be read
        ParseError: If the file is not valid TOML
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8", newline="") as handle:
            text = handle.read()
    except OSError as e:
        raise ManifestError(path, f"Failed to read manifest {path}: {e}") from e
    return Manifest.from_text(text, path=path)


def write_manifest(path: str | Path, manifest: Manifest) -> None:
    """Replace the manifest on disk in one step.

    The new contents go to a temporary file next to the target, which is
    then renamed over it.
    """
    path = Path(path)
    text = manifest.to_string()
    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.write(text)
            if path.exists():
                shutil.copymode(path, tmp_name)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise ManifestError(path, f"Failed to write manifest {path}: {e}") from e
    logger.info("Wrote %s", path)
