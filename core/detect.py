"""Manifest kind detection."""

from collections.abc import Mapping
from pathlib import Path

MANIFEST_FILENAME = "Cargo.toml"


def identify(document: Mapping, filename: str | Path | None = None) -> str:
    """Detect what kind of manifest a parsed document is.

    Args:
        document: The parsed manifest
        filename: Optional filename for additional context

    Returns:
        Detected kind: 'package', 'virtual', 'mixed', or 'unknown'
    """
    # Filename-based rejection (takes precedence)
    if filename and Path(filename).name != MANIFEST_FILENAME:
        return "unknown"

    has_package = "package" in document or "project" in document
    has_workspace = "workspace" in document

    if has_package and has_workspace:
        return "mixed"
    if has_package:
        return "package"
    if has_workspace:
        return "virtual"
    return "unknown"
