"""Pytest configuration and fixtures."""

from unittest.mock import AsyncMock

import pytest
import semver

from core.errors import NotFoundError
from core.registry import RegistryVersion

SAMPLE_MANIFEST = """# Demo crate
[package]
name = "demo"
version = "0.1.0"

[dependencies]
serde = "1.0"  # serialization

[features]
# keep me
default = []
"""


def package_manifest(name: str, body: str = "") -> str:
    """A minimal package manifest with extra TOML appended."""
    return f'[package]\nname = "{name}"\nversion = "0.1.0"\n{body}'


def make_registry(versions: dict[str, str]) -> AsyncMock:
    """Registry double answering from a name -> latest version map."""
    registry = AsyncMock()

    def fetch(name, allow_prerelease=False):
        if name not in versions:
            raise NotFoundError(f"Crate '{name}' not found")
        return semver.Version.parse(versions[name])

    registry.fetch_latest_version.side_effect = fetch
    registry.fetch_latest.side_effect = lambda name, allow_prerelease=False: RegistryVersion(
        name=name, version=fetch(name, allow_prerelease)
    )
    return registry


@pytest.fixture
def sample_manifest():
    """Sample Cargo.toml content for testing."""
    return SAMPLE_MANIFEST


@pytest.fixture
def manifest_file(tmp_path):
    """Create a temporary Cargo.toml for testing."""
    manifest = tmp_path / "Cargo.toml"
    manifest.write_text(SAMPLE_MANIFEST)
    return manifest


@pytest.fixture
def workspace(tmp_path):
    """A virtual workspace root with members `a` and `b`."""
    root = tmp_path / "Cargo.toml"
    root.write_text('[workspace]\nmembers = ["a", "b"]\n')

    members = []
    # Create b first so directory order differs from declaration order.
    for name, body in (
        ("b", '\n[dependencies]\nlog = "0.4"\n'),
        ("a", '\n[dependencies]\nserde = "1.0"\nlog = "0.4.1"\n'),
    ):
        directory = tmp_path / name
        directory.mkdir()
        (directory / "Cargo.toml").write_text(package_manifest(name, body))
    for name in ("a", "b"):
        members.append(tmp_path / name / "Cargo.toml")
    return root, members
