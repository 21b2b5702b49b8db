"""Crate name and version inference from git repositories and local paths."""

import logging
import re
from pathlib import Path

import httpx
import tomlkit
from tomlkit.exceptions import TOMLKitError

from .dependency import GitSource, PathSource
from .detect import MANIFEST_FILENAME
from .errors import NetworkError, NotFoundError
from .storage import read_manifest

logger = logging.getLogger(__name__)

_HOSTED_RE = re.compile(
    r"^(?:https?://|ssh://git@|git@)(?P<host>github\.com|gitlab\.com)[/:]"
    r"(?P<owner>[^/]+)/(?P<repo>[^/]+?)(?:\.git)?/?$"
)


def raw_manifest_url(source: GitSource) -> str | None:
    """URL of the repository's root manifest on hosts that serve raw files."""
    match = _HOSTED_RE.match(source.url)
    if not match:
        return None
    ref = source.rev or source.tag or source.branch or "HEAD"
    owner, repo = match.group("owner"), match.group("repo")
    if match.group("host") == "github.com":
        return f"https://raw.githubusercontent.com/{owner}/{repo}/{ref}/{MANIFEST_FILENAME}"
    return f"https://gitlab.com/{owner}/{repo}/-/raw/{ref}/{MANIFEST_FILENAME}"


class SourceInspector:
    """Reads the ``[package]`` table of a dependency's own manifest."""

    def __init__(self, base_dir: Path | None = None, timeout: float = 30.0):
        self.base_dir = base_dir
        self.timeout = timeout
        self._cache: dict[str, dict] = {}

    async def infer_crate_name(self, source: GitSource | PathSource) -> str:
        """Name of the crate at a git URL or filesystem path.

        Raises:
            NotFoundError: If no package manifest can be found there
        """
        package = await self._package_table(source)
        name = package.get("name")
        if not isinstance(name, str) or not name:
            raise NotFoundError(f"No package name found for {self._describe(source)}")
        return name

    async def infer_crate_version(self, source: GitSource | PathSource) -> str:
        """Version declared by the crate at a git URL or filesystem path."""
        package = await self._package_table(source)
        version = package.get("version")
        if not isinstance(version, str) or not version:
            raise NotFoundError(f"No package version found for {self._describe(source)}")
        return version

    def _describe(self, source: GitSource | PathSource) -> str:
        return source.url if isinstance(source, GitSource) else source.path

    async def _package_table(self, source: GitSource | PathSource) -> dict:
        key = self._describe(source)
        if key not in self._cache:
            if isinstance(source, PathSource):
                self._cache[key] = self._local_package(source)
            else:
                self._cache[key] = await self._remote_package(source)
        return self._cache[key]

    def _local_package(self, source: PathSource) -> dict:
        directory = Path(source.path)
        if self.base_dir is not None and not directory.is_absolute():
            directory = self.base_dir / directory
        manifest_path = directory / MANIFEST_FILENAME
        if not manifest_path.is_file():
            raise NotFoundError(f"No {MANIFEST_FILENAME} found at {directory}")
        package = read_manifest(manifest_path).document.get("package")
        if not isinstance(package, dict):
            raise NotFoundError(f"{manifest_path} has no [package] table")
        return package.unwrap()

    async def _remote_package(self, source: GitSource) -> dict:
        url = raw_manifest_url(source)
        if url is None:
            raise NotFoundError(
                f"Cannot inspect {source.url}; pass the crate name explicitly"
            )

        logger.debug("Fetching %s", url)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                response = await client.get(url)
                if response.status_code == 404:
                    raise NotFoundError(f"No {MANIFEST_FILENAME} found in {source.url}")
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NetworkError(f"HTTP error fetching {url}: {e}") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Network error fetching {url}: {e}") from e

        try:
            package = tomlkit.parse(response.text).get("package")
        except TOMLKitError as e:
            raise NotFoundError(f"{MANIFEST_FILENAME} in {source.url} is not valid TOML") from e
        if not isinstance(package, dict):
            raise NotFoundError(f"{source.url} has no [package] table")
        return package.unwrap()
