"""Crate version lookup against the crates.io sparse index."""

import asyncio
import json
import logging
from dataclasses import dataclass

import httpx
import semver

from .errors import NetworkError, NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_INDEX_URL = "https://index.crates.io"
USER_AGENT = "cratefix (+https://github.com/cratefix/cratefix)"


def index_path(crate_name: str) -> str:
    """Relative path of a crate's file in a sparse index."""
    name = crate_name.lower()
    if len(name) <= 2:
        return f"{len(name)}/{name}"
    if len(name) == 3:
        return f"3/{name[0]}/{name}"
    return f"{name[:2]}/{name[2:4]}/{name}"


@dataclass
class RegistryVersion:
    """Latest usable release of a crate and the name the index spells it with."""

    name: str
    version: semver.Version


class CratesIndexRegistry:
    """Registry collaborator backed by a sparse crate index."""

    def __init__(
        self,
        index_url: str = DEFAULT_INDEX_URL,
        timeout: float = 30.0,
        max_concurrency: int = 6,
    ):
        """Initialize the registry client.

        Args:
            index_url: Base URL of the sparse index
            timeout: Request timeout in seconds
            max_concurrency: Maximum concurrent requests
        """
        self.index_url = index_url.rstrip("/")
        self.timeout = timeout
        self.max_concurrency = max_concurrency
        self._cache: dict[str, list[dict] | None] = {}
        self._semaphore = asyncio.Semaphore(max_concurrency)

    async def fetch_latest_version(self, crate_name: str, allow_prerelease: bool = False) -> semver.Version:
        """Get the newest non-yanked version of a crate.

        Args:
            crate_name: Name of the crate
            allow_prerelease: Consider prerelease versions too

        Returns:
            Latest version

        Raises:
            NotFoundError: If the crate or a usable version does not exist
            NetworkError: If the index cannot be reached
        """
        return (await self.fetch_latest(crate_name, allow_prerelease)).version

    async def fetch_latest(self, crate_name: str, allow_prerelease: bool = False) -> RegistryVersion:
        """Like fetch_latest_version, also reporting the index's spelling of the name.

        ``-`` and ``_`` are interchangeable in lookups, so ``serde-json``
        resolves to ``serde_json``.
        """
        candidates = [crate_name]
        for a, b in (("-", "_"), ("_", "-")):
            if a in crate_name:
                candidates.append(crate_name.replace(a, b))

        for candidate in candidates:
            entries = await self._fetch_index_entries(candidate)
            if entries is None:
                continue
            version = self._select_latest(entries, allow_prerelease)
            if version is None:
                raise NotFoundError(f"No usable versions found for crate '{crate_name}'")
            name = entries[-1].get("name", candidate)
            if name != crate_name:
                logger.warning("Crate '%s' is published as '%s'", crate_name, name)
            return RegistryVersion(name=name, version=version)

        raise NotFoundError(f"Crate '{crate_name}' not found in {self.index_url}")

    def _select_latest(self, entries: list[dict], allow_prerelease: bool) -> semver.Version | None:
        versions = []
        for entry in entries:
            if entry.get("yanked"):
                continue
            try:
                version = semver.Version.parse(entry["vers"])
            except (KeyError, ValueError, TypeError):
                continue  # Skip malformed index lines
            if version.prerelease and not allow_prerelease:
                continue
            versions.append(version)
        return max(versions) if versions else None

    async def _fetch_index_entries(self, crate_name: str) -> list[dict] | None:
        """Fetch a crate's index file.

        Args:
            crate_name: Name of the crate

        Returns:
            One dict per published version, or None if not found
        """
        key = crate_name.lower()
        if key in self._cache:
            return self._cache[key]

        url = f"{self.index_url}/{index_path(crate_name)}"
        async with self._semaphore:
            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout, headers={"User-Agent": USER_AGENT}
                ) as client:
                    response = await client.get(url)
                    if response.status_code in (404, 410):
                        self._cache[key] = None
                        return None
                    response.raise_for_status()
            except httpx.TimeoutException as e:
                raise NetworkError(f"Timeout fetching index entry for {crate_name}") from e
            except httpx.HTTPStatusError as e:
                raise NetworkError(f"HTTP error fetching {crate_name}: {e}") from e
            except httpx.HTTPError as e:
                raise NetworkError(f"Network error fetching {crate_name}: {e}") from e

        entries = []
        for line in response.text.splitlines():
            if line.strip():
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.debug("Skipping malformed index line for %s", crate_name)
        self._cache[key] = entries
        logger.debug("Fetched %d index entries for %s", len(entries), crate_name)
        return entries
