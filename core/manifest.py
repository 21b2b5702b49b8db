"""Structure-preserving editor over one manifest's dependency tables.

Edits go through ``tomlkit`` so that every key, comment and blank line not
touched by an operation is written back exactly as it was read.
"""

import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import tomlkit
from tomlkit.exceptions import TOMLKitError
from tomlkit.items import Null
from tomlkit.toml_document import TOMLDocument

from .dependency import (
    SOURCE_KEYS,
    Dependency,
    DependencyUpdate,
    merge,
    to_toml_value,
    toml_entries,
)
from .detect import identify
from .errors import ManifestError, NotFoundError, ParseError
from .models import DependencyKind, DependencyTable

logger = logging.getLogger(__name__)

# Non-source keys managed by the editor; anything else in a table entry is left alone.
MANAGED_KEYS = SOURCE_KEYS + ("package", "default-features", "features", "optional")


def sort_key(key: str) -> tuple[str, str]:
    """Case-insensitive collation, ties broken by the exact key."""
    return (key.lower(), key)


def _detach_trailer(table: Any) -> list[Any]:
    """Pop the comments and blank lines that follow a table's last entry.

    They belong visually to whatever comes next (usually the following
    table header) and must stay after any entry added or moved here.
    """
    body = table.value.body
    trailer = []
    while body and body[-1][0] is None:
        trailer.append(body.pop()[1])
    return [item for item in reversed(trailer) if not isinstance(item, Null)]


def _attach_trailer(table: Any, trailer: list[Any]) -> None:
    for item in trailer:
        table.value.add(item)


def _append_entry(table: Any, key: str, value: Any) -> None:
    """Append ``key`` right after the table's last entry."""
    trailer = _detach_trailer(table)
    table.append(key, value)
    _attach_trailer(table, trailer)


class Manifest:
    """A parsed manifest owned by a single operation."""

    def __init__(self, document: TOMLDocument, path: Path | None = None, text: str | None = None):
        self.document = document
        self.path = path
        self.original_text = text if text is not None else document.as_string()

    @classmethod
    def from_text(cls, text: str, path: Path | None = None) -> "Manifest":
        try:
            document = tomlkit.parse(text)
        except TOMLKitError as e:
            location = path or "<manifest>"
            raise ParseError(f"Manifest {location} is not valid TOML: {e}") from e
        return cls(document, path=path, text=text)

    @property
    def kind(self) -> str:
        return identify(self.document)

    @property
    def is_modified(self) -> bool:
        return self.to_string() != self.original_text

    def to_string(self) -> str:
        return self.document.as_string()

    def validate(self) -> None:
        """Refuse to edit anything that is not a package manifest."""
        kind = self.kind
        if kind == "virtual":
            raise ManifestError(
                self.path,
                "Found virtual manifest, but this command requires running against "
                "an actual package in this workspace. Try adding `--all`.",
            )
        if kind not in ("package", "mixed"):
            raise ManifestError(self.path, "Manifest has no [package] table")

    def get_table(self, table: DependencyTable, create: bool = False) -> Any | None:
        """Return the table at ``table.path``.

        Missing parents are only created when ``create`` is set; a lookup
        never changes the document.
        """
        node: Any = self.document
        path = table.path
        for depth, segment in enumerate(path):
            child = node.get(segment)
            if child is None:
                if not create:
                    return None
                is_parent = depth < len(path) - 1
                node[segment] = tomlkit.table(is_super_table=True) if is_parent else tomlkit.table()
                child = node[segment]
            elif not isinstance(child, dict):
                raise ParseError(f"'{'.'.join(path[: depth + 1])}' is not a table")
            node = child
        return node

    def sections(self) -> list[tuple[DependencyTable, Any]]:
        """Every existing dependency table, untargeted ones first."""
        found = []
        for kind in DependencyKind:
            table = self.get_table(DependencyTable(kind))
            if table is not None:
                found.append((DependencyTable(kind), table))

        targets = self.document.get("target")
        if isinstance(targets, dict):
            for condition, scoped in targets.items():
                if not isinstance(scoped, dict):
                    continue
                for kind in DependencyKind:
                    table = scoped.get(kind.value)
                    if isinstance(table, dict):
                        found.append((DependencyTable(kind, str(condition)), table))
        return found

    def dependencies(self) -> Iterator[tuple[DependencyTable, str, Dependency]]:
        """Yield every readable dependency entry across all sections."""
        for table_ref, table in self.sections():
            for key in list(table.keys()):
                try:
                    yield table_ref, key, Dependency.from_toml(key, table[key])
                except ParseError as e:
                    logger.debug("Skipping %s in %s: %s", key, table_ref, e)

    def find(self, name: str) -> list[tuple[DependencyTable, str, Dependency]]:
        """Entries whose crate name (``package`` for renamed ones) is ``name``."""
        return [entry for entry in self.dependencies() if entry[2].name == name]

    def insert(
        self, table: DependencyTable, dep: Dependency, sort: bool = False
    ) -> tuple[str, Dependency | None, Dependency]:
        """Add ``dep`` or merge it into an existing entry of the same slot.

        Returns:
            (action, previous, written) where action is 'added', 'updated'
            or 'unchanged'
        """
        target = self.get_table(table, create=True)
        update = DependencyUpdate.from_dependency(dep)
        aliased = None
        if dep.rename and dep.key not in target and dep.name in target:
            aliased = self._read(dep.name, target[dep.name])

        if dep.key in target:
            previous = self._read(dep.key, target[dep.key])
            written = merge(previous, update) if previous else dep
            if previous == written:
                action = "unchanged"
            else:
                self._write_entry(target, dep.key, previous, written)
                action = "updated"
        elif aliased is not None and aliased.rename is None:
            # Re-adding under a new alias moves the entry to its new key.
            previous = aliased
            written = merge(previous, update)
            del target[dep.name]
            _append_entry(target, dep.key, to_toml_value(written))
            action = "updated"
        else:
            previous = None
            written = dep
            _append_entry(target, dep.key, to_toml_value(dep))
            action = "added"

        if sort:
            self.normalize_sort(table)
        logger.debug("%s %s in %s", action, dep.key, table)
        return action, previous, written

    def remove(self, table: DependencyTable, key: str) -> Dependency | None:
        """Remove ``key`` from exactly this table; empty tables are dropped.

        Raises:
            NotFoundError: If the table or the key does not exist
        """
        found = self.get_table(table)
        if found is None or key not in found:
            raise NotFoundError(f"The dependency '{key}' could not be found in '{table}'")

        removed = self._read(key, found[key])
        del found[key]
        if len(found) == 0:
            self._drop_table(table)
        return removed

    def set_requirement(self, table: DependencyTable, key: str, requirement: str) -> None:
        """Rewrite only the version of one entry, keeping its form."""
        found = self.get_table(table)
        if found is None or key not in found:
            raise NotFoundError(f"The dependency '{key}' could not be found in '{table}'")

        item = found[key]
        if isinstance(item, str):
            found[key] = tomlkit.string(requirement)
        elif isinstance(item, dict):
            item["version"] = requirement
        else:
            raise ParseError(f"Dependency '{key}' in '{table}' is neither a string nor a table")

    def normalize_sort(self, table: DependencyTable) -> bool:
        """Reorder one table's keys; returns False when already sorted."""
        found = self.get_table(table)
        if found is None:
            return False

        keys = list(found.keys())
        ordered = sorted(keys, key=sort_key)
        if keys == ordered:
            return False

        items = {key: found[key] for key in keys}
        trailer = _detach_trailer(found)
        for key in keys:
            del found[key]
        for key in ordered:
            found.append(key, items[key])
        _attach_trailer(found, trailer)
        return True

    def _read(self, key: str, item: Any) -> Dependency | None:
        try:
            return Dependency.from_toml(key, item)
        except ParseError as e:
            logger.warning("Unreadable dependency entry '%s': %s", key, e)
            return None

    def _write_entry(self, table: Any, key: str, previous: Dependency | None, dep: Dependency) -> None:
        item = table[key]
        if previous is None or not isinstance(item, dict):
            table[key] = to_toml_value(dep)
            return

        # Touch only the keys whose value actually changed.
        old = dict(toml_entries(previous))
        new = dict(toml_entries(dep))
        for name in MANAGED_KEYS:
            if name in new:
                if old.get(name) != new[name] or name not in item:
                    item[name] = new[name]
            elif name in old:
                for spelling in (name, name.replace("-", "_")):
                    if spelling in item:
                        del item[spelling]

    def _drop_table(self, table: DependencyTable) -> None:
        if not table.target:
            del self.document[table.kind.value]
            return

        targets = self.document["target"]
        scoped = targets[table.target]
        del scoped[table.kind.value]
        if len(scoped) == 0:
            del targets[table.target]
        if len(targets) == 0:
            del self.document["target"]
