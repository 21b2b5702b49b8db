"""Semantic-version requirement parsing, matching and formatting.

Requirements follow Cargo's syntax: a comma separated list of comparators,
each an optional operator followed by a (possibly partial) version::

    ^1.2.3   ~0.9   >=1, <2   =1.2.3   1.*   *

A comparator without an operator uses caret semantics. Concrete versions are
``semver.Version`` instances.
"""

import re
from dataclasses import dataclass
from enum import Enum

import semver

from .errors import ParseError
from .models import UpgradeMethod


class Op(str, Enum):
    """Comparator operators."""

    EXACT = "="
    GREATER = ">"
    GREATER_EQ = ">="
    LESS = "<"
    LESS_EQ = "<="
    TILDE = "~"
    CARET = "^"
    WILDCARD = "*"


_COMPARATOR_RE = re.compile(
    r"""
    ^\s*
    (?P<op>>=|<=|=|>|<|~|\^)?\s*
    (?P<major>[0-9]+|[*xX])
    (?:\.(?P<minor>[0-9]+|[*xX]))?
    (?:\.(?P<patch>[0-9]+|[*xX]))?
    (?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?
    (?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?
    \s*$
    """,
    re.VERBOSE,
)

_WILDCARDS = ("*", "x", "X")


@dataclass(frozen=True)
class Comparator:
    """One ``op version`` clause of a requirement."""

    op: Op
    major: int | None = None
    minor: int | None = None
    patch: int | None = None
    pre: str = ""

    def __str__(self) -> str:
        if self.op is Op.WILDCARD:
            parts = [str(p) for p in (self.major, self.minor) if p is not None]
            return ".".join(parts + ["*"])
        text = ".".join(str(p) for p in (self.major, self.minor, self.patch) if p is not None)
        if self.pre:
            text += f"-{self.pre}"
        return f"{self.op.value}{text}"

    def matches(self, version: semver.Version) -> bool:
        if self.op in (Op.EXACT, Op.WILDCARD):
            return _matches_exact(self, version)
        if self.op is Op.GREATER:
            return _matches_greater(self, version)
        if self.op is Op.GREATER_EQ:
            return _matches_exact(self, version) or _matches_greater(self, version)
        if self.op is Op.LESS:
            return _matches_less(self, version)
        if self.op is Op.LESS_EQ:
            return _matches_exact(self, version) or _matches_less(self, version)
        if self.op is Op.TILDE:
            return _matches_tilde(self, version)
        return _matches_caret(self, version)


@dataclass(frozen=True)
class VersionRequirement:
    """An immutable, parsed version requirement.

    ``text`` keeps the caller's spelling so that ``1.5`` is written back as
    ``1.5`` rather than a normalized form.
    """

    text: str
    comparators: tuple[Comparator, ...]

    def __str__(self) -> str:
        return self.text

    @property
    def is_wildcard(self) -> bool:
        """True when the requirement accepts every release (``*``)."""
        return all(c.op is Op.WILDCARD and c.major is None for c in self.comparators)

    def matches(self, version: semver.Version | str) -> bool:
        if isinstance(version, str):
            version = semver.Version.parse(version)
        if not all(c.matches(version) for c in self.comparators):
            return False
        if not version.prerelease:
            return True
        # A prerelease only satisfies comparators that opt into the same release line.
        return any(
            c.pre
            and c.major == version.major
            and c.minor == version.minor
            and c.patch == version.patch
            for c in self.comparators
        )


def _pre_cmp(left: str | None, right: str | None) -> int:
    """Compare prerelease tags; no tag sorts after any tag."""
    return semver.Version(0, 0, 0, prerelease=left or None).compare(
        semver.Version(0, 0, 0, prerelease=right or None)
    )


def _matches_exact(cmp: Comparator, ver: semver.Version) -> bool:
    if cmp.major is None:
        return True
    if ver.major != cmp.major:
        return False
    if cmp.minor is None:
        return True
    if ver.minor != cmp.minor:
        return False
    if cmp.patch is None:
        return True
    if ver.patch != cmp.patch:
        return False
    return _pre_cmp(ver.prerelease, cmp.pre) == 0


def _matches_greater(cmp: Comparator, ver: semver.Version) -> bool:
    if ver.major != cmp.major:
        return ver.major > cmp.major
    if cmp.minor is None:
        return False
    if ver.minor != cmp.minor:
        return ver.minor > cmp.minor
    if cmp.patch is None:
        return False
    if ver.patch != cmp.patch:
        return ver.patch > cmp.patch
    return _pre_cmp(ver.prerelease, cmp.pre) > 0


def _matches_less(cmp: Comparator, ver: semver.Version) -> bool:
    if ver.major != cmp.major:
        return ver.major < cmp.major
    if cmp.minor is None:
        return False
    if ver.minor != cmp.minor:
        return ver.minor < cmp.minor
    if cmp.patch is None:
        return False
    if ver.patch != cmp.patch:
        return ver.patch < cmp.patch
    return _pre_cmp(ver.prerelease, cmp.pre) < 0


def _matches_tilde(cmp: Comparator, ver: semver.Version) -> bool:
    if ver.major != cmp.major:
        return False
    if cmp.minor is not None and ver.minor != cmp.minor:
        return False
    if cmp.patch is not None and ver.patch != cmp.patch:
        return ver.patch > cmp.patch
    return _pre_cmp(ver.prerelease, cmp.pre) >= 0


def _matches_caret(cmp: Comparator, ver: semver.Version) -> bool:
    if ver.major != cmp.major:
        return False
    if cmp.minor is None:
        return True
    if cmp.patch is None:
        if cmp.major > 0:
            return ver.minor >= cmp.minor
        return ver.minor == cmp.minor

    if cmp.major > 0:
        if ver.minor != cmp.minor:
            return ver.minor > cmp.minor
        if ver.patch != cmp.patch:
            return ver.patch > cmp.patch
    elif cmp.minor > 0:
        if ver.minor != cmp.minor:
            return False
        if ver.patch != cmp.patch:
            return ver.patch > cmp.patch
    elif ver.minor != cmp.minor or ver.patch != cmp.patch:
        return False
    return _pre_cmp(ver.prerelease, cmp.pre) >= 0


def _numeric(part: str, text: str) -> int:
    if len(part) > 1 and part.startswith("0"):
        raise ParseError(f"Invalid requirement '{text}': leading zero in '{part}'")
    return int(part)


def _parse_comparator(chunk: str, text: str) -> Comparator:
    match = _COMPARATOR_RE.match(chunk)
    if not match:
        raise ParseError(f"Invalid version requirement '{text}'")

    op_text = match.group("op")
    raw_parts = [match.group("major"), match.group("minor"), match.group("patch")]
    pre = match.group("pre") or ""

    wildcard_at = next(
        (i for i, p in enumerate(raw_parts) if p is not None and p in _WILDCARDS), None
    )
    if wildcard_at is not None:
        trailing = raw_parts[wildcard_at + 1 :]
        if any(p is not None and p not in _WILDCARDS for p in trailing):
            raise ParseError(f"Invalid requirement '{text}': version after wildcard")
        if op_text not in (None, "="):
            raise ParseError(f"Invalid requirement '{text}': wildcard with operator '{op_text}'")
        if pre:
            raise ParseError(f"Invalid requirement '{text}': wildcard with prerelease")
        numbers = [_numeric(p, text) for p in raw_parts[:wildcard_at]]
        numbers += [None] * (3 - len(numbers))
        return Comparator(Op.WILDCARD, numbers[0], numbers[1], numbers[2])

    major, minor, patch = (
        _numeric(p, text) if p is not None else None for p in raw_parts
    )
    if pre and patch is None:
        raise ParseError(f"Invalid requirement '{text}': prerelease needs a full version")
    op = Op(op_text) if op_text else Op.CARET
    return Comparator(op, major, minor, patch, pre)


def parse_requirement(text: str, allow_wildcard: bool = False) -> VersionRequirement:
    """Parse a Cargo version requirement.

    Args:
        text: Requirement such as ``^1.2``, ``>=1, <2`` or ``1.*``
        allow_wildcard: Accept an unconstrained ``*`` requirement

    Returns:
        Parsed VersionRequirement

    Raises:
        ParseError: If the requirement is malformed, or is ``*`` while
            wildcards are not allowed
    """
    stripped = (text or "").strip()
    if not stripped:
        raise ParseError("Empty version requirement")

    chunks = stripped.split(",")
    if any(not chunk.strip() for chunk in chunks):
        raise ParseError(f"Invalid version requirement '{text}': empty comparator")

    comparators = tuple(_parse_comparator(chunk, text) for chunk in chunks)
    requirement = VersionRequirement(text=stripped, comparators=comparators)

    if requirement.is_wildcard and not allow_wildcard:
        raise ParseError(
            f"Refusing unconstrained requirement '{stripped}'; pin a version or allow wildcards"
        )
    return requirement


def parse_version(text: str) -> semver.Version:
    """Parse a concrete semantic version such as ``1.2.3-beta.1``."""
    try:
        return semver.Version.parse(text.strip())
    except (ValueError, TypeError) as e:
        raise ParseError(f"Invalid version '{text}': {e}") from e


def format_requirement(version: semver.Version, method: UpgradeMethod) -> VersionRequirement:
    """Turn a concrete version into a requirement according to ``method``.

    Build metadata is dropped; prerelease tags are kept.
    """
    base = f"{version.major}.{version.minor}.{version.patch}"
    if version.prerelease:
        base += f"-{version.prerelease}"

    prefix = {
        UpgradeMethod.EXACT: "",
        UpgradeMethod.PATCH: "~",
        UpgradeMethod.MINOR: "^",
        UpgradeMethod.ALL: ">=",
    }[UpgradeMethod(method)]
    return parse_requirement(prefix + base)
