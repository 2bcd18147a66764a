"""Upstream tag classification.

Tags are classified purely from their text: upstream feeds expose no
structured pre-release flag that we rely on.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

_SEMVER_RE = re.compile(r"^v?(0|[1-9]\d*)\.(0|[1-9]\d*)(?:\.(0|[1-9]\d*))?$")

PRERELEASE_MARKERS: tuple[str, ...] = ("alpha", "beta", "rc", "dev", "pre", "snapshot")
_PRERELEASE_RE = re.compile("|".join(PRERELEASE_MARKERS), re.IGNORECASE)


class VersionSource(StrEnum):
    RELEASES = "releases"
    TAGS = "tags"
    MANUAL = "manual"


def is_semver_tag(tag: str) -> bool:
    return _SEMVER_RE.match(tag.strip()) is not None


def is_prerelease_tag(tag: str) -> bool:
    """True when ``tag`` contains any pre-release marker (case-insensitive)."""
    return _PRERELEASE_RE.search(tag) is not None


def normalize_version(tag: str) -> str | None:
    """``v5.3`` -> ``5.3.0``; None for tags that are not semver-shaped."""
    m = _SEMVER_RE.match(tag.strip())
    if m is None:
        return None
    major, minor, patch = m.group(1), m.group(2), m.group(3) or "0"
    return f"{major}.{minor}.{patch}"


@dataclass(frozen=True, slots=True)
class Version:
    """A version discovered upstream (or given by an operator).

    ``stable`` is derived from ``tag`` and cannot be overridden.
    """

    tag: str
    semver: str
    discovered_at: datetime
    source: VersionSource

    @property
    def stable(self) -> bool:
        return not is_prerelease_tag(self.tag)

    def __str__(self) -> str:
        return self.semver


def version_from_tag(tag: str, *, at: datetime, source: VersionSource) -> Version | None:
    semver = normalize_version(tag)
    if semver is None:
        return None
    return Version(tag=tag.strip(), semver=semver, discovered_at=at, source=source)
