"""Semantic version parsing and comparison.

This module provides the immutable, totally ordered version type used as the
identity of an installed runtime.

Supported format (SemVer 2.0):
- Release versions (0.14.1, v0.14.1)
- Pre-release versions (0.15.0-rc.1, 0.13.0-alpha.2)
- Build metadata (0.14.1+build.5), preserved but only used to break ties
"""

from __future__ import annotations

import re
from functools import total_ordering
from typing import NamedTuple

from .errors import InvalidVersionError


class VersionComponents(NamedTuple):
    """Parsed version components."""

    major: int
    minor: int
    patch: int
    prerelease: tuple[str, ...] = ()
    build: tuple[str, ...] = ()


_NUMERIC = r"0|[1-9]\d*"
_IDENTIFIER = r"[0-9A-Za-z-]+"

SEMVER_PATTERN = re.compile(
    rf"^[vV]?(?P<major>{_NUMERIC})\.(?P<minor>{_NUMERIC})\.(?P<patch>{_NUMERIC})"
    rf"(?:-(?P<prerelease>{_IDENTIFIER}(?:\.{_IDENTIFIER})*))?"
    rf"(?:\+(?P<build>{_IDENTIFIER}(?:\.{_IDENTIFIER})*))?$"
)


def parse_version(version: str) -> VersionComponents:
    """Parse a version string into components.

    Args:
        version: Version string to parse.

    Returns:
        VersionComponents tuple with major, minor, patch, prerelease, build.

    Raises:
        InvalidVersionError: If the version string is not a semantic version.

    Examples:
        >>> parse_version("0.14.1")
        VersionComponents(major=0, minor=14, patch=1, prerelease=(), build=())
        >>> parse_version("v0.15.0-rc.1").prerelease
        ('rc', '1')
    """
    match = SEMVER_PATTERN.match(version.strip())
    if not match:
        raise InvalidVersionError(version)

    prerelease = match.group("prerelease")
    identifiers = tuple(prerelease.split(".")) if prerelease else ()
    # Numeric pre-release identifiers must not carry leading zeros
    for identifier in identifiers:
        if identifier.isdigit() and len(identifier) > 1 and identifier.startswith("0"):
            raise InvalidVersionError(version)

    build = match.group("build")
    return VersionComponents(
        major=int(match.group("major")),
        minor=int(match.group("minor")),
        patch=int(match.group("patch")),
        prerelease=identifiers,
        build=tuple(build.split(".")) if build else (),
    )


def _identifier_key(identifier: str) -> tuple[int, int, str]:
    """Ordering key for one pre-release identifier.

    Numeric identifiers sort numerically and before alphanumeric ones.
    """
    if identifier.isdigit():
        return (0, int(identifier), "")
    return (1, 0, identifier)


def _prerelease_key(prerelease: tuple[str, ...]) -> tuple[int, tuple[tuple[int, int, str], ...]]:
    """Ordering key for a pre-release tag; a release outranks any pre-release."""
    if not prerelease:
        return (1, ())
    return (0, tuple(_identifier_key(identifier) for identifier in prerelease))


@total_ordering
class SemanticVersion:
    """A comparable, immutable semantic version.

    Attributes:
        major: Major version number.
        minor: Minor version number.
        patch: Patch version number.
        prerelease: Dot-separated pre-release identifiers (empty for releases).
        build: Dot-separated build metadata identifiers.

    Example:
        >>> SemanticVersion.parse("0.15.0-rc.1") < SemanticVersion.parse("0.15.0")
        True
        >>> str(SemanticVersion.parse("v0.14.1"))
        '0.14.1'
    """

    __slots__ = ("_components",)

    _components: VersionComponents

    def __init__(
        self,
        major: int,
        minor: int,
        patch: int,
        prerelease: tuple[str, ...] = (),
        build: tuple[str, ...] = (),
    ) -> None:
        object.__setattr__(
            self,
            "_components",
            VersionComponents(major, minor, patch, tuple(prerelease), tuple(build)),
        )

    @classmethod
    def parse(cls, version: str) -> SemanticVersion:
        """Parse a version string.

        Raises:
            InvalidVersionError: If the string is not a semantic version.
        """
        return cls(*parse_version(version))

    @property
    def major(self) -> int:
        return self._components.major

    @property
    def minor(self) -> int:
        return self._components.minor

    @property
    def patch(self) -> int:
        return self._components.patch

    @property
    def prerelease(self) -> tuple[str, ...]:
        return self._components.prerelease

    @property
    def build(self) -> tuple[str, ...]:
        return self._components.build

    @property
    def is_prerelease(self) -> bool:
        """True when the version carries a pre-release tag."""
        return bool(self._components.prerelease)

    def _sort_key(self) -> tuple[object, ...]:
        return (
            self.major,
            self.minor,
            self.patch,
            _prerelease_key(self.prerelease),
            self.build,
        )

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __str__(self) -> str:
        """Return the normalized version string."""
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += "-" + ".".join(self.prerelease)
        if self.build:
            text += "+" + ".".join(self.build)
        return text

    def __repr__(self) -> str:
        return f"SemanticVersion({str(self)!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemanticVersion):
            return NotImplemented
        return self._sort_key() == other._sort_key()

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, SemanticVersion):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __hash__(self) -> int:
        return hash(self._sort_key())


def try_parse_version(version: str) -> SemanticVersion | None:
    """Parse a version string, returning None instead of raising."""
    try:
        return SemanticVersion.parse(version)
    except InvalidVersionError:
        return None


def compare_versions(version1: str, version2: str) -> int:
    """Compare two version strings.

    Returns:
        -1 if version1 < version2, 0 if equal, 1 if version1 > version2.

    Raises:
        InvalidVersionError: If either version cannot be parsed.

    Examples:
        >>> compare_versions("0.14.1", "0.15.0")
        -1
        >>> compare_versions("0.15.0-rc.1", "0.15.0-rc.1")
        0
    """
    v1 = SemanticVersion.parse(version1)
    v2 = SemanticVersion.parse(version2)
    if v1 < v2:
        return -1
    if v1 > v2:
        return 1
    return 0
