"""Release listing and version resolution.

Turns user version tokens (``latest`` or an explicit semantic version) into
concrete versions, using the GitHub releases API of the WasmEdge project as
the source of published releases.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

from .errors import NoReleasesFoundError, RequestFailedError
from .models import ReleaseInfo
from .version import SemanticVersion, try_parse_version

if TYPE_CHECKING:
    from .download_manager import DownloadManager

logger = structlog.get_logger(__name__)

LATEST = "latest"
DEFAULT_RELEASES_LIMIT = 10
RELEASES_PER_PAGE = 100
MAX_RELEASE_PAGES = 10

_OLDEST = datetime.min.replace(tzinfo=UTC)


class ReleasesFilter(str, Enum):
    """Which releases a listing includes."""

    ALL = "all"
    STABLE = "stable"

    def matches(self, version: SemanticVersion) -> bool:
        return self is ReleasesFilter.ALL or not version.is_prerelease


class ReleasesSource(ABC):
    """Provides the published releases."""

    @abstractmethod
    async def fetch_releases(self) -> list[ReleaseInfo]:
        """Return every published, non-draft release with a semantic version tag.

        Raises:
            RequestFailedError: If the listing cannot be fetched.
        """
        ...


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        timestamp = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return timestamp if timestamp.tzinfo else timestamp.replace(tzinfo=UTC)


def parse_release(entry: dict[str, Any]) -> ReleaseInfo | None:
    """Convert one GitHub API release object, or None if it should be skipped.

    Drafts and tags that are not semantic versions are skipped.
    """
    if entry.get("draft"):
        return None
    version = try_parse_version(str(entry.get("tag_name", "")))
    if version is None:
        return None
    return ReleaseInfo(
        version=version,
        published_at=_parse_timestamp(entry.get("published_at")),
        prerelease=bool(entry.get("prerelease")) or version.is_prerelease,
    )


class GitHubReleasesSource(ReleasesSource):
    """Pages through the GitHub releases API."""

    def __init__(
        self,
        download_manager: DownloadManager,
        api_url: str,
        per_page: int = RELEASES_PER_PAGE,
        max_pages: int = MAX_RELEASE_PAGES,
    ) -> None:
        self._download_manager = download_manager
        self._api_url = api_url
        self._per_page = per_page
        self._max_pages = max_pages
        self._log = logger.bind(component="releases_source")

    async def fetch_releases(self) -> list[ReleaseInfo]:
        releases: list[ReleaseInfo] = []
        for page in range(1, self._max_pages + 1):
            try:
                entries = await self._download_manager.fetch_json(
                    self._api_url,
                    resource="releases",
                    params={"per_page": self._per_page, "page": page},
                )
            except RequestFailedError as e:
                if e.status == 404:
                    break
                raise

            if not isinstance(entries, list) or not entries:
                break

            for entry in entries:
                if isinstance(entry, dict) and (release := parse_release(entry)) is not None:
                    releases.append(release)

            if len(entries) < self._per_page:
                break

        self._log.debug("releases_fetched", count=len(releases))
        return releases


class VersionResolver:
    """Resolves version tokens against the published releases.

    Example:
        >>> resolver = VersionResolver(GitHubReleasesSource(manager, RELEASES_API_URL))
        >>> await resolver.resolve("latest")
        SemanticVersion('0.14.1')
    """

    def __init__(self, source: ReleasesSource) -> None:
        self._source = source

    async def resolve(self, token: str) -> SemanticVersion:
        """Resolve ``latest`` or parse an explicit version.

        ``latest`` is the highest stable version among the published releases.
        Explicit pre-release versions are accepted as given.

        Raises:
            InvalidVersionError: If the token is not ``latest`` and not a version.
            NoReleasesFoundError: If ``latest`` finds no stable release.
            RequestFailedError: If the releases cannot be fetched.
        """
        if token.strip().lower() != LATEST:
            return SemanticVersion.parse(token)

        stable = [
            release.version
            for release in await self._source.fetch_releases()
            if ReleasesFilter.STABLE.matches(release.version)
        ]
        if not stable:
            raise NoReleasesFoundError()

        latest = max(stable)
        logger.info("latest_version_resolved", version=str(latest))
        return latest

    async def releases(
        self,
        releases_filter: ReleasesFilter = ReleasesFilter.STABLE,
        limit: int = DEFAULT_RELEASES_LIMIT,
    ) -> list[SemanticVersion]:
        """List published versions, newest first.

        Ordered by publish time, with ties (and missing times) broken by
        version, both descending.

        Raises:
            RequestFailedError: If the releases cannot be fetched.
        """
        matching = {
            release.version: release
            for release in await self._source.fetch_releases()
            if releases_filter.matches(release.version)
        }
        ordered = sorted(
            matching.values(),
            key=lambda release: (release.published_at or _OLDEST, release.version),
            reverse=True,
        )
        return [release.version for release in ordered[:limit]]
