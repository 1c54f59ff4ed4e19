"""WasmEdge plugin management.

Plugins are shared libraries published as separate release archives. They
are installed into the plugin directory of one runtime version::

    <root>/versions/<runtime>/plugin/libwasmedgePlugin<name>.so
"""

from __future__ import annotations

import asyncio
import os
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from .archive import extract_archive
from .assets import (
    parse_plugin_asset_name,
    plugin_archive_name,
    plugin_platform_key,
    plugin_platform_keys,
    plugin_url,
)
from .errors import (
    FilesystemError,
    InvalidVersionError,
    NoPluginsSpecifiedError,
    VersionNotFoundError,
)
from .models import (
    RELEASES_API_URL,
    AvailablePlugin,
    OsKind,
    PlatformDescriptor,
    PluginInstallResult,
    PluginRemovalResult,
)
from .store import probe_writable
from .version import SemanticVersion

if TYPE_CHECKING:
    from .download_manager import DownloadManager
    from .events import ProgressCallback
    from .store import VersionStore

logger = structlog.get_logger(__name__)

PLUGIN_DIR = "plugin"
PLUGIN_STAGING_DIR = "plugins"
IGNORED_ARCHIVE_DIRS = frozenset({"__MACOSX"})

_NORMALIZE_PATTERN = re.compile(r"[^0-9a-z]")


def normalize_plugin_name(name: str) -> str:
    """Lowercase a plugin name and drop everything but ASCII letters and digits.

    Examples:
        >>> normalize_plugin_name("wasi_nn-GGML")
        'wasinnggml'
    """
    return _NORMALIZE_PATTERN.sub("", name.lower())


@dataclass(frozen=True)
class PluginNaming:
    """Filename convention of plugin shared libraries on one OS."""

    prefix: str
    extension: str

    @classmethod
    def for_os(cls, os_kind: OsKind) -> PluginNaming:
        if os_kind is OsKind.WINDOWS:
            return cls(prefix="wasmedgePlugin", extension="dll")
        if os_kind is OsKind.DARWIN:
            return cls(prefix="libwasmedgePlugin", extension="dylib")
        return cls(prefix="libwasmedgePlugin", extension="so")

    @property
    def suffix(self) -> str:
        return f".{self.extension}"

    def filename(self, name: str) -> str:
        """Expected filename of a plugin, e.g. ``libwasmedgePluginwasi_nn.so``."""
        return f"{self.prefix}{name}{self.suffix}"

    def matches(self, filename: str) -> bool:
        return (
            filename.startswith(self.prefix)
            and filename.endswith(self.suffix)
            and len(filename) > len(self.prefix) + len(self.suffix)
        )

    def extract_name(self, path: Path) -> str | None:
        """Plugin name encoded in a filename, or None if it is not a plugin."""
        if not self.matches(path.name):
            return None
        return path.name[len(self.prefix) : -len(self.suffix)]


def find_plugin_shared_objects(root: Path, naming: PluginNaming) -> list[Path]:
    """Recursively collect plugin libraries below a directory.

    ``__MACOSX`` metadata directories are skipped.
    """
    results: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in IGNORED_ARCHIVE_DIRS)
        for name in sorted(filenames):
            path = Path(dirpath) / name
            if naming.matches(name) and path.is_file():
                results.append(path)
    return results


@dataclass(frozen=True)
class PluginRequest:
    """A plugin named on the command line, optionally pinned to a version."""

    name: str
    version: SemanticVersion | None = None

    @classmethod
    def parse(cls, spec: str) -> PluginRequest:
        """Parse ``name`` or ``name@version``.

        Raises:
            InvalidVersionError: If the version part is not a semantic version.
            ValueError: If the name is empty.
        """
        name, sep, version = spec.strip().partition("@")
        if not name:
            raise ValueError(f"Invalid plugin specifier: '{spec}'")
        if not sep:
            return cls(name=name)
        if not version:
            raise InvalidVersionError(version)
        return cls(name=name, version=SemanticVersion.parse(version))

    def __str__(self) -> str:
        return f"{self.name}@{self.version}" if self.version else self.name


class PluginManager:
    """Installs, removes and lists plugins of installed runtime versions."""

    def __init__(
        self,
        store: VersionStore,
        download_manager: DownloadManager,
        platform: PlatformDescriptor,
        release_base_url: str,
        tmpdir: Path,
        releases_api_url: str = RELEASES_API_URL,
    ) -> None:
        """Initialize the plugin manager.

        Args:
            store: Version store holding the runtimes.
            download_manager: Fetcher for plugin archives.
            platform: Platform the plugins are installed for.
            release_base_url: Base URL of release downloads.
            tmpdir: Parent directory for staging plugin archives.
            releases_api_url: GitHub API endpoint listing releases, used to
                discover published plugins.
        """
        self._store = store
        self._download_manager = download_manager
        self._platform = platform
        self._release_base_url = release_base_url
        self._tmpdir = tmpdir
        self._releases_api_url = releases_api_url
        self._naming = PluginNaming.for_os(platform.os_kind)
        self._log = logger.bind(component="plugin_manager")

    def staging_dir(self, name: str, plugin_version: str) -> Path:
        return self._tmpdir / "wasmedgeup" / PLUGIN_STAGING_DIR / f"{name}-{plugin_version}"

    def plugin_dir(self, runtime: SemanticVersion) -> Path:
        return self._store.version_dir(runtime) / PLUGIN_DIR

    def select_runtime(self, runtime: SemanticVersion | None = None) -> SemanticVersion:
        """Return the requested runtime, or the latest installed one.

        Raises:
            VersionNotFoundError: If the runtime is not installed, or none is.
        """
        if runtime is not None:
            if not self._store.is_installed(runtime):
                raise VersionNotFoundError(str(runtime))
            return runtime

        latest = self._store.latest_installed()
        if latest is None:
            raise VersionNotFoundError("<none installed>")
        return latest

    async def install_plugin(
        self,
        name: str,
        plugin_version: str,
        runtime_version: SemanticVersion,
        platform_key: str,
        progress: ProgressCallback | None = None,
    ) -> PluginInstallResult:
        """Download one plugin archive and copy its libraries into a runtime.

        An archive without any plugin library is not an error: a warning
        listing the archive members is logged and nothing is installed.

        Raises:
            RequestFailedError: If the download fails.
            ArchiveExtractionError: If the archive is corrupt.
            FilesystemError: If staging or copying fails.
        """
        log = self._log.bind(plugin=name, version=plugin_version, runtime=str(runtime_version))
        archive_name = plugin_archive_name(
            name, plugin_version, platform_key, self._platform.os_kind
        )
        url = plugin_url(
            self._release_base_url, name, plugin_version, platform_key, self._platform.os_kind
        )

        staging = self.staging_dir(name, plugin_version)
        try:
            if staging.exists():
                shutil.rmtree(staging)
            staging.mkdir(parents=True)
        except OSError as e:
            raise FilesystemError(str(staging), "prepare staging directory", str(e)) from e

        log.debug("downloading_plugin", url=url)
        archive = staging / archive_name
        await self._download_manager.download(
            url, archive, resource=archive_name, progress=progress
        )

        extracted = staging / "extracted"
        members = await extract_archive(archive, extracted)
        found = await asyncio.to_thread(find_plugin_shared_objects, extracted, self._naming)

        result = PluginInstallResult(name=name, version=plugin_version, archive_entries=members)
        if not found:
            log.warning("no_plugin_artifacts_found", archive=archive_name, entries=members)
        else:
            destination = self.plugin_dir(runtime_version)
            result.installed = await asyncio.to_thread(self._copy_plugins, found, destination)

        shutil.rmtree(staging, ignore_errors=True)
        log.info("plugin_installed", files=len(result.installed))
        return result

    def _copy_plugins(self, sources: list[Path], destination: Path) -> list[Path]:
        installed: list[Path] = []
        try:
            destination.mkdir(parents=True, exist_ok=True)
            for source in sources:
                target = destination / source.name
                shutil.copy2(source, target)
                installed.append(target)
        except OSError as e:
            raise FilesystemError(str(destination), "copy plugin into", str(e)) from e
        return installed

    async def install_plugins(
        self,
        requests: list[PluginRequest],
        runtime: SemanticVersion | None = None,
        progress: ProgressCallback | None = None,
    ) -> list[PluginInstallResult]:
        """Install plugins into a runtime version.

        Plugins without an explicit version get the runtime's version.

        Raises:
            NoPluginsSpecifiedError: If ``requests`` is empty.
            VersionNotFoundError: If the runtime is not installed.
            InsufficientPermissionsError: If the version directory is not writable.
            UnsupportedPlatformError: If no plugin builds exist for the platform.
        """
        if not requests:
            raise NoPluginsSpecifiedError()

        runtime_version = self.select_runtime(runtime)
        probe_writable(
            self._store.version_dir(runtime_version),
            "write to target version directory",
            runtime_version,
        )
        platform_key = plugin_platform_key(runtime_version, self._platform)
        self._log.debug("plugin_platform_key", key=platform_key)

        results = []
        for request in requests:
            plugin_version = str(request.version or runtime_version)
            results.append(
                await self.install_plugin(
                    request.name, plugin_version, runtime_version, platform_key, progress
                )
            )
        return results

    def _index_plugins(self, directories: list[Path]) -> dict[str, list[Path]]:
        index: dict[str, list[Path]] = {}
        for directory in directories:
            if not directory.is_dir():
                continue
            for entry in sorted(directory.iterdir()):
                if not entry.is_file():
                    continue
                name = self._naming.extract_name(entry)
                if name is None:
                    continue
                index.setdefault(name, []).append(entry)
                normalized = normalize_plugin_name(name)
                if normalized != name:
                    index.setdefault(normalized, []).append(entry)
        return index

    def remove_plugins(
        self,
        names: list[str],
        runtime: SemanticVersion | None = None,
    ) -> PluginRemovalResult:
        """Remove plugins by name from a runtime version.

        Both the version's plugin directory and the root-level ``plugin``
        directory are searched. Names match exactly or after normalization.
        Unknown names are reported together in one warning. Plugin
        directories left empty are removed.

        Raises:
            NoPluginsSpecifiedError: If ``names`` is empty.
            VersionNotFoundError: If the runtime is not installed.
            FilesystemError: If a plugin file cannot be deleted.
        """
        if not names:
            raise NoPluginsSpecifiedError()

        runtime_version = self.select_runtime(runtime)
        directories = [self.plugin_dir(runtime_version), self._store.root / PLUGIN_DIR]
        index = self._index_plugins(directories)

        result = PluginRemovalResult()
        removed_targets: set[Path] = set()
        for spec in names:
            request = PluginRequest.parse(spec)
            if request.version is not None:
                self._log.warning(
                    "plugin_version_ignored", plugin=request.name, version=str(request.version)
                )

            files = index.get(request.name) or index.get(normalize_plugin_name(request.name))
            if not files:
                result.missing.append(request.name)
                continue

            for path in files:
                real = path.resolve()
                if real in removed_targets:
                    continue
                try:
                    path.unlink(missing_ok=True)
                except OSError as e:
                    raise FilesystemError(str(path), "remove", str(e)) from e
                removed_targets.add(real)
                result.removed.append(path)
                self._log.info("plugin_removed", plugin=request.name, path=str(path))

        if result.missing:
            self._log.warning("plugins_not_found", missing=result.missing)

        if result.removed:
            for directory in directories:
                if directory.is_symlink() or not directory.is_dir() or any(directory.iterdir()):
                    continue
                try:
                    directory.rmdir()
                except OSError as e:
                    self._log.debug("plugin_dir_not_removed", path=str(directory), error=str(e))
        return result

    def list_installed_plugins(self, runtime: SemanticVersion | None = None) -> list[str]:
        """Names of the plugins installed in a runtime version.

        Raises:
            VersionNotFoundError: If the runtime is not installed.
        """
        directory = self.plugin_dir(self.select_runtime(runtime))
        if not directory.is_dir():
            return []
        return sorted(
            name
            for entry in directory.iterdir()
            if entry.is_file() and (name := self._naming.extract_name(entry)) is not None
        )

    async def list_available_plugins(
        self, runtime: SemanticVersion | None = None
    ) -> list[AvailablePlugin]:
        """Plugins published with a runtime release for this platform.

        The runtime defaults to the latest installed version; an explicit one
        need not be installed. Each plugin is reported once, built for the
        first platform key of ``plugin_platform_keys`` that has a build.

        Raises:
            VersionNotFoundError: If no runtime is given and none is installed.
            UnsupportedPlatformError: If no plugin builds exist for the platform.
            RequestFailedError: If the release cannot be fetched.
        """
        runtime_version = runtime if runtime is not None else self.select_runtime()
        keys = plugin_platform_keys(runtime_version, self._platform)
        tag = str(runtime_version)
        url = f"{self._releases_api_url.rstrip('/')}/tags/{tag}"
        release = await self._download_manager.fetch_json(url, resource=f"release {tag}")

        assets = release.get("assets") if isinstance(release, dict) else None
        builds: dict[str, set[str]] = {}
        for asset in assets or []:
            if not isinstance(asset, dict):
                continue
            parsed = parse_plugin_asset_name(str(asset.get("name", "")), tag)
            if parsed is not None:
                builds.setdefault(parsed[0], set()).add(parsed[1])

        available = []
        for name in sorted(builds):
            key = next((k for k in keys if k in builds[name]), None)
            if key is not None:
                available.append(AvailablePlugin(name=name, version=tag, platform_key=key))
        self._log.debug(
            "available_plugins",
            runtime=tag,
            keys=keys,
            published=len(builds),
            usable=len(available),
        )
        return available
