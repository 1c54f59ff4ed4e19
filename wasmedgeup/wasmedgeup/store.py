"""Version store and current-version switchboard.

Layout of an install root::

    <root>/
        versions/
            0.14.1/{bin,lib,include,plugin}/...
            0.15.0/{bin,lib,include,plugin}/...
        bin     -> versions/0.15.0/bin
        lib     -> versions/0.15.0/lib
        include -> versions/0.15.0/include
        plugin  -> versions/0.15.0/plugin

The four top-level symlinks always point into the same version, or are all
absent. The version the ``bin`` link points into is the current version.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path, PurePath
from typing import TYPE_CHECKING

import structlog

from .archive import copy_tree
from .errors import (
    FilesystemError,
    InsufficientPermissionsError,
    NothingToRemoveError,
    SymlinkPermissionError,
    VersionNotFoundError,
)
from .interfaces import NullShellIntegration
from .models import RemovalResult
from .version import SemanticVersion, try_parse_version

if TYPE_CHECKING:
    from .interfaces import ShellIntegration

logger = structlog.get_logger(__name__)

VERSIONS_DIR = "versions"
LINK_NAMES = ("bin", "lib", "include", "plugin")
WRITE_TEST_MARKER = ".wasmedgeup_write_test"
TEMP_LINK_SUFFIX = ".wasmedgeup-new"

_ATOMIC_LINK_REPLACE = os.name != "nt"


def probe_writable(path: Path, action: str, version: SemanticVersion | str) -> None:
    """Check that files can be created in a directory.

    The directory is created if needed and a uniquely named marker file is
    written and removed again.

    Raises:
        InsufficientPermissionsError: If the directory is not writable.
    """
    try:
        path.mkdir(parents=True, exist_ok=True)
        fd, marker = tempfile.mkstemp(prefix=WRITE_TEST_MARKER, dir=path)
        os.close(fd)
        os.unlink(marker)
    except OSError as e:
        logger.debug("write_probe_failed", path=str(path), error=str(e))
        raise InsufficientPermissionsError(str(path), action, str(version)) from e


def _remove_entry(path: Path) -> None:
    """Remove a file, a symlink or a real directory tree without following links."""
    if path.is_symlink():
        if os.name == "nt" and path.is_dir():
            os.rmdir(path)
        else:
            path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)
    elif path.exists():
        path.unlink()


class VersionStore:
    """Owns the install root: version directories and the current-version links.

    Example:
        >>> store = VersionStore(Path.home() / ".wasmedge")
        >>> store.install(SemanticVersion.parse("0.14.1"), extracted_root)
        >>> store.use(SemanticVersion.parse("0.14.1"))
        >>> store.current_version()
        SemanticVersion('0.14.1')
    """

    def __init__(self, root: Path, integration: ShellIntegration | None = None) -> None:
        """Initialize the store.

        Args:
            root: Install root.
            integration: Shell integration to clean up after the whole root is removed.
        """
        self._root = root
        self._integration = integration or NullShellIntegration()
        self._log = logger.bind(component="version_store", root=str(root))

    @property
    def root(self) -> Path:
        return self._root

    @property
    def versions_dir(self) -> Path:
        return self._root / VERSIONS_DIR

    def version_dir(self, version: SemanticVersion) -> Path:
        """Directory holding one installed version."""
        return self.versions_dir / str(version)

    def is_installed(self, version: SemanticVersion) -> bool:
        return self.version_dir(version).is_dir()

    def ensure_writable(self, action: str, version: SemanticVersion | str) -> None:
        """Check that the install root can be written, creating it if needed.

        Raises:
            InsufficientPermissionsError: If the root is not writable.
        """
        probe_writable(self._root, action, version)

    # Installation

    def install(self, version: SemanticVersion, source_root: Path) -> Path:
        """Copy an extracted distribution into ``versions/<version>``.

        ``lib64`` directories are stored as ``lib``. The ``bin``, ``lib``,
        ``include`` and ``plugin`` subdirectories always exist afterwards.
        Files left by an earlier, interrupted install are overwritten. The
        current version is not changed.

        Returns:
            The version directory.

        Raises:
            InsufficientPermissionsError: If the root is not writable.
            SymlinkPermissionError: If a symlink from the archive cannot be created.
            FilesystemError: If copying fails.
        """
        self.ensure_writable("install WasmEdge", version)
        target = self.version_dir(version)
        copied = copy_tree(source_root, target)

        for name in LINK_NAMES:
            try:
                (target / name).mkdir(exist_ok=True)
            except OSError as e:
                raise FilesystemError(str(target / name), "create directory", str(e)) from e

        self._log.info("version_installed", version=str(version), path=str(target), files=copied)
        return target

    # Switching

    def _link_pairs(self, version: SemanticVersion) -> list[tuple[Path, str]]:
        return [
            (self._root / name, str(PurePath(VERSIONS_DIR, str(version), name)))
            for name in LINK_NAMES
        ]

    def _create_link(self, target: str, link: Path) -> None:
        try:
            os.symlink(target, link, target_is_directory=True)
        except PermissionError as e:
            raise SymlinkPermissionError(str(link)) from e
        except OSError as e:
            raise FilesystemError(str(link), "create symbolic link", str(e)) from e

    def _swap_link(self, link: Path, target: str, staged: Path) -> None:
        """Point ``link`` at ``target`` using the pre-created ``staged`` link."""
        if link.exists() and not link.is_symlink():
            self._log.warning("replacing_stale_entry", path=str(link))
            _remove_entry(link)

        if _ATOMIC_LINK_REPLACE:
            os.replace(staged, link)
        else:
            # Windows cannot rename over an existing link
            _remove_entry(link)
            _remove_entry(staged)
            self._create_link(target, link)

    def use(self, version: SemanticVersion) -> None:
        """Make an installed version the current one.

        All four links are staged first and then swapped in. If any swap
        fails, links already switched are restored to their previous targets,
        so the root ends up fully on the new version or fully on the old state.

        Raises:
            VersionNotFoundError: If the version is not installed.
            SymlinkPermissionError: If the OS refuses to create symlinks.
            FilesystemError: If switching fails.
        """
        if not self.is_installed(version):
            raise VersionNotFoundError(str(version))

        pairs = self._link_pairs(version)
        previous = {
            link: (os.readlink(link) if link.is_symlink() else None) for link, _ in pairs
        }

        staged: dict[Path, Path] = {}
        switched: list[Path] = []
        try:
            for link, target in pairs:
                temp = link.with_name(link.name + TEMP_LINK_SUFFIX)
                _remove_entry(temp)
                self._create_link(target, temp)
                staged[link] = temp

            for link, target in pairs:
                self._swap_link(link, target, staged[link])
                switched.append(link)

        except (OSError, FilesystemError, SymlinkPermissionError) as e:
            self._log.error("switch_failed", version=str(version), error=str(e))
            self._rollback(switched, previous)
            for temp in staged.values():
                try:
                    _remove_entry(temp)
                except OSError:
                    self._log.warning("temp_link_cleanup_failed", path=str(temp))
            if isinstance(e, OSError):
                raise FilesystemError(str(self._root), "switch version links in", str(e)) from e
            raise

        self._log.info("version_activated", version=str(version))

    def _rollback(self, switched: list[Path], previous: dict[Path, str | None]) -> None:
        for link in switched:
            old_target = previous[link]
            try:
                _remove_entry(link)
                if old_target is not None:
                    os.symlink(old_target, link, target_is_directory=True)
            except OSError as e:
                self._log.error("rollback_failed", link=str(link), error=str(e))

    def current_version(self) -> SemanticVersion | None:
        """The version the ``bin`` link points into, or None."""
        link = self._root / "bin"
        if not link.is_symlink():
            return None

        target = Path(os.readlink(link))
        if not target.is_absolute():
            target = self._root / target
        try:
            relative = Path(os.path.normpath(target)).relative_to(os.path.normpath(self._root))
        except ValueError:
            return None

        parts = relative.parts
        if len(parts) < 2 or parts[0] != VERSIONS_DIR:
            return None
        return try_parse_version(parts[1])

    # Listing

    def list_installed(self) -> list[SemanticVersion]:
        """Installed versions, newest first."""
        if not self.versions_dir.is_dir():
            return []
        versions = [
            version
            for entry in self.versions_dir.iterdir()
            if entry.is_dir() and (version := try_parse_version(entry.name)) is not None
        ]
        return sorted(versions, reverse=True)

    def latest_installed(self) -> SemanticVersion | None:
        installed = self.list_installed()
        return installed[0] if installed else None

    # Removal

    def remove(self, version: SemanticVersion) -> RemovalResult:
        """Remove one installed version.

        When no version remains the whole root is removed and the shell
        integration is cleaned up. When the removed version was current, the
        latest remaining version becomes current.

        Raises:
            VersionNotFoundError: If the version is not installed. Nothing is
                changed in that case.
        """
        target = self.version_dir(version)
        if not target.is_dir():
            raise VersionNotFoundError(str(version))

        was_current = self.current_version() == version
        try:
            shutil.rmtree(target)
        except OSError as e:
            raise FilesystemError(str(target), "remove", str(e)) from e
        self._log.info("version_removed", version=str(version))

        result = RemovalResult(removed=[version])
        remaining = self.list_installed()
        if not remaining:
            result.root_removed = self._remove_root()
        elif was_current:
            result.new_current = remaining[0]
            self.use(remaining[0])
            self._log.info("current_version_fallback", version=str(remaining[0]))
        return result

    def remove_all(self) -> RemovalResult:
        """Remove every installed version and the install root.

        Raises:
            NothingToRemoveError: If no versions are installed.
        """
        installed = self.list_installed()
        if not installed:
            raise NothingToRemoveError(str(self._root))

        result = RemovalResult(removed=installed)
        result.root_removed = self._remove_root()
        return result

    def _remove_root(self) -> bool:
        """Delete the store's entries, then the root itself once it is empty.

        Returns:
            Whether the root directory no longer exists.
        """
        entries = [
            self.versions_dir,
            *(self._root / name for name in LINK_NAMES),
            *(self._root / (name + TEMP_LINK_SUFFIX) for name in LINK_NAMES),
            *self._root.glob(WRITE_TEST_MARKER + "*"),
        ]
        try:
            for entry in entries:
                _remove_entry(entry)
        except OSError as e:
            raise FilesystemError(str(self._root), "remove", str(e)) from e

        self._integration.deconfigure(self._root)

        try:
            self._root.rmdir()
        except FileNotFoundError:
            pass
        except OSError:
            remaining = sorted(entry.name for entry in self._root.iterdir())
            self._log.warning(
                "install_root_not_empty", path=str(self._root), remaining=remaining
            )
            return False

        self._log.info("install_root_removed")
        return True
