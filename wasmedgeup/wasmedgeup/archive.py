"""Archive extraction and tree copying.

Runtime and plugin archives are extracted into a staging directory, the
meaningful part of the extracted tree is located, and its contents are copied
into the version store. Symbolic links inside the archives (for example the
versioned ``libwasmedge.so`` links) are recreated with their original
relative targets.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import tarfile
import zipfile
from pathlib import Path, PurePath

import structlog

from .errors import (
    ArchiveExtractionError,
    FilesystemError,
    InvalidArchiveStructureError,
    SymlinkPermissionError,
)

logger = structlog.get_logger(__name__)

# Entries allowed at the top of an archive without a wrapping directory
LAYOUT_ENTRIES = frozenset({"bin", "lib64", "include", "lib"})

SOURCE_ROOT_PREFIX = "WasmEdge"


def archive_format(archive: Path) -> str:
    """Return the archive format ("zip" or "tar.gz") from the filename.

    Raises:
        ArchiveExtractionError: If the extension is not supported.
    """
    name = archive.name.lower()
    if name.endswith(".zip"):
        return "zip"
    if name.endswith((".tar.gz", ".tgz")):
        return "tar.gz"
    raise ArchiveExtractionError(str(archive), "unsupported archive format")


def _extract_sync(archive: Path, dest: Path) -> list[str]:
    fmt = archive_format(archive)
    dest.mkdir(parents=True, exist_ok=True)
    try:
        if fmt == "zip":
            with zipfile.ZipFile(archive, "r") as zf:
                members = zf.namelist()
                zf.extractall(dest)
        else:
            with tarfile.open(archive, "r:gz") as tar:
                members = tar.getnames()
                tar.extractall(dest, filter="data")
    except (tarfile.TarError, zipfile.BadZipFile, EOFError) as e:
        raise ArchiveExtractionError(str(archive), str(e)) from e
    except OSError as e:
        raise FilesystemError(str(dest), "extract archive into", str(e)) from e
    return members


async def extract_archive(archive: Path, dest: Path) -> list[str]:
    """Extract an archive into a directory.

    Tar members are extracted with the ``data`` filter, which keeps symlinks
    inside the tree and refuses absolute paths and path escapes.

    Args:
        archive: ``.zip``, ``.tar.gz`` or ``.tgz`` file.
        dest: Destination directory, created if missing.

    Returns:
        Names of the archive members.

    Raises:
        ArchiveExtractionError: If the archive is corrupt or unsupported.
        FilesystemError: If writing the extracted files fails.
    """
    members = await asyncio.to_thread(_extract_sync, archive, dest)
    logger.debug("archive_extracted", archive=str(archive), dest=str(dest), members=len(members))
    return members


def select_source_root(extracted: Path, install_name: str) -> Path:
    """Locate the directory whose contents belong in a version directory.

    Tried in order:

    1. ``extracted/<install_name>`` if it is a directory.
    2. The only child directory whose name starts with ``WasmEdge``. Files
       and other directories beside it (for example ``__MACOSX`` metadata or
       a README) are ignored.
    3. ``extracted`` itself, if its entries are a non-empty subset of
       ``bin``, ``lib64``, ``include`` and ``lib``.

    Raises:
        InvalidArchiveStructureError: Naming the first unexpected entry.
    """
    candidate = extracted / install_name
    if candidate.is_dir():
        return candidate

    children = sorted(extracted.iterdir(), key=lambda p: p.name)
    prefixed = [
        child
        for child in children
        if child.is_dir() and not child.is_symlink() and child.name.startswith(SOURCE_ROOT_PREFIX)
    ]
    if len(prefixed) == 1:
        return prefixed[0]

    if not children:
        raise InvalidArchiveStructureError("<empty archive>")

    for child in children:
        if child.name not in LAYOUT_ENTRIES:
            raise InvalidArchiveStructureError(child.name)
    return extracted


def normalize_relative_path(path: PurePath) -> PurePath:
    """Rewrite every ``lib64`` segment of a relative path to ``lib``.

    Examples:
        >>> normalize_relative_path(PurePath("lib64/libwasmedge.so"))
        PurePosixPath('lib/libwasmedge.so')
    """
    return type(path)(*("lib" if part == "lib64" else part for part in path.parts))


def _replace_with_symlink(target: str, link: Path) -> None:
    if link.is_symlink() or link.is_file():
        link.unlink()
    try:
        os.symlink(target, link)
    except PermissionError as e:
        raise SymlinkPermissionError(str(link)) from e


def copy_tree(src: Path, dst: Path, normalize: bool = True) -> int:
    """Copy a directory tree without following symbolic links.

    Regular files are copied with their metadata; symbolic links are
    recreated with their original targets. Files and links already present
    at a destination path are replaced. A link whose destination is, or will
    be, a real directory (for example ``lib64 -> lib`` next to a real
    ``lib``) is skipped with a warning; directories are never replaced by
    links.

    Args:
        src: Source directory.
        dst: Destination directory, created if missing.
        normalize: Rewrite ``lib64`` path segments to ``lib``.

    Returns:
        Number of files and links copied.

    Raises:
        SymlinkPermissionError: If the OS refuses to create a symbolic link.
        FilesystemError: If any other file operation fails.
    """
    copied = 0
    try:
        dst.mkdir(parents=True, exist_ok=True)
        for dirpath, dirnames, filenames in os.walk(src, followlinks=False):
            current = Path(dirpath)
            relative_dir = current.relative_to(src)
            if normalize:
                relative_dir = normalize_relative_path(relative_dir)
            target_dir = dst / relative_dir
            target_dir.mkdir(parents=True, exist_ok=True)

            # os.walk lists symlinks to directories as dirnames; copy them as links
            entries = list(filenames)
            for name in list(dirnames):
                if (current / name).is_symlink():
                    dirnames.remove(name)
                    entries.append(name)
            real_dirs = {"lib" if normalize and n == "lib64" else n for n in dirnames}

            for name in entries:
                source = current / name
                target_name = "lib" if normalize and name == "lib64" else name
                target = target_dir / target_name
                if source.is_symlink():
                    link_target = os.readlink(source)
                    if target_name in real_dirs or (target.is_dir() and not target.is_symlink()):
                        logger.warning(
                            "symlink_skipped",
                            path=str(target),
                            target=link_target,
                            reason="directory exists at destination",
                        )
                        continue
                    _replace_with_symlink(link_target, target)
                else:
                    if target.is_symlink():
                        target.unlink()
                    shutil.copy2(source, target, follow_symlinks=False)
                copied += 1
    except OSError as e:
        raise FilesystemError(getattr(e, "filename", None) or str(dst), "copy", str(e)) from e

    return copied
