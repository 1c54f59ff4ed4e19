"""SHA-256 integrity verification.

Downloaded runtime archives are checked against the ``SHA256SUM`` manifest
published with every release. Each manifest line has the form::

    <64 hex digits>  <filename>

A leading ``*`` on the filename (binary mode marker of ``sha256sum``) is
ignored.
"""

from __future__ import annotations

import asyncio
import hashlib
from typing import TYPE_CHECKING, BinaryIO

import structlog

from .errors import ChecksumMismatchError, ChecksumNotFoundError

if TYPE_CHECKING:
    from pathlib import Path

logger = structlog.get_logger(__name__)

HASH_CHUNK_SIZE = 8192  # 8 KB reads


def sha256_digest(handle: BinaryIO) -> str:
    """Compute the SHA-256 digest of an open binary file.

    Reads from the current position to the end of the file.

    Returns:
        Lowercase hex digest.
    """
    hasher = hashlib.sha256()
    while chunk := handle.read(HASH_CHUNK_SIZE):
        hasher.update(chunk)
    return hasher.hexdigest()


def verify_digest(handle: BinaryIO, expected: str) -> str:
    """Check an open file against an expected SHA-256 digest.

    The handle is hashed from offset 0 and rewound to offset 0 afterwards,
    whether or not the digest matches. The file itself is never deleted.

    Args:
        handle: Seekable binary file handle.
        expected: Expected hex digest (any case).

    Returns:
        The computed digest.

    Raises:
        ChecksumMismatchError: If the digests differ.
    """
    handle.seek(0)
    try:
        actual = sha256_digest(handle)
    finally:
        handle.seek(0)

    expected = expected.strip().lower()
    if actual != expected:
        raise ChecksumMismatchError(
            expected=expected, actual=actual, path=getattr(handle, "name", None)
        )
    return actual


async def verify_file(path: Path, expected: str) -> str:
    """Verify a file on disk in a worker thread.

    Returns:
        The computed digest.

    Raises:
        ChecksumMismatchError: If the digests differ.
    """

    def _verify() -> str:
        with path.open("rb") as handle:
            return verify_digest(handle, expected)

    digest = await asyncio.to_thread(_verify)
    logger.debug("checksum_verified", path=str(path), digest=digest)
    return digest


def parse_checksum_manifest(text: str) -> dict[str, str]:
    """Parse a checksum manifest into a filename to digest mapping.

    Lines that do not split into exactly two whitespace-separated tokens are
    ignored. When a filename appears more than once, the first entry wins.

    Examples:
        >>> parse_checksum_manifest("ABC  *WasmEdge-0.14.1-windows.zip\\n")
        {'WasmEdge-0.14.1-windows.zip': 'abc'}
    """
    manifest: dict[str, str] = {}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) != 2:
            continue
        digest, filename = parts
        filename = filename.removeprefix("*")
        if filename and filename not in manifest:
            manifest[filename] = digest.lower()
    return manifest


def lookup_checksum(manifest: dict[str, str], version: str, asset: str) -> str:
    """Return the digest for an asset.

    Raises:
        ChecksumNotFoundError: If the manifest has no entry for the asset.
    """
    try:
        return manifest[asset]
    except KeyError:
        raise ChecksumNotFoundError(version=version, asset=asset) from None
