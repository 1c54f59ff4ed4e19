"""Exception hierarchy for wasmedgeup.

Every error raised by the library derives from :class:`WasmedgeupError` and
carries an :class:`ErrorKind` so callers can decide how to present it and
whether retrying makes sense.

Kinds:
    input: bad version strings, unknown local versions, empty plugin lists
    network: failed requests, missing releases or checksum manifests
    integrity: checksum mismatches
    filesystem: permission problems and failed file operations
    archive: unexpected archive layouts and corrupt archives
    platform: OS/arch/libc combinations without a release asset
"""

from __future__ import annotations

import os
from enum import Enum


class ErrorKind(str, Enum):
    """Category of a wasmedgeup error."""

    INPUT = "input"
    NETWORK = "network"
    INTEGRITY = "integrity"
    FILESYSTEM = "filesystem"
    ARCHIVE = "archive"
    PLATFORM = "platform"


class WasmedgeupError(Exception):
    """Base exception for all wasmedgeup errors."""

    kind: ErrorKind = ErrorKind.INPUT

    def __init__(self, message: str, retryable: bool = False) -> None:
        """Initialize the error.

        Args:
            message: Human-readable error message.
            retryable: Whether repeating the operation may succeed.
        """
        super().__init__(message)
        self.retryable = retryable


# Input errors


class InvalidVersionError(WasmedgeupError):
    """A version string is not a valid semantic version."""

    def __init__(self, token: str) -> None:
        super().__init__(f"Invalid semantic version specifier: '{token}'")
        self.token = token


class VersionNotFoundError(WasmedgeupError):
    """The requested version is not installed."""

    def __init__(self, version: str) -> None:
        super().__init__(f"WasmEdge version {version} is not installed")
        self.version = version


class NoPluginsSpecifiedError(WasmedgeupError):
    """A plugin operation was requested without any plugin names."""

    def __init__(self) -> None:
        super().__init__("No plugins specified")


class NothingToRemoveError(WasmedgeupError):
    """Removal was requested but nothing is installed."""

    def __init__(self, root: str) -> None:
        super().__init__(f"No WasmEdge versions are installed in '{root}'")
        self.root = root


# Network errors


class RequestFailedError(WasmedgeupError):
    """An HTTP request failed or returned a non-success status."""

    kind = ErrorKind.NETWORK

    def __init__(
        self,
        resource: str,
        url: str,
        reason: str,
        status: int | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(f"Unable to request resource '{resource}' ({url}): {reason}", retryable)
        self.resource = resource
        self.url = url
        self.reason = reason
        self.status = status


class NoReleasesFoundError(WasmedgeupError):
    """The releases source returned no matching releases."""

    kind = ErrorKind.NETWORK

    def __init__(self) -> None:
        super().__init__("No WasmEdge releases found", retryable=True)


class ChecksumNotFoundError(WasmedgeupError):
    """No checksum is published for the requested asset."""

    kind = ErrorKind.NETWORK

    def __init__(self, version: str, asset: str) -> None:
        super().__init__(
            f"No checksum found for '{asset}' in release {version}; "
            "re-run with --no-verify to install without verification"
        )
        self.version = version
        self.asset = asset


# Integrity errors


class ChecksumMismatchError(WasmedgeupError):
    """A downloaded file does not match its published digest."""

    kind = ErrorKind.INTEGRITY

    def __init__(self, expected: str, actual: str, path: str | None = None) -> None:
        location = f" for '{path}'" if path else ""
        super().__init__(f"Checksum mismatch{location}: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual
        self.path = path


# Filesystem errors


class FilesystemError(WasmedgeupError):
    """A file operation failed."""

    kind = ErrorKind.FILESYSTEM

    def __init__(self, path: str, action: str, reason: str) -> None:
        super().__init__(f"Failed to {action} '{path}': {reason}")
        self.path = path
        self.action = action


class InsufficientPermissionsError(WasmedgeupError):
    """The install root is not writable by the current user."""

    kind = ErrorKind.FILESYSTEM

    def __init__(self, path: str, action: str, version: str) -> None:
        if os.name == "nt":
            system_dir = "C:\\Program Files\\WasmEdge"
            remedy = (
                f"re-run from an Administrator shell, e.g. "
                f"`wasmedgeup install {version} --path \"{system_dir}\"`"
            )
        else:
            system_dir = "/usr/local"
            remedy = (
                "re-run with elevated privileges, e.g. "
                f"`sudo wasmedgeup install {version} --path {system_dir}`"
            )
        super().__init__(
            f"Insufficient permissions to {action} at '{path}'. To install system-wide, {remedy}; "
            "otherwise pass --path pointing to a directory you own (default: ~/.wasmedge)."
        )
        self.path = path
        self.action = action
        self.version = version
        self.system_dir = system_dir


class SymlinkPermissionError(WasmedgeupError):
    """Creating a symbolic link was refused by the operating system."""

    kind = ErrorKind.FILESYSTEM

    def __init__(self, path: str) -> None:
        if os.name == "nt":
            hint = "enable Developer Mode or run from an Administrator shell"
        else:
            hint = "check the directory permissions or re-run with elevated privileges"
        super().__init__(f"Not permitted to create symbolic link '{path}'; {hint}")
        self.path = path


# Archive errors


class InvalidArchiveStructureError(WasmedgeupError):
    """An extracted archive does not have the expected layout."""

    kind = ErrorKind.ARCHIVE

    def __init__(self, found_file: str) -> None:
        super().__init__(f"Unexpected archive structure: found '{found_file}'")
        self.found_file = found_file


class ArchiveExtractionError(WasmedgeupError):
    """An archive could not be extracted."""

    kind = ErrorKind.ARCHIVE

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Unable to extract archive '{path}': {reason}")
        self.path = path


# Platform errors


class UnsupportedPlatformError(WasmedgeupError):
    """No release asset exists for the OS/architecture combination."""

    kind = ErrorKind.PLATFORM

    def __init__(self, os_kind: str, arch: str) -> None:
        super().__init__(f"Unsupported platform: os={os_kind}, arch={arch}")
        self.os = os_kind
        self.arch = arch
