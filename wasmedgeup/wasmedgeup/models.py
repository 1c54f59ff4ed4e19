"""Core data models for wasmedgeup.

This module defines the Pydantic configuration model and the small immutable
value objects passed between the resolver, the asset namer, the fetcher, the
version store and the plugin manager.
"""

from __future__ import annotations

import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .assets import Asset
    from .version import SemanticVersion

RELEASE_BASE_URL = "https://github.com/WasmEdge/WasmEdge/releases/download"
RELEASES_API_URL = "https://api.github.com/repos/WasmEdge/WasmEdge/releases"


class OsKind(str, Enum):
    """Operating system family used for asset selection."""

    LINUX = "Linux"
    UBUNTU = "Ubuntu"
    DARWIN = "Darwin"
    WINDOWS = "Windows"


class Arch(str, Enum):
    """CPU architecture."""

    X86_64 = "x86_64"
    AARCH64 = "aarch64"


class LibcKind(str, Enum):
    """C library flavour of a Linux host."""

    GLIBC = "glibc"
    MUSL = "musl"
    UNKNOWN = "unknown"


class LogLevel(str, Enum):
    """Log level for console output."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class PlatformDescriptor:
    """Description of the host a runtime is installed for.

    Produced once per invocation by a platform probe and never mutated.

    Attributes:
        os_kind: Operating system family.
        arch: CPU architecture.
        libc_kind: C library flavour (meaningful on Linux only).
        os_version: OS version string, e.g. "22.04" on Ubuntu or the Darwin
            kernel release "23.4.0" on macOS.
    """

    os_kind: OsKind
    arch: Arch
    libc_kind: LibcKind = LibcKind.UNKNOWN
    os_version: str | None = None


@dataclass(frozen=True)
class ReleaseInfo:
    """One entry of the upstream release listing."""

    version: SemanticVersion
    published_at: datetime | None = None
    prerelease: bool = False


@dataclass
class DownloadResult:
    """Result of a completed download.

    Attributes:
        url: Source URL.
        path: Local path of the downloaded file.
        bytes_downloaded: Total bytes written.
        bytes_total: Declared content length, if the server sent one.
        duration_seconds: Time taken for the download.
    """

    url: str
    path: Path
    bytes_downloaded: int = 0
    bytes_total: int | None = None
    duration_seconds: float = 0.0


@dataclass
class InstallResult:
    """Outcome of a runtime installation."""

    version: SemanticVersion
    path: Path
    asset: Asset
    checksum_verified: bool = False


@dataclass
class RemovalResult:
    """Outcome of a version removal.

    Attributes:
        removed: Versions whose directories were deleted.
        new_current: Version switched to after removing the active one.
        root_removed: Whether the whole install root was deleted.
    """

    removed: list[SemanticVersion] = field(default_factory=list)
    new_current: SemanticVersion | None = None
    root_removed: bool = False


@dataclass
class PluginInstallResult:
    """Outcome of installing a single plugin."""

    name: str
    version: str
    installed: list[Path] = field(default_factory=list)
    archive_entries: list[str] = field(default_factory=list)


@dataclass
class PluginRemovalResult:
    """Outcome of removing plugins by name."""

    removed: list[Path] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class AvailablePlugin:
    """A plugin build published for a runtime release."""

    name: str
    version: str
    platform_key: str


class GlobalConfig(BaseModel):
    """Global configuration for wasmedgeup."""

    install_path: Path = Field(
        default_factory=lambda: Path.home() / ".wasmedge",
        description="Install root holding versions/ and the current-version symlinks",
    )
    tmpdir: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()),
        description="Directory for staging downloads and extracted archives",
    )
    connect_timeout: float = Field(default=15, description="Connection timeout in seconds")
    request_timeout: float = Field(default=90, description="Overall request timeout in seconds")
    max_retries: int = Field(default=2, description="Retry attempts for failed downloads")
    retry_delay: float = Field(
        default=1.0,
        description="Initial delay between retries in seconds (exponential backoff)",
    )
    release_base_url: str = Field(
        default=RELEASE_BASE_URL, description="Base URL for release downloads"
    )
    releases_api_url: str = Field(
        default=RELEASES_API_URL, description="GitHub API endpoint listing releases"
    )
    checksum_file: str = Field(
        default="SHA256SUM", description="Name of the per-release checksum manifest"
    )
    verify_checksum: bool = Field(
        default=True, description="Verify downloaded archives against the checksum manifest"
    )
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Console log level")
