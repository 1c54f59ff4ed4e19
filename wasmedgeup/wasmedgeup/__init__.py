"""wasmedgeup Core Library.

Version and plugin lifecycle manager for the WasmEdge runtime: resolves
versions, downloads and verifies release archives, installs them side by side
and switches the current version through symlinks.

Module Overview:
    archive: Archive extraction and symlink-preserving tree copies
    assets: Release asset naming rules per version and platform
    config: YAML-based configuration management (XDG spec compliant)
    download_manager: HTTP fetcher with timeouts, retries and progress
    errors: Exception hierarchy with error kinds
    events: Progress events for rendering long-running steps
    installer: Runtime installation pipeline
    integrity: SHA-256 verification and checksum manifests
    interfaces: Abstract base classes for host collaborators
    models: Pydantic configuration and value objects
    platform: Host OS/architecture/libc detection
    plugins: Plugin install, removal and listing
    releases: Release listing and version resolution
    shell: Shell profile integration
    store: Version store and current-version symlinks
    version: Semantic version parsing and comparison
"""

from importlib.metadata import version as get_package_version

from wasmedgeup.archive import (
    copy_tree,
    extract_archive,
    normalize_relative_path,
    select_source_root,
)
from wasmedgeup.assets import (
    Asset,
    archive_name,
    install_name,
    plugin_platform_key,
    plugin_platform_keys,
    plugin_url,
    runtime_url,
)
from wasmedgeup.config import ConfigManager, get_config_dir, get_default_config_path
from wasmedgeup.download_manager import DownloadManager
from wasmedgeup.errors import (
    ArchiveExtractionError,
    ChecksumMismatchError,
    ChecksumNotFoundError,
    ErrorKind,
    FilesystemError,
    InsufficientPermissionsError,
    InvalidArchiveStructureError,
    InvalidVersionError,
    NoPluginsSpecifiedError,
    NoReleasesFoundError,
    NothingToRemoveError,
    RequestFailedError,
    SymlinkPermissionError,
    UnsupportedPlatformError,
    VersionNotFoundError,
    WasmedgeupError,
)
from wasmedgeup.events import Phase, ProgressCallback, ProgressEvent
from wasmedgeup.installer import RuntimeInstaller
from wasmedgeup.integrity import (
    lookup_checksum,
    parse_checksum_manifest,
    sha256_digest,
    verify_digest,
    verify_file,
)
from wasmedgeup.interfaces import NullShellIntegration, PlatformProbe, ShellIntegration
from wasmedgeup.models import (
    Arch,
    AvailablePlugin,
    DownloadResult,
    GlobalConfig,
    InstallResult,
    LibcKind,
    LogLevel,
    OsKind,
    PlatformDescriptor,
    PluginInstallResult,
    PluginRemovalResult,
    ReleaseInfo,
    RemovalResult,
)
from wasmedgeup.platform import HostPlatformProbe
from wasmedgeup.plugins import (
    PluginManager,
    PluginNaming,
    PluginRequest,
    find_plugin_shared_objects,
)
from wasmedgeup.releases import (
    GitHubReleasesSource,
    ReleasesFilter,
    ReleasesSource,
    VersionResolver,
)
from wasmedgeup.shell import ProfileShellIntegration, ShellKind
from wasmedgeup.store import VersionStore
from wasmedgeup.version import SemanticVersion, compare_versions, parse_version

__version__ = get_package_version("wasmedgeup")

__all__ = [
    "Arch",
    "ArchiveExtractionError",
    "Asset",
    "AvailablePlugin",
    "ChecksumMismatchError",
    "ChecksumNotFoundError",
    "ConfigManager",
    "DownloadManager",
    "DownloadResult",
    "ErrorKind",
    "FilesystemError",
    "GitHubReleasesSource",
    "GlobalConfig",
    "HostPlatformProbe",
    "InstallResult",
    "InsufficientPermissionsError",
    "InvalidArchiveStructureError",
    "InvalidVersionError",
    "LibcKind",
    "LogLevel",
    "NoPluginsSpecifiedError",
    "NoReleasesFoundError",
    "NothingToRemoveError",
    "NullShellIntegration",
    "OsKind",
    "Phase",
    "PlatformDescriptor",
    "PlatformProbe",
    "PluginInstallResult",
    "PluginManager",
    "PluginNaming",
    "PluginRemovalResult",
    "PluginRequest",
    "ProfileShellIntegration",
    "ProgressCallback",
    "ProgressEvent",
    "ReleaseInfo",
    "ReleasesFilter",
    "ReleasesSource",
    "RemovalResult",
    "RequestFailedError",
    "RuntimeInstaller",
    "SemanticVersion",
    "ShellIntegration",
    "ShellKind",
    "SymlinkPermissionError",
    "UnsupportedPlatformError",
    "VersionNotFoundError",
    "VersionResolver",
    "VersionStore",
    "WasmedgeupError",
    "__version__",
    "archive_name",
    "compare_versions",
    "copy_tree",
    "extract_archive",
    "find_plugin_shared_objects",
    "get_config_dir",
    "get_default_config_path",
    "install_name",
    "lookup_checksum",
    "normalize_relative_path",
    "parse_checksum_manifest",
    "parse_version",
    "plugin_platform_key",
    "plugin_platform_keys",
    "plugin_url",
    "runtime_url",
    "select_source_root",
    "sha256_digest",
    "verify_digest",
    "verify_file",
]
