"""Release asset naming rules.

Maps a runtime version and a platform descriptor to the exact archive and
plugin names published upstream. The rules encode historical naming changes:

- Ubuntu aarch64 builds exist from 0.13.5 onwards.
- Generic Linux builds moved from the manylinux2014 baseline to
  manylinux_2_28 with the 0.15.0 pre-releases.
- Darwin plugin archives are keyed by the Darwin kernel major version.

Every function here is pure: the output depends only on the arguments.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import UnsupportedPlatformError
from .models import Arch, LibcKind, OsKind, PlatformDescriptor
from .version import SemanticVersion

RUNTIME_NAME = "WasmEdge"
PLUGIN_ASSET_PREFIX = "WasmEdge-plugin-"

MANYLINUX2014 = "manylinux2014"
MANYLINUX_2_28 = "manylinux_2_28"
UBUNTU_PLUGIN_PREFIXES = ("ubuntu20_04", "ubuntu22_04")

UBUNTU_AARCH64_SINCE = SemanticVersion(0, 13, 5)
MANYLINUX_2_28_SINCE = SemanticVersion(0, 15, 0, ("rc", "0"))


def _darwin_arch(arch: Arch) -> str:
    return "arm64" if arch is Arch.AARCH64 else "x86_64"


def manylinux_tag(version: SemanticVersion) -> str:
    """Return the manylinux baseline used for a runtime version."""
    if version < MANYLINUX_2_28_SINCE:
        return MANYLINUX2014
    return MANYLINUX_2_28


def archive_extension(os_kind: OsKind) -> str:
    """Archive extension used for releases on an OS."""
    return "zip" if os_kind is OsKind.WINDOWS else "tar.gz"


def archive_name(version: SemanticVersion, platform: PlatformDescriptor) -> str:
    """Compute the runtime archive filename.

    Examples:
        >>> from wasmedgeup.models import Arch, OsKind, PlatformDescriptor
        >>> archive_name(SemanticVersion(0, 14, 1), PlatformDescriptor(OsKind.LINUX, Arch.X86_64))
        'WasmEdge-0.14.1-manylinux2014_x86_64.tar.gz'
    """
    prefix = f"{RUNTIME_NAME}-{version}"

    if platform.os_kind is OsKind.WINDOWS:
        return f"{prefix}-windows.zip"
    if platform.os_kind is OsKind.DARWIN:
        return f"{prefix}-darwin_{_darwin_arch(platform.arch)}.tar.gz"

    if platform.os_kind is OsKind.UBUNTU:
        if platform.arch is Arch.AARCH64 and version >= UBUNTU_AARCH64_SINCE:
            return f"{prefix}-ubuntu20.04_aarch64.tar.gz"
        if platform.arch is Arch.X86_64:
            return f"{prefix}-ubuntu20.04_x86_64.tar.gz"

    return f"{prefix}-{manylinux_tag(version)}_{platform.arch.value}.tar.gz"


def install_name(version: SemanticVersion, platform: PlatformDescriptor) -> str:
    """Top-level directory name expected inside the runtime archive."""
    if platform.os_kind is OsKind.DARWIN:
        os_part = "Darwin"
    elif platform.os_kind is OsKind.WINDOWS:
        os_part = "Windows"
    else:
        os_part = "Linux"
    return f"{RUNTIME_NAME}-{version}-{os_part}"


def plugin_platform_key(version: SemanticVersion, platform: PlatformDescriptor) -> str:
    """Compute the platform key used in plugin archive names.

    Raises:
        UnsupportedPlatformError: If no plugin builds exist for the platform.
    """
    if platform.os_kind is OsKind.WINDOWS:
        if platform.arch is not Arch.X86_64:
            raise UnsupportedPlatformError(platform.os_kind.value, platform.arch.value)
        return "windows_x86_64"

    if platform.os_kind is OsKind.DARWIN:
        arch = _darwin_arch(platform.arch)
        major = (platform.os_version or "").strip().split(".")[0]
        if major.isdigit():
            return f"darwin_{major}-{arch}"
        return f"darwin_{arch}"

    if platform.libc_kind is not LibcKind.GLIBC:
        raise UnsupportedPlatformError(
            f"{platform.os_kind.value} ({platform.libc_kind.value})", platform.arch.value
        )
    return f"{manylinux_tag(version)}_{platform.arch.value}"


@dataclass(frozen=True)
class Asset:
    """A downloadable runtime archive for one version and platform.

    Derived on demand and never stored.

    Attributes:
        version: Runtime version.
        archive_name: Exact download filename.
        install_name: Expected top-level directory inside the archive. Only a
            hint for locating the extracted tree.
    """

    version: SemanticVersion
    archive_name: str
    install_name: str

    @classmethod
    def for_platform(cls, version: SemanticVersion, platform: PlatformDescriptor) -> Asset:
        """Bundle the runtime archive names for a version and platform."""
        return cls(
            version=version,
            archive_name=archive_name(version, platform),
            install_name=install_name(version, platform),
        )


def runtime_url(base_url: str, asset: Asset) -> str:
    """Download URL of a runtime archive."""
    return f"{base_url.rstrip('/')}/{asset.version}/{asset.archive_name}"


def checksum_url(base_url: str, version: SemanticVersion, checksum_file: str) -> str:
    """Download URL of a release's checksum manifest."""
    return f"{base_url.rstrip('/')}/{version}/{checksum_file}"


def plugin_archive_name(name: str, plugin_version: str, platform_key: str, os_kind: OsKind) -> str:
    """Filename of a plugin archive."""
    extension = archive_extension(os_kind)
    return f"{PLUGIN_ASSET_PREFIX}{name}-{plugin_version}-{platform_key}.{extension}"


def plugin_url(
    base_url: str,
    name: str,
    plugin_version: str,
    platform_key: str,
    os_kind: OsKind,
) -> str:
    """Download URL of a plugin archive."""
    archive = plugin_archive_name(name, plugin_version, platform_key, os_kind)
    return f"{base_url.rstrip('/')}/{plugin_version}/{archive}"


def plugin_platform_keys(version: SemanticVersion, platform: PlatformDescriptor) -> list[str]:
    """Platform keys whose plugin builds run on a platform, preferred first.

    Ubuntu hosts also accept the Ubuntu-specific builds some releases publish.

    Raises:
        UnsupportedPlatformError: If no plugin builds exist for the platform.
    """
    keys = [plugin_platform_key(version, platform)]
    if platform.os_kind is OsKind.UBUNTU:
        keys.extend(f"{prefix}_{platform.arch.value}" for prefix in UBUNTU_PLUGIN_PREFIXES)
    return keys


def parse_plugin_asset_name(asset_name: str, plugin_version: str) -> tuple[str, str] | None:
    """Split a plugin archive name into its plugin name and platform key.

    Returns None for names that are not plugin archives of ``plugin_version``.

    Examples:
        >>> parse_plugin_asset_name(
        ...     "WasmEdge-plugin-wasi_nn-ggml-0.14.1-manylinux2014_x86_64.tar.gz", "0.14.1"
        ... )
        ('wasi_nn-ggml', 'manylinux2014_x86_64')
    """
    if not asset_name.startswith(PLUGIN_ASSET_PREFIX):
        return None
    rest = asset_name[len(PLUGIN_ASSET_PREFIX) :]
    name, sep, key = rest.partition(f"-{plugin_version}-")
    if not sep or not name:
        return None
    for extension in (".tar.gz", ".zip"):
        if key.endswith(extension):
            key = key[: -len(extension)]
            break
    else:
        return None
    return (name, key) if key else None
