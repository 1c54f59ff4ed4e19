"""Host platform detection."""

from __future__ import annotations

import platform
from pathlib import Path

import structlog

from .errors import UnsupportedPlatformError
from .interfaces import PlatformProbe
from .models import Arch, LibcKind, OsKind, PlatformDescriptor

logger = structlog.get_logger(__name__)

OS_ALIASES: dict[str, OsKind] = {
    "linux": OsKind.LINUX,
    "ubuntu": OsKind.UBUNTU,
    "darwin": OsKind.DARWIN,
    "macos": OsKind.DARWIN,
    "windows": OsKind.WINDOWS,
}

ARCH_ALIASES: dict[str, Arch] = {
    "x86_64": Arch.X86_64,
    "amd64": Arch.X86_64,
    "aarch64": Arch.AARCH64,
    "arm64": Arch.AARCH64,
}

# Ubuntu builds target 20.04 and newer
MIN_UBUNTU_RELEASE = (20, 4)


def parse_os_kind(value: str) -> OsKind:
    """Map an OS name or alias to an OsKind.

    Raises:
        UnsupportedPlatformError: If the name is unknown.
    """
    try:
        return OS_ALIASES[value.strip().lower()]
    except KeyError:
        raise UnsupportedPlatformError(value, platform.machine() or "unknown") from None


def parse_arch(value: str) -> Arch:
    """Map an architecture name or alias to an Arch.

    Raises:
        UnsupportedPlatformError: If the name is unknown.
    """
    try:
        return ARCH_ALIASES[value.strip().lower()]
    except KeyError:
        raise UnsupportedPlatformError(platform.system() or "unknown", value) from None


def _read_key_values(path: Path) -> dict[str, str]:
    try:
        content = path.read_text()
    except OSError:
        return {}
    values: dict[str, str] = {}
    for line in content.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            values[key.strip().upper()] = value.strip().strip('"')
    return values


def ubuntu_release(etc_dir: Path) -> tuple[int, int] | None:
    """Ubuntu release (major, minor) from ``lsb-release``, or None elsewhere."""
    values = _read_key_values(etc_dir / "lsb-release")
    if values.get("DISTRIB_ID", "").lower() != "ubuntu":
        return None
    major, _, minor = values.get("DISTRIB_RELEASE", "").partition(".")
    if major.isdigit() and minor.isdigit():
        return int(major), int(minor)
    return None


class HostPlatformProbe(PlatformProbe):
    """Detects the OS, architecture, C library and OS version of this machine.

    Args:
        etc_dir: Directory holding ``lsb-release`` and ``os-release``.
        lib_dirs: Directories searched for a musl dynamic loader.
    """

    def __init__(
        self,
        etc_dir: Path = Path("/etc"),
        lib_dirs: tuple[Path, ...] = (Path("/lib"), Path("/usr/lib")),
    ) -> None:
        self._etc_dir = etc_dir
        self._lib_dirs = lib_dirs

    def detect(
        self,
        os_override: str | None = None,
        arch_override: str | None = None,
    ) -> PlatformDescriptor:
        """Describe the host, optionally overriding the OS or architecture.

        Raises:
            UnsupportedPlatformError: If the OS or architecture is unknown.
        """
        os_kind = parse_os_kind(os_override) if os_override else self._detect_os()
        arch = parse_arch(arch_override) if arch_override else parse_arch(platform.machine())

        on_host = self._is_host(os_kind)
        if os_kind not in (OsKind.LINUX, OsKind.UBUNTU):
            libc_kind = LibcKind.UNKNOWN
        elif on_host:
            libc_kind = self._detect_libc()
        else:
            # Release builds for Linux are glibc builds
            libc_kind = LibcKind.GLIBC

        descriptor = PlatformDescriptor(
            os_kind=os_kind,
            arch=arch,
            libc_kind=libc_kind,
            os_version=self._detect_os_version(os_kind) if on_host else None,
        )
        logger.debug(
            "platform_detected",
            os=descriptor.os_kind.value,
            arch=descriptor.arch.value,
            libc=descriptor.libc_kind.value,
            os_version=descriptor.os_version,
        )
        return descriptor

    def _is_host(self, os_kind: OsKind) -> bool:
        """Whether an OS kind belongs to the family of the running system."""
        host = OS_ALIASES.get(platform.system().lower())
        if host is OsKind.LINUX:
            return os_kind in (OsKind.LINUX, OsKind.UBUNTU)
        return host is os_kind

    def _detect_os(self) -> OsKind:
        os_kind = parse_os_kind(platform.system())
        if os_kind is OsKind.LINUX:
            release = ubuntu_release(self._etc_dir)
            if release is not None and release >= MIN_UBUNTU_RELEASE:
                return OsKind.UBUNTU
        return os_kind

    def _detect_libc(self) -> LibcKind:
        name, _ = platform.libc_ver()
        if name == "glibc":
            return LibcKind.GLIBC
        for lib_dir in self._lib_dirs:
            if lib_dir.is_dir() and any(lib_dir.glob("ld-musl-*")):
                return LibcKind.MUSL
        return LibcKind.UNKNOWN

    def _detect_os_version(self, os_kind: OsKind) -> str | None:
        if os_kind is OsKind.DARWIN:
            return platform.release() or None
        if os_kind is OsKind.WINDOWS:
            return platform.version() or None
        return _read_key_values(self._etc_dir / "os-release").get("VERSION_ID") or None
