"""Shared test fixtures for CLI tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
import structlog

from wasmedgeup import Arch, HostPlatformProbe, LibcKind, OsKind, PlatformDescriptor

if TYPE_CHECKING:
    from collections.abc import Generator
    from pathlib import Path

LINUX_X86 = PlatformDescriptor(OsKind.LINUX, Arch.X86_64, LibcKind.GLIBC)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Isolate tests from the real home directory and shell startup files.

    This fixture is applied automatically to all tests in this module.
    """
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("SHELL", "/bin/sh")
    monkeypatch.delenv("ZDOTDIR", raising=False)

    yield home

    structlog.reset_defaults()


@pytest.fixture(autouse=True)
def fixed_platform(monkeypatch: pytest.MonkeyPatch) -> PlatformDescriptor:
    """Report a glibc x86_64 Linux host regardless of where tests run."""
    monkeypatch.setattr(HostPlatformProbe, "detect", lambda self, *args, **kwargs: LINUX_X86)
    return LINUX_X86


@pytest.fixture
def install_root(tmp_path: Path) -> Path:
    return tmp_path / "wasmedge"


@pytest.fixture
def runtime_source(tmp_path: Path) -> Path:
    """An extracted runtime distribution on disk."""
    root = tmp_path / "extracted" / "WasmEdge-Linux"
    (root / "bin").mkdir(parents=True)
    (root / "lib").mkdir()
    (root / "bin" / "wasmedge").write_text("#!/bin/sh\n")
    (root / "lib" / "libwasmedge.so.0").write_bytes(b"\x7fELF")
    return root
