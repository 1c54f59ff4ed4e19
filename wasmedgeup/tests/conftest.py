"""Shared test fixtures for the wasmedgeup core."""

from __future__ import annotations

import asyncio
import hashlib
import io
import json
import tarfile
import zipfile
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import pytest
import structlog

from wasmedgeup.errors import ChecksumNotFoundError, RequestFailedError
from wasmedgeup.integrity import parse_checksum_manifest
from wasmedgeup.models import DownloadResult

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Generator
    from pathlib import Path

    from wasmedgeup.events import ProgressCallback


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Isolate tests from the real home directory and shell profiles.

    HOME and XDG_CONFIG_HOME point into a temporary directory, the login
    shell is plain sh and ZDOTDIR is unset.
    """
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("SHELL", "/bin/sh")
    monkeypatch.delenv("ZDOTDIR", raising=False)

    yield home

    structlog.reset_defaults()


# Fake aiohttp


class FakeContent:
    def __init__(self, chunks: list[bytes]) -> None:
        self._chunks = chunks

    async def iter_chunked(self, size: int) -> AsyncIterator[bytes]:
        for chunk in self._chunks:
            yield chunk


class FakeResponse:
    """Stand-in for aiohttp.ClientResponse."""

    def __init__(
        self,
        status: int = 200,
        body: bytes | str = b"",
        chunks: list[bytes] | None = None,
        reason: str = "OK",
        content_length: int | None = -1,
    ) -> None:
        self.status = status
        self.reason = reason
        self._body = body.encode() if isinstance(body, str) else body
        self.content = FakeContent(chunks if chunks is not None else [self._body])
        self.content_length = len(self._body) if content_length == -1 else content_length

    async def __aenter__(self) -> FakeResponse:
        return self

    async def __aexit__(self, *exc_info: object) -> bool:
        return False

    async def text(self) -> str:
        return self._body.decode()

    async def json(self, content_type: str | None = "application/json") -> Any:
        return json.loads(self._body)


@dataclass
class FakeHttp:
    """Queue of responses served by patched aiohttp sessions.

    Each queued item is a FakeResponse or an exception raised by ``get``.
    """

    responses: list[FakeResponse | BaseException] = field(default_factory=list)
    calls: list[tuple[str, dict[str, Any] | None]] = field(default_factory=list)

    def queue(self, *items: FakeResponse | BaseException) -> None:
        self.responses.extend(items)

    def add(self, **kwargs: Any) -> FakeResponse:
        """Queue a FakeResponse built from keyword arguments."""
        response = FakeResponse(**kwargs)
        self.responses.append(response)
        return response


class FakeSession:
    def __init__(self, http: FakeHttp) -> None:
        self._http = http

    async def __aenter__(self) -> FakeSession:
        return self

    async def __aexit__(self, *exc_info: object) -> bool:
        return False

    def get(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> FakeResponse:
        self._http.calls.append((url, params))
        item = self._http.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


@pytest.fixture
def fake_http(monkeypatch: pytest.MonkeyPatch) -> FakeHttp:
    """Patch aiohttp.ClientSession to serve queued responses."""
    http = FakeHttp()
    monkeypatch.setattr("aiohttp.ClientSession", lambda *args, **kwargs: FakeSession(http))
    return http


# Fake fetcher


class FakeDownloadManager:
    """Serves downloads and text bodies from an in-memory URL map."""

    def __init__(self, files: dict[str, bytes] | None = None) -> None:
        self.files = files or {}
        self.downloads: list[str] = []
        self.destinations: list[Path] = []

    async def download(
        self,
        url: str,
        destination: Path,
        resource: str | None = None,
        progress: ProgressCallback | None = None,
    ) -> DownloadResult:
        self.downloads.append(url)
        self.destinations.append(destination)
        await asyncio.sleep(0)
        if url not in self.files:
            name = resource or destination.name
            raise RequestFailedError(name, url, "HTTP error 404", 404, False)
        data = self.files[url]
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(data)
        return DownloadResult(url=url, path=destination, bytes_downloaded=len(data))

    async def fetch_text(self, url: str, resource: str) -> str:
        if url not in self.files:
            raise RequestFailedError(resource, url, "HTTP error 404", 404, False)
        return self.files[url].decode()

    async def fetch_checksum_manifest(self, url: str, version: str, asset: str) -> dict[str, str]:
        if url not in self.files:
            raise ChecksumNotFoundError(version=version, asset=asset)
        return parse_checksum_manifest(self.files[url].decode())


# Archive builders


def _add_file(tar: tarfile.TarFile, name: str, data: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mode = 0o755 if "/bin/" in f"/{name}" else 0o644
    tar.addfile(info, io.BytesIO(data))


def _add_symlink(tar: tarfile.TarFile, name: str, target: str) -> None:
    info = tarfile.TarInfo(name)
    info.type = tarfile.SYMTYPE
    info.linkname = target
    tar.addfile(info)


def build_tar_gz(
    path: Path,
    files: dict[str, bytes],
    symlinks: dict[str, str] | None = None,
) -> bytes:
    """Write a tar.gz archive and return its bytes."""
    with tarfile.open(path, "w:gz") as tar:
        for name, data in files.items():
            _add_file(tar, name, data)
        for name, target in (symlinks or {}).items():
            _add_symlink(tar, name, target)
    return path.read_bytes()


def build_zip(path: Path, files: dict[str, bytes]) -> bytes:
    """Write a zip archive and return its bytes."""
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in files.items():
            zf.writestr(name, data)
    return path.read_bytes()


def runtime_tree(prefix: str) -> tuple[dict[str, bytes], dict[str, str]]:
    """Files and symlinks of a minimal runtime distribution under ``prefix``."""
    base = f"{prefix}/" if prefix else ""
    files = {
        f"{base}bin/wasmedge": b"#!/bin/sh\necho wasmedge\n",
        f"{base}include/wasmedge/wasmedge.h": b"/* header */\n",
        f"{base}lib64/libwasmedge.so.0.1.0": b"\x7fELF library",
    }
    symlinks = {
        f"{base}lib64/libwasmedge.so.0": "libwasmedge.so.0.1.0",
        f"{base}lib64/libwasmedge.so": "libwasmedge.so.0",
    }
    return files, symlinks


@pytest.fixture
def make_runtime_archive(tmp_path: Path) -> Callable[..., tuple[Path, str]]:
    """Build a runtime tar.gz; returns its path and SHA-256 digest."""

    def _make(archive_name: str, prefix: str) -> tuple[Path, str]:
        source = tmp_path / "archives"
        source.mkdir(exist_ok=True)
        files, symlinks = runtime_tree(prefix)
        data = build_tar_gz(source / archive_name, files, symlinks)
        return source / archive_name, hashlib.sha256(data).hexdigest()

    return _make


@pytest.fixture
def extracted_runtime(tmp_path: Path) -> Callable[[str], Path]:
    """Create an extracted runtime tree on disk and return its root."""

    def _make(name: str = "WasmEdge-0.14.1-Linux") -> Path:
        root = tmp_path / "extracted" / name
        files, symlinks = runtime_tree("")
        for relative, data in files.items():
            target = root / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        for relative, link_target in symlinks.items():
            (root / relative).symlink_to(link_target)
        return root

    return _make


@pytest.fixture
def fake_downloads() -> FakeDownloadManager:
    return FakeDownloadManager()


@pytest.fixture
def tar_gz() -> Callable[..., bytes]:
    return build_tar_gz


@pytest.fixture
def zip_archive() -> Callable[..., bytes]:
    return build_zip
