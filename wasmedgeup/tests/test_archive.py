"""Tests for archive extraction and tree copying."""

from __future__ import annotations

import os
from pathlib import Path, PurePosixPath, PureWindowsPath

import pytest

from wasmedgeup.archive import (
    archive_format,
    copy_tree,
    extract_archive,
    normalize_relative_path,
    select_source_root,
)
from wasmedgeup.errors import (
    ArchiveExtractionError,
    ErrorKind,
    InvalidArchiveStructureError,
)


class TestArchiveFormat:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [("a.zip", "zip"), ("a.tar.gz", "tar.gz"), ("a.tgz", "tar.gz"), ("A.ZIP", "zip")],
    )
    def test_known_formats(self, name: str, expected: str) -> None:
        assert archive_format(Path(name)) == expected

    def test_unknown_format(self) -> None:
        with pytest.raises(ArchiveExtractionError):
            archive_format(Path("a.tar.xz"))


class TestExtractArchive:
    """Tests for extract_archive function."""

    @pytest.mark.asyncio
    async def test_extract_tar_gz_preserves_symlinks(
        self, tmp_path: Path, make_runtime_archive
    ) -> None:
        archive, _ = make_runtime_archive("rt.tar.gz", "WasmEdge-0.14.1-Linux")
        dest = tmp_path / "out"

        members = await extract_archive(archive, dest)

        lib = dest / "WasmEdge-0.14.1-Linux" / "lib64"
        assert "WasmEdge-0.14.1-Linux/bin/wasmedge" in members
        assert (lib / "libwasmedge.so").is_symlink()
        assert os.readlink(lib / "libwasmedge.so") == "libwasmedge.so.0"
        assert (lib / "libwasmedge.so").read_bytes() == b"\x7fELF library"

    @pytest.mark.asyncio
    async def test_extract_zip(self, tmp_path: Path, zip_archive) -> None:
        archive = tmp_path / "plugin.zip"
        zip_archive(archive, {"lib/wasmedgePluginwasi_crypto.dll": b"dll"})

        members = await extract_archive(archive, tmp_path / "out")

        assert members == ["lib/wasmedgePluginwasi_crypto.dll"]
        assert (tmp_path / "out" / "lib" / "wasmedgePluginwasi_crypto.dll").read_bytes() == b"dll"

    @pytest.mark.asyncio
    async def test_corrupt_archive(self, tmp_path: Path) -> None:
        archive = tmp_path / "broken.tar.gz"
        archive.write_bytes(b"not a gzip stream")

        with pytest.raises(ArchiveExtractionError) as exc_info:
            await extract_archive(archive, tmp_path / "out")
        assert exc_info.value.kind is ErrorKind.ARCHIVE

    @pytest.mark.asyncio
    async def test_path_escape_refused(self, tmp_path: Path, tar_gz) -> None:
        archive = tmp_path / "evil.tar.gz"
        tar_gz(archive, {"../escape.txt": b"x"})

        with pytest.raises(ArchiveExtractionError):
            await extract_archive(archive, tmp_path / "out")
        assert not (tmp_path / "escape.txt").exists()


class TestSelectSourceRoot:
    """Tests for select_source_root function."""

    @pytest.fixture
    def extracted(self, tmp_path: Path) -> Path:
        root = tmp_path / "extracted"
        root.mkdir()
        return root

    def test_install_name_directory(self, extracted: Path) -> None:
        (extracted / "WasmEdge-0.14.1-Linux" / "bin").mkdir(parents=True)
        (extracted / "WasmEdge-other").mkdir()

        assert select_source_root(extracted, "WasmEdge-0.14.1-Linux") == (
            extracted / "WasmEdge-0.14.1-Linux"
        )

    def test_single_prefixed_directory(self, extracted: Path) -> None:
        (extracted / "WasmEdge-0.14.1-Darwin").mkdir()

        assert select_source_root(extracted, "WasmEdge-0.14.1-Linux") == (
            extracted / "WasmEdge-0.14.1-Darwin"
        )

    def test_prefixed_directory_beside_other_entries(self, extracted: Path) -> None:
        (extracted / "WasmEdge-0.14.1-Darwin").mkdir()
        (extracted / "__MACOSX").mkdir()
        (extracted / "README.md").write_text("hi")

        assert select_source_root(extracted, "WasmEdge-0.14.1-Linux") == (
            extracted / "WasmEdge-0.14.1-Darwin"
        )

    def test_flat_layout(self, extracted: Path) -> None:
        for name in ("bin", "lib64", "include"):
            (extracted / name).mkdir()

        assert select_source_root(extracted, "WasmEdge-0.14.1-Linux") == extracted

    def test_unexpected_entry(self, extracted: Path) -> None:
        (extracted / "bin").mkdir()
        (extracted / "README.md").write_text("hi")

        with pytest.raises(InvalidArchiveStructureError) as exc_info:
            select_source_root(extracted, "WasmEdge-0.14.1-Linux")
        assert exc_info.value.found_file == "README.md"

    def test_two_prefixed_directories(self, extracted: Path) -> None:
        (extracted / "WasmEdge-a").mkdir()
        (extracted / "WasmEdge-b").mkdir()

        with pytest.raises(InvalidArchiveStructureError) as exc_info:
            select_source_root(extracted, "WasmEdge-0.14.1-Linux")
        assert exc_info.value.found_file == "WasmEdge-a"

    def test_empty(self, extracted: Path) -> None:
        empty = extracted / "empty"
        empty.mkdir()
        with pytest.raises(InvalidArchiveStructureError):
            select_source_root(empty, "WasmEdge-0.14.1-Linux")


class TestNormalizeRelativePath:
    def test_rewrites_every_lib64_segment(self) -> None:
        assert normalize_relative_path(PurePosixPath("lib64/x/lib64/libfoo.so")) == PurePosixPath(
            "lib/x/lib/libfoo.so"
        )

    def test_only_whole_segments(self) -> None:
        path = PurePosixPath("lib64x/mylib64/lib64.so")
        assert normalize_relative_path(path) == path

    def test_keeps_path_flavour(self) -> None:
        result = normalize_relative_path(PureWindowsPath("lib64\\wasmedge.dll"))
        assert result == PureWindowsPath("lib\\wasmedge.dll")


class TestCopyTree:
    """Tests for copy_tree function."""

    def test_copies_and_normalizes(self, tmp_path: Path, extracted_runtime) -> None:
        src = extracted_runtime()
        dst = tmp_path / "dst"

        copied = copy_tree(src, dst)

        assert copied == 5
        assert (dst / "bin" / "wasmedge").read_bytes().startswith(b"#!/bin/sh")
        assert not (dst / "lib64").exists()
        assert (dst / "lib" / "libwasmedge.so").is_symlink()
        assert os.readlink(dst / "lib" / "libwasmedge.so") == "libwasmedge.so.0"
        assert (dst / "include" / "wasmedge" / "wasmedge.h").exists()

    def test_without_normalization(self, tmp_path: Path, extracted_runtime) -> None:
        dst = tmp_path / "dst"
        copy_tree(extracted_runtime(), dst, normalize=False)
        assert (dst / "lib64" / "libwasmedge.so.0.1.0").exists()

    def test_overwrites_existing_files(self, tmp_path: Path, extracted_runtime) -> None:
        dst = tmp_path / "dst"
        (dst / "bin").mkdir(parents=True)
        (dst / "bin" / "wasmedge").write_text("stale")
        (dst / "lib").mkdir()
        (dst / "lib" / "libwasmedge.so").write_text("stale regular file")

        copy_tree(extracted_runtime(), dst)

        assert (dst / "bin" / "wasmedge").read_text() != "stale"
        assert (dst / "lib" / "libwasmedge.so").is_symlink()

    def test_directory_symlink_copied_as_link(self, tmp_path: Path) -> None:
        src = tmp_path / "src"
        (src / "lib64" / "real").mkdir(parents=True)
        (src / "lib64" / "real" / "a.so").write_text("a")
        (src / "lib64" / "alias").symlink_to("real")

        dst = tmp_path / "dst"
        copy_tree(src, dst)

        assert (dst / "lib" / "alias").is_symlink()
        assert os.readlink(dst / "lib" / "alias") == "real"
        assert (dst / "lib" / "real" / "a.so").read_text() == "a"

    def test_lib64_link_beside_real_lib_is_skipped(self, tmp_path: Path) -> None:
        src = tmp_path / "src"
        (src / "bin").mkdir(parents=True)
        (src / "bin" / "wasmedge").write_text("bin")
        (src / "lib").mkdir()
        (src / "lib" / "libwasmedge.so.0").write_text("lib")
        (src / "lib64").symlink_to("lib")

        dst = tmp_path / "dst"
        copied = copy_tree(src, dst)

        assert copied == 2
        assert not (dst / "lib").is_symlink()
        assert (dst / "lib" / "libwasmedge.so.0").read_text() == "lib"

    def test_link_never_replaces_existing_directory(self, tmp_path: Path) -> None:
        src = tmp_path / "src"
        src.mkdir()
        (src / "include").symlink_to("elsewhere")
        dst = tmp_path / "dst"
        (dst / "include").mkdir(parents=True)
        (dst / "include" / "wasmedge.h").write_text("header")

        copy_tree(src, dst)

        assert not (dst / "include").is_symlink()
        assert (dst / "include" / "wasmedge.h").read_text() == "header"

    @pytest.mark.asyncio
    async def test_archive_with_lib64_alias_installs(self, tmp_path: Path, tar_gz) -> None:
        archive = tmp_path / "WasmEdge-0.14.1-manylinux2014_x86_64.tar.gz"
        tar_gz(
            archive,
            {
                "WasmEdge-0.14.1-Linux/bin/wasmedge": b"bin",
                "WasmEdge-0.14.1-Linux/lib/libwasmedge.so.0": b"lib",
            },
            {"WasmEdge-0.14.1-Linux/lib64": "lib"},
        )
        extracted = tmp_path / "extracted"
        await extract_archive(archive, extracted)

        dst = tmp_path / "versions" / "0.14.1"
        copy_tree(select_source_root(extracted, "WasmEdge-0.14.1-Linux"), dst)

        assert (dst / "lib" / "libwasmedge.so.0").read_bytes() == b"lib"
        assert (dst / "bin" / "wasmedge").read_bytes() == b"bin"
