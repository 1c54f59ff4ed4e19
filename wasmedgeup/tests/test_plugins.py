"""Tests for plugin installation, removal and listing."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from wasmedgeup.download_manager import DownloadManager
from wasmedgeup.errors import (
    InvalidVersionError,
    NoPluginsSpecifiedError,
    RequestFailedError,
    UnsupportedPlatformError,
    VersionNotFoundError,
)
from wasmedgeup.models import Arch, AvailablePlugin, LibcKind, OsKind, PlatformDescriptor
from wasmedgeup.plugins import (
    PluginManager,
    PluginNaming,
    PluginRequest,
    find_plugin_shared_objects,
    normalize_plugin_name,
)
from wasmedgeup.store import VersionStore
from wasmedgeup.version import SemanticVersion

V = SemanticVersion.parse
BASE_URL = "https://example.com/dl"
LINUX = PlatformDescriptor(OsKind.LINUX, Arch.X86_64, LibcKind.GLIBC)
NN_ARCHIVE = "WasmEdge-plugin-wasi_nn-ggml-0.14.1-manylinux2014_x86_64.tar.gz"
API_URL = "https://api.example.com/releases"


@pytest.fixture
def store(tmp_path: Path, extracted_runtime) -> VersionStore:
    store = VersionStore(tmp_path / "wasmedge")
    store.install(V("0.14.1"), extracted_runtime())
    return store


@pytest.fixture
def manager(store: VersionStore, fake_downloads, tmp_path: Path) -> PluginManager:
    return PluginManager(store, fake_downloads, LINUX, BASE_URL, tmp_path / "tmp")


@pytest.fixture
def publish(tmp_path: Path, fake_downloads, tar_gz):
    """Publish a plugin tar.gz under its download URL."""

    def _publish(version: str, archive_name: str, files: dict[str, bytes]) -> None:
        source = tmp_path / "published"
        source.mkdir(exist_ok=True)
        fake_downloads.files[f"{BASE_URL}/{version}/{archive_name}"] = tar_gz(
            source / archive_name, files
        )

    return _publish


class TestNaming:
    """Tests for plugin name handling."""

    def test_normalize(self) -> None:
        assert normalize_plugin_name("wasi_nn-GGML") == "wasinnggml"
        assert normalize_plugin_name("WasiNN") == "wasinn"

    @pytest.mark.parametrize(
        ("os_kind", "filename"),
        [
            (OsKind.LINUX, "libwasmedgePluginWasiNN.so"),
            (OsKind.UBUNTU, "libwasmedgePluginWasiNN.so"),
            (OsKind.DARWIN, "libwasmedgePluginWasiNN.dylib"),
            (OsKind.WINDOWS, "wasmedgePluginWasiNN.dll"),
        ],
    )
    def test_naming_per_os(self, os_kind: OsKind, filename: str) -> None:
        naming = PluginNaming.for_os(os_kind)
        assert naming.filename("WasiNN") == filename
        assert naming.extract_name(Path(filename)) == "WasiNN"

    def test_extract_name_rejects_other_files(self) -> None:
        naming = PluginNaming.for_os(OsKind.LINUX)
        assert naming.extract_name(Path("libwasmedge.so")) is None
        assert naming.extract_name(Path("libwasmedgePlugin.so")) is None
        assert naming.extract_name(Path("libwasmedgePluginWasiNN.dylib")) is None

    def test_find_skips_macos_metadata(self, tmp_path: Path) -> None:
        (tmp_path / "lib").mkdir()
        (tmp_path / "__MACOSX" / "lib").mkdir(parents=True)
        (tmp_path / "lib" / "libwasmedgePluginA.dylib").write_text("a")
        (tmp_path / "__MACOSX" / "lib" / "libwasmedgePluginA.dylib").write_text("junk")
        (tmp_path / "lib" / "README").write_text("readme")

        found = find_plugin_shared_objects(tmp_path, PluginNaming.for_os(OsKind.DARWIN))

        assert found == [tmp_path / "lib" / "libwasmedgePluginA.dylib"]


class TestPluginRequest:
    def test_name_only(self) -> None:
        assert PluginRequest.parse("wasi_nn-ggml") == PluginRequest("wasi_nn-ggml")

    def test_with_version(self) -> None:
        request = PluginRequest.parse("wasi_crypto@0.13.5")
        assert request.version == V("0.13.5")
        assert str(request) == "wasi_crypto@0.13.5"

    @pytest.mark.parametrize("spec", ["wasi_crypto@", "wasi_crypto@next"])
    def test_invalid_version(self, spec: str) -> None:
        with pytest.raises(InvalidVersionError):
            PluginRequest.parse(spec)

    def test_empty_name(self) -> None:
        with pytest.raises(ValueError):
            PluginRequest.parse("@0.14.1")


class TestInstallPlugins:
    """Tests for PluginManager.install_plugins."""

    @pytest.mark.asyncio
    async def test_install_into_latest_runtime(
        self, manager: PluginManager, store: VersionStore, publish, fake_downloads
    ) -> None:
        publish(
            "0.14.1",
            NN_ARCHIVE,
            {
                "WasmEdge-plugin/lib/libwasmedgePluginWasiNN.so": b"nn",
                "WasmEdge-plugin/README.md": b"docs",
            },
        )

        results = await manager.install_plugins([PluginRequest("wasi_nn-ggml")])

        target = store.version_dir(V("0.14.1")) / "plugin" / "libwasmedgePluginWasiNN.so"
        assert results[0].installed == [target]
        assert results[0].version == "0.14.1"
        assert target.read_bytes() == b"nn"
        assert fake_downloads.downloads == [f"{BASE_URL}/0.14.1/{NN_ARCHIVE}"]
        assert not manager.staging_dir("wasi_nn-ggml", "0.14.1").exists()

    @pytest.mark.asyncio
    async def test_explicit_plugin_version(
        self, manager: PluginManager, store: VersionStore, publish
    ) -> None:
        archive = "WasmEdge-plugin-wasi_crypto-0.13.5-manylinux2014_x86_64.tar.gz"
        publish("0.13.5", archive, {"libwasmedgePluginWasiCrypto.so": b"crypto"})

        results = await manager.install_plugins([PluginRequest.parse("wasi_crypto@0.13.5")])

        assert results[0].version == "0.13.5"
        assert manager.list_installed_plugins() == ["WasiCrypto"]

    @pytest.mark.asyncio
    async def test_archive_without_plugins(self, manager: PluginManager, publish) -> None:
        publish("0.14.1", NN_ARCHIVE, {"docs/README.md": b"nothing here"})

        results = await manager.install_plugins([PluginRequest("wasi_nn-ggml")])

        assert results[0].installed == []
        assert results[0].archive_entries == ["docs/README.md"]
        assert manager.list_installed_plugins() == []

    @pytest.mark.asyncio
    async def test_no_plugins(self, manager: PluginManager) -> None:
        with pytest.raises(NoPluginsSpecifiedError):
            await manager.install_plugins([])

    @pytest.mark.asyncio
    async def test_runtime_not_installed(self, manager: PluginManager) -> None:
        with pytest.raises(VersionNotFoundError):
            await manager.install_plugins([PluginRequest("wasi_nn-ggml")], V("0.13.0"))

    @pytest.mark.asyncio
    async def test_no_runtime_installed(self, tmp_path: Path, fake_downloads) -> None:
        manager = PluginManager(
            VersionStore(tmp_path / "empty"), fake_downloads, LINUX, BASE_URL, tmp_path
        )
        with pytest.raises(VersionNotFoundError):
            await manager.install_plugins([PluginRequest("wasi_nn-ggml")])

    @pytest.mark.asyncio
    async def test_musl_unsupported(
        self, store: VersionStore, fake_downloads, tmp_path: Path
    ) -> None:
        musl = PlatformDescriptor(OsKind.LINUX, Arch.X86_64, LibcKind.MUSL)
        manager = PluginManager(store, fake_downloads, musl, BASE_URL, tmp_path)

        with pytest.raises(UnsupportedPlatformError):
            await manager.install_plugins([PluginRequest("wasi_nn-ggml")])
        assert fake_downloads.downloads == []


class TestRemovePlugins:
    """Tests for PluginManager.remove_plugins."""

    @pytest.fixture
    def plugin_dir(self, manager: PluginManager) -> Path:
        directory = manager.plugin_dir(V("0.14.1"))
        directory.mkdir(exist_ok=True)
        (directory / "libwasmedgePluginWasiNN.so").write_text("nn")
        (directory / "libwasmedgePluginwasi_crypto.so").write_text("crypto")
        return directory

    def test_remove_by_exact_and_normalized_name(
        self, manager: PluginManager, plugin_dir: Path
    ) -> None:
        result = manager.remove_plugins(["wasi_nn", "wasi_crypto"])

        assert sorted(p.name for p in result.removed) == [
            "libwasmedgePluginWasiNN.so",
            "libwasmedgePluginwasi_crypto.so",
        ]
        assert result.missing == []
        assert not plugin_dir.exists()

    def test_missing_names_reported(self, manager: PluginManager, plugin_dir: Path) -> None:
        result = manager.remove_plugins(["wasi_nn", "wasmedge_tensorflow", "process"])

        assert [p.name for p in result.removed] == ["libwasmedgePluginWasiNN.so"]
        assert result.missing == ["wasmedge_tensorflow", "process"]
        assert manager.list_installed_plugins() == ["wasi_crypto"]

    def test_root_plugin_dir_searched(self, manager: PluginManager, store: VersionStore) -> None:
        root_dir = store.root / "plugin"
        root_dir.mkdir()
        (root_dir / "libwasmedgePluginWasmEdgeProcess.so").write_text("p")

        result = manager.remove_plugins(["wasmedge_process"])

        assert result.removed == [root_dir / "libwasmedgePluginWasmEdgeProcess.so"]
        assert not root_dir.exists()

    def test_linked_plugin_dir_removed_once(
        self, manager: PluginManager, store: VersionStore, plugin_dir: Path
    ) -> None:
        store.use(V("0.14.1"))

        result = manager.remove_plugins(["wasi_nn"])

        assert len(result.removed) == 1
        assert (store.root / "plugin").is_symlink()

    def test_no_names(self, manager: PluginManager) -> None:
        with pytest.raises(NoPluginsSpecifiedError):
            manager.remove_plugins([])

    def test_list_without_plugins(self, manager: PluginManager) -> None:
        assert manager.list_installed_plugins() == []


def release_body(*asset_names: str) -> str:
    return json.dumps({"tag_name": "0.14.1", "assets": [{"name": n} for n in asset_names]})


class TestListAvailablePlugins:
    """Tests for PluginManager.list_available_plugins."""

    @pytest.fixture
    def remote(self, store: VersionStore, tmp_path: Path):
        def _remote(platform: PlatformDescriptor = LINUX) -> PluginManager:
            return PluginManager(
                store, DownloadManager(retry_delay=0), platform, BASE_URL, tmp_path, API_URL
            )

        return _remote

    @pytest.mark.asyncio
    async def test_filters_by_platform(self, remote, fake_http) -> None:
        fake_http.add(
            body=release_body(
                "WasmEdge-0.14.1-manylinux2014_x86_64.tar.gz",
                NN_ARCHIVE,
                "WasmEdge-plugin-wasi_crypto-0.14.1-manylinux2014_x86_64.tar.gz",
                "WasmEdge-plugin-wasi_crypto-0.14.1-manylinux2014_aarch64.tar.gz",
                "WasmEdge-plugin-wasmedge_ffmpeg-0.14.1-darwin_23-arm64.tar.gz",
                "SHA256SUM",
            )
        )

        available = await remote().list_available_plugins()

        assert available == [
            AvailablePlugin("wasi_crypto", "0.14.1", "manylinux2014_x86_64"),
            AvailablePlugin("wasi_nn-ggml", "0.14.1", "manylinux2014_x86_64"),
        ]
        assert fake_http.calls == [(f"{API_URL}/tags/0.14.1", None)]

    @pytest.mark.asyncio
    async def test_ubuntu_falls_back_to_ubuntu_builds(self, remote, fake_http) -> None:
        fake_http.add(
            body=release_body(
                "WasmEdge-plugin-wasi_nn-ggml-0.14.1-ubuntu20_04_x86_64.tar.gz",
                "WasmEdge-plugin-wasi_crypto-0.14.1-ubuntu22_04_x86_64.tar.gz",
                "WasmEdge-plugin-wasi_crypto-0.14.1-manylinux2014_x86_64.tar.gz",
            )
        )
        ubuntu = PlatformDescriptor(OsKind.UBUNTU, Arch.X86_64, LibcKind.GLIBC, "22.04")

        available = await remote(ubuntu).list_available_plugins()

        assert [(p.name, p.platform_key) for p in available] == [
            ("wasi_crypto", "manylinux2014_x86_64"),
            ("wasi_nn-ggml", "ubuntu20_04_x86_64"),
        ]

    @pytest.mark.asyncio
    async def test_explicit_runtime_need_not_be_installed(self, remote, fake_http) -> None:
        fake_http.add(body=json.dumps({"assets": []}))

        assert await remote().list_available_plugins(V("0.15.0")) == []
        assert fake_http.calls[0][0] == f"{API_URL}/tags/0.15.0"

    @pytest.mark.asyncio
    async def test_release_not_found(self, remote, fake_http) -> None:
        fake_http.add(status=404, reason="Not Found")

        with pytest.raises(RequestFailedError) as exc_info:
            await remote().list_available_plugins(V("9.9.9"))
        assert exc_info.value.status == 404

    @pytest.mark.asyncio
    async def test_unsupported_platform_skips_request(self, remote, fake_http) -> None:
        musl = PlatformDescriptor(OsKind.LINUX, Arch.X86_64, LibcKind.MUSL)

        with pytest.raises(UnsupportedPlatformError):
            await remote(musl).list_available_plugins()
        assert fake_http.calls == []
