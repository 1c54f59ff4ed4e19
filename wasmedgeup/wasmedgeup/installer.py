"""Runtime installation pipeline.

resolve version -> name asset -> fetch checksum manifest -> download ->
verify -> extract -> copy into the version store.

Everything before the final copy happens in a version-scoped staging
directory ``<tmpdir>/wasmedgeup/<version>/``, so concurrent installs of
different versions never share files. The staging directory is removed after
a successful install and left in place after a failure for inspection.
"""

from __future__ import annotations

import asyncio
import shutil
from typing import TYPE_CHECKING

import structlog

from .archive import extract_archive, select_source_root
from .assets import Asset, checksum_url, runtime_url
from .errors import FilesystemError
from .events import Phase, ProgressEvent
from .integrity import lookup_checksum, verify_file
from .models import InstallResult

if TYPE_CHECKING:
    from pathlib import Path

    from .download_manager import DownloadManager
    from .events import ProgressCallback
    from .models import GlobalConfig, PlatformDescriptor
    from .releases import VersionResolver
    from .store import VersionStore
    from .version import SemanticVersion

logger = structlog.get_logger(__name__)

STAGING_DIR = "wasmedgeup"
EXTRACTED_DIR = "extracted"


class RuntimeInstaller:
    """Installs runtime versions into a version store.

    Example:
        >>> installer = RuntimeInstaller(store, manager, resolver, config)
        >>> result = await installer.install("latest", platform)
        >>> store.use(result.version)
    """

    def __init__(
        self,
        store: VersionStore,
        download_manager: DownloadManager,
        resolver: VersionResolver,
        config: GlobalConfig,
    ) -> None:
        self._store = store
        self._download_manager = download_manager
        self._resolver = resolver
        self._config = config
        self._log = logger.bind(component="installer")

    def staging_dir(self, version: SemanticVersion) -> Path:
        return self._config.tmpdir / STAGING_DIR / str(version)

    def _prepare_staging(self, version: SemanticVersion) -> Path:
        staging = self.staging_dir(version)
        try:
            if staging.exists():
                shutil.rmtree(staging)
            staging.mkdir(parents=True)
        except OSError as e:
            raise FilesystemError(str(staging), "prepare staging directory", str(e)) from e
        return staging

    async def _expected_digest(self, asset: Asset) -> str:
        url = checksum_url(self._config.release_base_url, asset.version, self._config.checksum_file)
        manifest = await self._download_manager.fetch_checksum_manifest(
            url, str(asset.version), asset.archive_name
        )
        return lookup_checksum(manifest, str(asset.version), asset.archive_name)

    async def install(
        self,
        token: str,
        platform: PlatformDescriptor,
        verify: bool | None = None,
        progress: ProgressCallback | None = None,
    ) -> InstallResult:
        """Install a runtime version without making it current.

        Args:
            token: ``latest`` or an explicit version.
            platform: Platform to install for.
            verify: Check the archive against the release checksum manifest.
                Defaults to the configured ``verify_checksum``.
            progress: Optional callback receiving ProgressEvent objects.

        Returns:
            InstallResult for the installed version.

        Raises:
            InvalidVersionError: If the token is not a version.
            NoReleasesFoundError: If ``latest`` cannot be resolved.
            InsufficientPermissionsError: If the install root is not writable.
            ChecksumNotFoundError: If verification is on and no checksum is published.
            RequestFailedError: If a download fails.
            ChecksumMismatchError: If the archive does not match its checksum.
            ArchiveExtractionError: If the archive is corrupt.
            InvalidArchiveStructureError: If the archive layout is unexpected.
            FilesystemError: If copying into the store fails.
        """
        verify = self._config.verify_checksum if verify is None else verify

        version = await self._resolver.resolve(token)
        asset = Asset.for_platform(version, platform)
        log = self._log.bind(version=str(version), asset=asset.archive_name)
        log.info("installing_version")

        self._store.ensure_writable("install WasmEdge", version)
        staging = self._prepare_staging(version)

        expected: str | None = None
        if verify:
            expected = await self._expected_digest(asset)
        else:
            log.warning("checksum_verification_skipped")

        archive = staging / asset.archive_name
        await self._download_manager.download(
            runtime_url(self._config.release_base_url, asset),
            archive,
            resource=asset.archive_name,
            progress=progress,
        )

        if expected is not None:
            self._report(progress, asset, Phase.VERIFY, "Verifying checksum")
            await verify_file(archive, expected)
            log.info("checksum_verified")

        self._report(progress, asset, Phase.EXTRACT, "Extracting archive")
        extracted = staging / EXTRACTED_DIR
        await extract_archive(archive, extracted)
        source_root = select_source_root(extracted, asset.install_name)

        self._report(progress, asset, Phase.INSTALL, "Copying files")
        path = await asyncio.to_thread(self._store.install, version, source_root)

        shutil.rmtree(staging, ignore_errors=True)
        return InstallResult(version=version, path=path, asset=asset, checksum_verified=verify)

    @staticmethod
    def _report(
        progress: ProgressCallback | None,
        asset: Asset,
        phase: Phase,
        message: str,
    ) -> None:
        if progress:
            progress(ProgressEvent(resource=asset.archive_name, phase=phase, message=message))
