"""HTTP fetcher for release archives, checksum manifests and API listings.

Features:
    - Streaming downloads in 64 KB chunks to a temporary file that is
      renamed into place once complete
    - Connect and overall request timeouts
    - Retry logic with exponential backoff (client errors are not retried)
    - Progress reporting via ProgressEvent callbacks
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, TypeVar

import aiohttp
import structlog

from .errors import ChecksumNotFoundError, RequestFailedError
from .events import Phase, ProgressEvent
from .integrity import parse_checksum_manifest
from .models import DownloadResult

if TYPE_CHECKING:
    from pathlib import Path

    from .events import ProgressCallback
    from .models import GlobalConfig

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Default configuration values
DEFAULT_CONNECT_TIMEOUT = 15
DEFAULT_REQUEST_TIMEOUT = 90
DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_DELAY = 1.0
DEFAULT_CHUNK_SIZE = 65536  # 64 KB chunks
USER_AGENT = "wasmedgeup"


class DownloadManager:
    """Fetches remote resources over HTTP.

    Example:
        >>> manager = DownloadManager()
        >>> result = await manager.download(
        ...     "https://github.com/WasmEdge/WasmEdge/releases/download/0.14.1/SHA256SUM",
        ...     Path("/tmp/SHA256SUM"),
        ... )
    """

    def __init__(
        self,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ) -> None:
        """Initialize the download manager.

        Args:
            connect_timeout: Timeout for establishing a connection in seconds.
            request_timeout: Timeout for a whole request in seconds.
            max_retries: Maximum number of retry attempts for failed requests.
            retry_delay: Initial delay between retries in seconds (exponential backoff).
        """
        self._connect_timeout = connect_timeout
        self._request_timeout = request_timeout
        self._max_retries = max_retries
        self._retry_delay = retry_delay

        self._log = logger.bind(component="download_manager")

    @classmethod
    def from_config(cls, config: GlobalConfig) -> DownloadManager:
        """Create a DownloadManager from GlobalConfig."""
        return cls(
            connect_timeout=config.connect_timeout,
            request_timeout=config.request_timeout,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
        )

    @property
    def timeout(self) -> aiohttp.ClientTimeout:
        """Client timeout applied to every request."""
        return aiohttp.ClientTimeout(total=self._request_timeout, connect=self._connect_timeout)

    @property
    def max_retries(self) -> int:
        return self._max_retries

    async def download(
        self,
        url: str,
        destination: Path,
        resource: str | None = None,
        progress: ProgressCallback | None = None,
    ) -> DownloadResult:
        """Download a file.

        The body is streamed to ``.<name>.download`` beside the destination and
        renamed into place once complete, so a partial download never appears
        under the final name.

        Args:
            url: Source URL.
            destination: Final path of the downloaded file.
            resource: Name used in errors and progress events. Defaults to the
                destination filename.
            progress: Optional callback receiving ProgressEvent objects.

        Returns:
            DownloadResult describing the completed download.

        Raises:
            RequestFailedError: If the download fails after all retries.
        """
        name = resource or destination.name
        log = self._log.bind(resource=name, url=url)
        return await self._with_retry(
            lambda: self._perform_download(url, destination, name, progress),
            log,
        )

    async def fetch_text(self, url: str, resource: str) -> str:
        """Fetch a small text body.

        Raises:
            RequestFailedError: If the request fails after all retries.
        """

        async def _fetch() -> str:
            async with self._request(url, resource) as response:
                return await response.text()

        return await self._with_retry(_fetch, self._log.bind(resource=resource, url=url))

    async def fetch_json(
        self,
        url: str,
        resource: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Fetch and decode a JSON body.

        Raises:
            RequestFailedError: If the request fails after all retries.
        """

        async def _fetch() -> Any:
            async with self._request(url, resource, params=params) as response:
                return await response.json(content_type=None)

        return await self._with_retry(_fetch, self._log.bind(resource=resource, url=url))

    async def fetch_checksum_manifest(self, url: str, version: str, asset: str) -> dict[str, str]:
        """Fetch and parse a release checksum manifest.

        Args:
            url: Manifest URL.
            version: Release the manifest belongs to.
            asset: Archive name the caller wants to verify.

        Returns:
            Mapping of filename to lowercase hex digest.

        Raises:
            ChecksumNotFoundError: If the release publishes no manifest.
            RequestFailedError: If the request fails for another reason.
        """
        try:
            text = await self.fetch_text(url, resource="checksum manifest")
        except RequestFailedError as e:
            if e.status == 404:
                raise ChecksumNotFoundError(version=version, asset=asset) from e
            raise
        return parse_checksum_manifest(text)

    async def _with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        log: structlog.stdlib.BoundLogger,
    ) -> T:
        """Run an operation, retrying retryable failures with exponential backoff.

        Raises:
            RequestFailedError: The last failure once retries are exhausted, or
                the first non-retryable one.
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except RequestFailedError as e:
                log.warning(
                    "request_attempt_failed",
                    attempt=attempt + 1,
                    error=str(e),
                    retryable=e.retryable,
                )
                if not e.retryable or attempt >= self._max_retries:
                    raise

            attempt += 1
            delay = self._retry_delay * (2 ** (attempt - 1))
            log.info("retrying_request", attempt=attempt, delay=delay)
            await asyncio.sleep(delay)

    @asynccontextmanager
    async def _request(
        self,
        url: str,
        resource: str,
        params: dict[str, Any] | None = None,
    ) -> AsyncIterator[aiohttp.ClientResponse]:
        """Open a GET request, translating failures into RequestFailedError.

        Transport errors raised while the caller reads the body are translated
        as well.
        """
        headers = {"User-Agent": USER_AGENT}
        try:
            async with (
                aiohttp.ClientSession(timeout=self.timeout) as session,
                session.get(url, headers=headers, params=params) as response,
            ):
                if response.status >= 400:
                    raise RequestFailedError(
                        resource,
                        url,
                        f"HTTP error {response.status}: {response.reason}",
                        status=response.status,
                        retryable=response.status >= 500,
                    )
                yield response

        except aiohttp.ClientError as e:
            raise RequestFailedError(resource, url, f"network error: {e}") from e

        except TimeoutError:
            raise RequestFailedError(resource, url, "request timed out") from None

    async def _perform_download(
        self,
        url: str,
        destination: Path,
        resource: str,
        progress: ProgressCallback | None,
    ) -> DownloadResult:
        """Perform a single download attempt.

        Raises:
            RequestFailedError: If the attempt fails.
        """
        start_time = time.monotonic()
        destination.parent.mkdir(parents=True, exist_ok=True)
        temp_path = destination.parent / f".{destination.name}.download"

        def report(bytes_downloaded: int, bytes_total: int | None) -> None:
            if progress:
                progress(
                    ProgressEvent(
                        resource=resource,
                        phase=Phase.DOWNLOAD,
                        bytes_downloaded=bytes_downloaded,
                        bytes_total=bytes_total,
                    )
                )

        try:
            async with self._request(url, resource) as response:
                total_size = response.content_length or None
                bytes_downloaded = 0
                report(bytes_downloaded, total_size)

                with temp_path.open("wb") as f:
                    async for chunk in response.content.iter_chunked(DEFAULT_CHUNK_SIZE):
                        f.write(chunk)
                        bytes_downloaded += len(chunk)
                        report(bytes_downloaded, total_size)

            temp_path.replace(destination)

        except RequestFailedError:
            temp_path.unlink(missing_ok=True)
            raise

        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise RequestFailedError(
                resource, url, f"cannot write {destination}: {e}", retryable=False
            ) from e

        duration = time.monotonic() - start_time
        self._log.debug(
            "download_complete",
            resource=resource,
            path=str(destination),
            bytes=bytes_downloaded,
            duration_seconds=round(duration, 3),
        )
        return DownloadResult(
            url=url,
            path=destination,
            bytes_downloaded=bytes_downloaded,
            bytes_total=total_size,
            duration_seconds=duration,
        )
