"""Package downloader with progress tracking and checksum verification.

Downloads land in a cache directory keyed by the archive filename taken from
the URL. A cached file is trusted only when its MD5 matches the manifest; a
mismatch triggers exactly one re-fetch.
"""

import hashlib
import logging
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urlparse

import requests
from tqdm import tqdm

from .manifest import DownloadDescriptor

logger = logging.getLogger(__name__)


class DownloadError(Exception):
    """Raised when download fails."""

    pass


class ChecksumError(Exception):
    """Raised when checksum verification fails."""

    pass


def filename_from_url(url: str) -> str:
    """Deterministic local filename for a URL."""
    name = Path(urlparse(url).path).name
    if not name:
        raise DownloadError(f"Cannot derive a filename from URL: {url}")
    return name


def md5_file(file_path: Path, chunk_size: int = 8192) -> str:
    """Compute the MD5 hex digest of a file."""
    md5 = hashlib.md5()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            md5.update(chunk)
    return md5.hexdigest()


class PackageDownloader:
    """Downloads archives into a cache directory with MD5 verification."""

    def __init__(
        self,
        cache_dir: Path,
        chunk_size: int = 8192,
        timeout: int = 30,
        show_progress: bool = True,
    ):
        """Initialize downloader.

        Args:
            cache_dir: Directory downloaded files are stored in
            chunk_size: Size of chunks for downloading and hashing
            timeout: Connect/read timeout in seconds
            show_progress: Whether to show a progress bar
        """
        self.cache_dir = Path(cache_dir)
        self.chunk_size = chunk_size
        self.timeout = timeout
        self.show_progress = show_progress

    def exists(self, filename: str) -> Optional[Path]:
        """Return the cached file path, or None when not downloaded yet."""
        path = self.cache_dir / filename
        return path if path.is_file() else None

    def check(self, filename: str, expected: str) -> bool:
        """Verify the MD5 checksum of a cached file.

        Args:
            filename: Cached filename
            expected: Expected MD5 checksum (hex string)

        Returns:
            True if the file exists and matches, False otherwise
        """
        path = self.exists(filename)
        if path is None:
            return False
        actual = md5_file(path, self.chunk_size)
        if actual.lower() != expected.lower():
            logger.warning(f"Checksum mismatch for {filename}: expected {expected}, got {actual}")
            return False
        return True

    def fetch(self, url: str) -> Path:
        """Download a URL into the cache directory.

        Any existing file with the same name is replaced once the transfer
        completes; a partial transfer never replaces it.

        Args:
            url: URL to download from

        Returns:
            Path to the downloaded file

        Raises:
            DownloadError: If download fails
        """
        dest_path = self.cache_dir / filename_from_url(url)
        dest_path.parent.mkdir(parents=True, exist_ok=True)

        # Use temporary file during download
        temp_file = dest_path.with_suffix(dest_path.suffix + ".tmp")

        logger.info(f"Downloading {url}")
        try:
            response = requests.get(url, stream=True, timeout=self.timeout)
            response.raise_for_status()

            total_size = int(response.headers.get("content-length", 0))

            progress_bar = None
            if self.show_progress and total_size > 0:
                progress_bar = tqdm(
                    total=total_size,
                    unit="B",
                    unit_scale=True,
                    unit_divisor=1024,
                    desc=f"Downloading {dest_path.name}",
                )

            received = 0
            try:
                with open(temp_file, "wb") as f:
                    for chunk in response.iter_content(chunk_size=self.chunk_size):
                        if chunk:
                            f.write(chunk)
                            received += len(chunk)
                            if progress_bar:
                                progress_bar.update(len(chunk))
            finally:
                if progress_bar:
                    progress_bar.close()

            if total_size and received != total_size:
                raise DownloadError(
                    f"Incomplete download of {url}: received {received} of {total_size} bytes"
                )

            temp_file.replace(dest_path)
            logger.info(f"Downloaded {dest_path} ({received} bytes)")
            return dest_path

        except requests.RequestException as e:
            temp_file.unlink(missing_ok=True)
            raise DownloadError(f"Failed to download {url}: {e}")

        except Exception:
            temp_file.unlink(missing_ok=True)
            raise

    def ensure(
        self,
        descriptor: DownloadDescriptor,
        on_stage: Optional[Callable[[str], None]] = None,
    ) -> Path:
        """Make sure a verified copy of a descriptor's archive is cached.

        Args:
            descriptor: Descriptor naming the URL, filename and checksum
            on_stage: Called with "verifying" or "downloading" as work starts

        Returns:
            Path to the verified archive

        Raises:
            DownloadError: If the download fails
            ChecksumError: If the re-fetched file still doesn't match
        """

        def stage(name: str) -> None:
            if on_stage is not None:
                on_stage(name)

        path = self.exists(descriptor.filename)
        if path is not None:
            stage("verifying")
            if self.check(descriptor.filename, descriptor.expected_checksum):
                logger.info(f"Using cached {descriptor.filename}")
                return path

        stage("downloading")
        path = self.fetch(descriptor.url)
        if path.name != descriptor.filename:
            raise DownloadError(
                f"Downloaded {path.name} but manifest names {descriptor.filename}"
            )

        stage("verifying")
        if not self.check(descriptor.filename, descriptor.expected_checksum):
            raise ChecksumError(
                f"Checksum mismatch for {descriptor.filename} after download\n"
                + f"Expected: {descriptor.expected_checksum}\n"
                + f"Got: {md5_file(path, self.chunk_size)}"
            )

        return path
