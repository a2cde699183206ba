"""Package management for zephyr-tools.

This module handles resolving, downloading, verifying and installing the
Zephyr SDK archives listed in a release's checksum manifest.
"""

from .archive_utils import ArchiveInstaller, ArchiveKind, ExtractionError, UnsupportedArchiveError
from .cache import Cache
from .downloader import ChecksumError, DownloadError, PackageDownloader
from .manifest import (
    DownloadDescriptor,
    ManifestEntry,
    ManifestError,
    ManifestResolution,
    ManifestStore,
    PostInstallCommand,
)
from .platform_utils import PlatformDetector, PlatformError

__all__ = [
    "ArchiveInstaller",
    "ArchiveKind",
    "ExtractionError",
    "UnsupportedArchiveError",
    "Cache",
    "PackageDownloader",
    "DownloadError",
    "ChecksumError",
    "DownloadDescriptor",
    "ManifestEntry",
    "ManifestError",
    "ManifestResolution",
    "ManifestStore",
    "PostInstallCommand",
    "PlatformDetector",
    "PlatformError",
]
