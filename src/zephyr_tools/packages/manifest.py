"""Checksum manifest parsing and SDK artifact resolution.

A manifest (``<version>.sum``) lists every archive published for one Zephyr
SDK release, one ``<md5>  <filename>`` pair per line. For a given host
platform and architecture exactly two of those archives are installed:

    minimal   zephyr-sdk-<version>_<platform>-<arch>_minimal.<ext>
    overlay   toolchain_<platform>-<arch>_arm-zephyr-eabi.<ext>

The minimal package is extracted into ``toolchains/`` and replaces any
previous copy of the same SDK version; the overlay is added into the SDK
directory the minimal package created.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

import requests

logger = logging.getLogger(__name__)

RELEASE_BASE_URL = "https://github.com/zephyrproject-rtos/sdk-ng/releases/download"
MANIFEST_ASSET = "md5.sum"
OVERLAY_TARGET = "arm-zephyr-eabi"

COMPRESSION_SUFFIXES = (".xz", ".gz", ".bz2")
ARCHIVE_SUFFIXES = (".tar", ".zip", ".7z")


class ManifestError(Exception):
    """Raised when a manifest is malformed or lacks a required package."""

    pass


@dataclass(frozen=True)
class ManifestEntry:
    """One line of a checksum manifest."""

    checksum: str
    filename: str


@dataclass(frozen=True)
class PostInstallCommand:
    """A command to run after an archive has been extracted.

    Attributes:
        command: Command line; its first token is the program
        resolve_against_install_dir: Join the program path onto the install directory
    """

    command: str
    resolve_against_install_dir: bool = False


@dataclass(frozen=True)
class DownloadDescriptor:
    """Resolved description of one downloadable and installable artifact.

    Attributes:
        name: Install path relative to the tools directory
        url: Download URL
        expected_checksum: MD5 hex digest from the manifest
        filename: Local filename in the download cache
        clear_target: Replace previously installed contents before extraction
        post_install: Commands to run after extraction, in order
    """

    name: str
    url: str
    expected_checksum: str
    filename: str
    clear_target: bool = False
    post_install: Tuple[PostInstallCommand, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ManifestResolution:
    """The pair of descriptors needed to install one SDK version."""

    version: str
    minimal: DownloadDescriptor
    overlay: DownloadDescriptor

    @property
    def descriptors(self) -> List[DownloadDescriptor]:
        """Descriptors in install order (minimal first)."""
        return [self.minimal, self.overlay]

    @property
    def install_name(self) -> str:
        """Install path of the SDK relative to the tools directory."""
        return self.overlay.name


def release_url(version: str, filename: str) -> str:
    """Build the download URL for a release asset."""
    return f"{RELEASE_BASE_URL}/v{version}/{filename}"


def canonical_name(filename: str) -> str:
    """Strip compression and archive suffixes from a release filename.

    Examples:
        >>> canonical_name("toolchain_linux-x86_64_arm-zephyr-eabi.tar.xz")
        'toolchain_linux-x86_64_arm-zephyr-eabi'
        >>> canonical_name("zephyr-sdk-0.16.1_windows-x86_64_minimal.7z")
        'zephyr-sdk-0.16.1_windows-x86_64_minimal'
    """
    name = filename
    for suffix in COMPRESSION_SUFFIXES:
        if name.endswith(suffix):
            name = name[: -len(suffix)]
            break
    for suffix in ARCHIVE_SUFFIXES:
        if name.endswith(suffix):
            name = name[: -len(suffix)]
            break
    return name


def parse_manifest(text: str) -> List[ManifestEntry]:
    """Parse manifest text into entries.

    Args:
        text: Raw manifest contents

    Returns:
        Entries in file order

    Raises:
        ManifestError: If a non-blank line isn't a checksum/filename pair
    """
    entries = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        parts = line.split()
        if len(parts) != 2:
            raise ManifestError(f"Malformed manifest line {lineno}: {line!r}")
        checksum, filename = parts
        # md5sum's binary-mode marker
        filename = filename.lstrip("*")
        entries.append(ManifestEntry(checksum=checksum.lower(), filename=filename))
    return entries


def minimal_package_name(version: str, platform_name: str, arch: str) -> str:
    return f"zephyr-sdk-{version}_{platform_name}-{arch}_minimal"


def overlay_package_name(platform_name: str, arch: str) -> str:
    return f"toolchain_{platform_name}-{arch}_{OVERLAY_TARGET}"


def resolve(text: str, version: str, platform_name: str, arch: str) -> ManifestResolution:
    """Select the minimal and overlay packages for a platform.

    Args:
        text: Raw manifest contents
        version: SDK version the manifest belongs to
        platform_name: 'macos', 'linux' or 'windows'
        arch: 'x86_64' or 'aarch64'

    Returns:
        ManifestResolution holding both descriptors

    Raises:
        ManifestError: If either package is missing from the manifest
    """
    minimal_name = minimal_package_name(version, platform_name, arch)
    overlay_name = overlay_package_name(platform_name, arch)
    sdk_dir = f"zephyr-sdk-{version}"

    minimal: Optional[DownloadDescriptor] = None
    overlay: Optional[DownloadDescriptor] = None

    for entry in parse_manifest(text):
        base = canonical_name(entry.filename)

        if minimal is None and base == minimal_name:
            post_install: Tuple[PostInstallCommand, ...] = ()
            if platform_name == "macos":
                post_install = (
                    PostInstallCommand(
                        command=f"{sdk_dir}/setup.sh -t {OVERLAY_TARGET}",
                        resolve_against_install_dir=True,
                    ),
                )
            minimal = DownloadDescriptor(
                name="toolchains/",
                url=release_url(version, entry.filename),
                expected_checksum=entry.checksum,
                filename=entry.filename,
                clear_target=True,
                post_install=post_install,
            )
        elif overlay is None and base == overlay_name:
            overlay = DownloadDescriptor(
                name=f"toolchains/{sdk_dir}",
                url=release_url(version, entry.filename),
                expected_checksum=entry.checksum,
                filename=entry.filename,
                clear_target=False,
            )

    if minimal is None:
        raise ManifestError(
            f"No minimal SDK package for {platform_name}-{arch} in manifest {version}"
        )
    if overlay is None:
        raise ManifestError(
            f"No {OVERLAY_TARGET} toolchain package for {platform_name}-{arch} "
            + f"in manifest {version}"
        )

    logger.debug(f"Resolved {version} for {platform_name}-{arch}: {minimal.filename}, {overlay.filename}")
    return ManifestResolution(version=version, minimal=minimal, overlay=overlay)


def _version_key(version: str) -> Tuple:
    return tuple(int(part) if part.isdigit() else part for part in re.split(r"[.\-]", version))


class ManifestStore:
    """A directory of ``<version>.sum`` manifests."""

    def __init__(self, manifest_dir: Path, timeout: int = 30):
        """Initialize manifest store.

        Args:
            manifest_dir: Directory holding the manifests
            timeout: Network timeout when fetching a manifest
        """
        self.manifest_dir = Path(manifest_dir)
        self.timeout = timeout

    def path_for(self, version: str) -> Path:
        return self.manifest_dir / f"{version}.sum"

    def versions(self) -> List[str]:
        """List the SDK versions with a local manifest, oldest first."""
        if not self.manifest_dir.is_dir():
            return []
        versions = [p.stem for p in self.manifest_dir.iterdir() if p.suffix == ".sum"]
        return sorted(versions, key=_version_key)

    def read(self, version: str) -> str:
        """Read a local manifest.

        Raises:
            ManifestError: If there is no manifest for the version
        """
        path = self.path_for(version)
        if not path.exists():
            raise ManifestError(f"No manifest for SDK version {version} in {self.manifest_dir}")
        return path.read_text(encoding="utf-8")

    def fetch(self, version: str) -> str:
        """Download the release's md5.sum into the store.

        Args:
            version: SDK version (without the leading 'v')

        Returns:
            Manifest text

        Raises:
            ManifestError: If the manifest can't be downloaded
        """
        url = release_url(version, MANIFEST_ASSET)
        logger.info(f"Fetching manifest {url}")
        try:
            response = requests.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ManifestError(f"Failed to fetch manifest for {version}: {e}")

        text = response.text
        # Validate before persisting so a bad response never lands in the store
        parse_manifest(text)

        self.manifest_dir.mkdir(parents=True, exist_ok=True)
        self.path_for(version).write_text(text, encoding="utf-8")
        return text

    def load(self, version: str, allow_fetch: bool = True) -> str:
        """Read a manifest, fetching it first when it isn't stored locally."""
        if self.path_for(version).exists() or not allow_fetch:
            return self.read(version)
        return self.fetch(version)
