"""Archive Installation Utilities.

This module extracts downloaded SDK archives into the tools directory and
runs the post-install commands a descriptor declares.

Supported formats:
    - .zip: extracted in-process; every regular file is made executable since
      the SDK zips don't carry Unix permission bits
    - .tar, .tar.xz, .tar.gz, .tar.bz2, .tgz, .txz: extracted by the system ``tar``
    - .7z: extracted by the system 7-Zip (``7z``, ``7za`` or ``7zz``)
"""

import logging
import shlex
import shutil
import subprocess
import tarfile
import zipfile
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import List, Mapping, Optional, Set

from .manifest import DownloadDescriptor, PostInstallCommand

logger = logging.getLogger(__name__)

SEVEN_ZIP_BINARIES = ("7z", "7za", "7zz")


class ExtractionError(Exception):
    """Raised when archive extraction fails."""

    pass


class UnsupportedArchiveError(ExtractionError):
    """Raised for an archive format no extraction strategy handles."""

    pass


class ArchiveKind(Enum):
    """Closed set of archive formats the installer understands."""

    ZIP = "zip"
    TAR = "tar"
    SEVEN_ZIP = "7z"

    @classmethod
    def from_filename(cls, filename: str) -> "ArchiveKind":
        """Select the archive kind from a filename.

        Raises:
            UnsupportedArchiveError: If the extension is not recognized
        """
        name = filename.lower()
        if name.endswith(".zip"):
            return cls.ZIP
        if name.endswith(".7z"):
            return cls.SEVEN_ZIP
        if name.endswith((".tar", ".tgz", ".txz", ".tbz2")) or ".tar." in name:
            return cls.TAR
        raise UnsupportedArchiveError(f"Unsupported archive format: {filename}")


def _top_level(member: str) -> Optional[str]:
    """First path component of an archive member, or None if unsafe/empty."""
    parts = [p for p in PurePosixPath(member.replace("\\", "/")).parts if p not in ("", ".")]
    if not parts or parts[0] in ("/", "..") or ":" in parts[0]:
        return None
    return parts[0]


class ArchiveInstaller:
    """Installs a downloaded archive and runs its post-install commands."""

    def __init__(self, env: Optional[Mapping[str, str]] = None):
        """Initialize archive installer.

        Args:
            env: Environment for tar/7z and post-install processes
        """
        self.env = dict(env) if env is not None else None

    def install(self, descriptor: DownloadDescriptor, archive_path: Path, install_root: Path) -> bool:
        """Extract an archive and run its post-install commands.

        Args:
            descriptor: Descriptor the archive was downloaded for
            archive_path: Verified archive in the download cache
            install_root: Tools directory the descriptor name is relative to

        Returns:
            True on success, False if extraction or a post-install command failed

        Raises:
            UnsupportedArchiveError: If the archive format isn't supported
        """
        if not self.extract(descriptor, archive_path, install_root):
            return False
        return self.post_install(descriptor, install_root)

    def target_dir(self, descriptor: DownloadDescriptor, install_root: Path) -> Path:
        return Path(install_root) / descriptor.name

    def extract(self, descriptor: DownloadDescriptor, archive_path: Path, install_root: Path) -> bool:
        """Extract an archive into the descriptor's target directory.

        Returns:
            True on success, False if extraction failed

        Raises:
            UnsupportedArchiveError: If the archive format isn't supported
        """
        kind = ArchiveKind.from_filename(archive_path.name)
        target_dir = self.target_dir(descriptor, install_root)

        try:
            target_dir.mkdir(parents=True, exist_ok=True)

            if descriptor.clear_target:
                self._clear_target(kind, archive_path, target_dir)

            logger.info(f"Extracting {archive_path.name} ({kind.value}) to {target_dir}")
            if kind is ArchiveKind.ZIP:
                self._extract_zip(archive_path, target_dir)
            elif kind is ArchiveKind.TAR:
                self._extract_tar(archive_path, target_dir)
            else:
                self._extract_7z(archive_path, target_dir)
        except (ExtractionError, OSError) as e:
            logger.error(f"Failed to extract {archive_path.name}: {e}")
            return False

        return True

    def post_install(self, descriptor: DownloadDescriptor, install_root: Path) -> bool:
        """Run the descriptor's post-install commands in order.

        Stops at the first failing command.

        Returns:
            True if every command succeeded
        """
        target_dir = self.target_dir(descriptor, install_root)
        for entry in descriptor.post_install:
            if not self._run_post_install(entry, target_dir):
                return False
        return True

    def list_top_level(self, kind: ArchiveKind, archive_path: Path) -> Set[str]:
        """Names an archive creates directly inside the extraction directory.

        Raises:
            ExtractionError: If the archive can't be listed
        """
        try:
            if kind is ArchiveKind.ZIP:
                with zipfile.ZipFile(archive_path, "r") as zf:
                    members = zf.namelist()
            elif kind is ArchiveKind.TAR:
                with tarfile.open(archive_path, "r:*") as tar:
                    members = tar.getnames()
            else:
                members = self._list_7z(archive_path)
        except (zipfile.BadZipFile, tarfile.TarError, OSError) as e:
            raise ExtractionError(f"Failed to list {archive_path.name}: {e}")

        names = set()
        for member in members:
            top = _top_level(member)
            if top is not None:
                names.add(top)
        return names

    def _clear_target(self, kind: ArchiveKind, archive_path: Path, target_dir: Path) -> None:
        """Remove whatever a previous extraction of this archive left behind.

        Only the archive's own top-level entries are removed, so sibling
        installs sharing the target directory are kept.
        """
        for name in sorted(self.list_top_level(kind, archive_path)):
            stale = target_dir / name
            if stale.is_dir() and not stale.is_symlink():
                logger.info(f"Removing previous install {stale}")
                shutil.rmtree(stale)
            elif stale.exists() or stale.is_symlink():
                stale.unlink()

    def _extract_zip(self, archive_path: Path, target_dir: Path) -> None:
        """Extract a .zip archive member by member, marking files executable."""
        try:
            with zipfile.ZipFile(archive_path, "r") as zf:
                for info in zf.infolist():
                    extracted = Path(zf.extract(info, target_dir))
                    if not info.is_dir():
                        extracted.chmod(0o755)
        except zipfile.BadZipFile as e:
            raise ExtractionError(f"Corrupt zip archive {archive_path.name}: {e}")

    def _extract_tar(self, archive_path: Path, target_dir: Path) -> None:
        """Extract a tar archive with the system tar."""
        tar = shutil.which("tar")
        if tar is None:
            raise ExtractionError("tar not found on PATH")
        self._run_extractor([tar, "-xvf", str(archive_path), "-C", str(target_dir)], archive_path)

    def _extract_7z(self, archive_path: Path, target_dir: Path) -> None:
        """Extract a 7z archive with the system 7-Zip."""
        seven_zip = self._find_7z()
        self._run_extractor(
            [seven_zip, "x", str(archive_path), f"-o{target_dir}", "-y"], archive_path
        )

    def _list_7z(self, archive_path: Path) -> List[str]:
        result = subprocess.run(
            [self._find_7z(), "l", "-ba", "-slt", str(archive_path)],
            capture_output=True,
            text=True,
            env=self.env,
        )
        if result.returncode != 0:
            raise ExtractionError(f"7z listing failed for {archive_path.name}: {result.stderr}")
        return [
            line.split("=", 1)[1].strip()
            for line in result.stdout.splitlines()
            if line.startswith("Path = ")
        ]

    def _find_7z(self) -> str:
        for name in SEVEN_ZIP_BINARIES:
            found = shutil.which(name)
            if found:
                return found
        raise ExtractionError("7-Zip not found on PATH (tried: " + ", ".join(SEVEN_ZIP_BINARIES) + ")")

    def _run_extractor(self, cmd: List[str], archive_path: Path) -> None:
        logger.info(shlex.join(cmd))
        result = subprocess.run(cmd, capture_output=True, text=True, env=self.env)
        if result.stdout:
            logger.debug(result.stdout)
        if result.returncode != 0:
            logger.error(result.stderr)
            raise ExtractionError(
                f"Extraction of {archive_path.name} exited with code {result.returncode}"
            )

    def _run_post_install(self, entry: PostInstallCommand, install_dir: Path) -> bool:
        """Run one post-install command.

        Returns:
            True if the command exited with status 0
        """
        args = shlex.split(entry.command)
        if not args:
            logger.error("Empty post-install command")
            return False
        if entry.resolve_against_install_dir:
            args[0] = str(install_dir / args[0])

        logger.info(f"Post-install: {shlex.join(args)}")
        try:
            result = subprocess.run(args, capture_output=True, text=True, env=self.env)
        except OSError as e:
            logger.error(f"Post-install command failed to start: {e}")
            return False

        if result.stdout:
            logger.debug(result.stdout)
        if result.returncode != 0:
            logger.error(
                f"Post-install command exited with code {result.returncode}\n"
                + f"stdout: {result.stdout}\n"
                + f"stderr: {result.stderr}"
            )
            return False
        return True
