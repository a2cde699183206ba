"""Unit tests for archive extraction and post-install commands."""

import os
import shutil
import sys
import tarfile
import zipfile
from unittest.mock import MagicMock, patch

import pytest

from zephyr_tools.packages import (
    ArchiveInstaller,
    ArchiveKind,
    DownloadDescriptor,
    UnsupportedArchiveError,
)
from zephyr_tools.packages.manifest import PostInstallCommand


def make_descriptor(filename, name="toolchains/", clear_target=False, post_install=()):
    return DownloadDescriptor(
        name=name,
        url=f"https://example.com/{filename}",
        expected_checksum="0" * 32,
        filename=filename,
        clear_target=clear_target,
        post_install=tuple(post_install),
    )


def make_zip(path, files):
    with zipfile.ZipFile(path, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return path


def make_tar(path, files, source_dir):
    for name, content in files.items():
        file_path = source_dir / name
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content)
    with tarfile.open(path, "w:gz") as tar:
        for name in {n.split("/")[0] for n in files}:
            tar.add(source_dir / name, arcname=name)
    return path


class TestArchiveKind:
    """Tests for ArchiveKind.from_filename."""

    @pytest.mark.parametrize(
        "filename,kind",
        [
            ("sdk.zip", ArchiveKind.ZIP),
            ("sdk.7z", ArchiveKind.SEVEN_ZIP),
            ("sdk.tar", ArchiveKind.TAR),
            ("sdk.tar.xz", ArchiveKind.TAR),
            ("sdk.tar.gz", ArchiveKind.TAR),
            ("sdk.tgz", ArchiveKind.TAR),
            ("SDK.TAR.BZ2", ArchiveKind.TAR),
        ],
    )
    def test_known_formats(self, filename, kind):
        """Test each supported extension maps to its strategy."""
        assert ArchiveKind.from_filename(filename) is kind

    def test_unknown_format(self):
        """Test an unknown extension is rejected."""
        with pytest.raises(UnsupportedArchiveError):
            ArchiveKind.from_filename("sdk.rar")


class TestZipExtraction:
    """Tests for zip extraction."""

    def test_extracts_into_target(self, tmp_path):
        """Test members land under install_root/name."""
        archive = make_zip(tmp_path / "sdk.zip", {"zephyr-sdk-0.16/bin/gcc": "#!/bin/sh\n", "zephyr-sdk-0.16/README": "hi"})
        install_root = tmp_path / "tools"

        ok = ArchiveInstaller().install(make_descriptor("sdk.zip"), archive, install_root)

        assert ok
        assert (install_root / "toolchains" / "zephyr-sdk-0.16" / "bin" / "gcc").is_file()
        assert (install_root / "toolchains" / "zephyr-sdk-0.16" / "README").read_text() == "hi"

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_files_are_executable(self, tmp_path):
        """Test every extracted regular file is chmod 0o755."""
        archive = make_zip(tmp_path / "sdk.zip", {"sdk/bin/gcc": "x", "sdk/lib/libc.a": "y"})
        install_root = tmp_path / "tools"

        ArchiveInstaller().extract(make_descriptor("sdk.zip"), archive, install_root)

        for rel in ("sdk/bin/gcc", "sdk/lib/libc.a"):
            mode = (install_root / "toolchains" / rel).stat().st_mode & 0o777
            assert mode == 0o755

    def test_corrupt_zip_returns_false(self, tmp_path):
        """Test a corrupt archive reports failure instead of raising."""
        archive = tmp_path / "sdk.zip"
        archive.write_bytes(b"not a zip")

        assert ArchiveInstaller().extract(make_descriptor("sdk.zip"), archive, tmp_path / "tools") is False

    def test_unsupported_archive_raises(self, tmp_path):
        """Test an unsupported archive attempts nothing."""
        archive = tmp_path / "sdk.rar"
        archive.write_bytes(b"rar")
        install_root = tmp_path / "tools"

        with pytest.raises(UnsupportedArchiveError):
            ArchiveInstaller().install(make_descriptor("sdk.rar"), archive, install_root)
        assert not install_root.exists()


class TestClearTarget:
    """Tests for clear_target handling."""

    def test_replaces_previous_install_keeps_siblings(self, tmp_path):
        """Test only the archive's own top-level entries are replaced."""
        install_root = tmp_path / "tools"
        toolchains = install_root / "toolchains"
        (toolchains / "zephyr-sdk-0.16" / "stale").mkdir(parents=True)
        (toolchains / "zephyr-sdk-0.15" / "keep").mkdir(parents=True)

        archive = make_zip(tmp_path / "sdk.zip", {"zephyr-sdk-0.16/fresh": "new"})
        ok = ArchiveInstaller().extract(make_descriptor("sdk.zip", clear_target=True), archive, install_root)

        assert ok
        assert (toolchains / "zephyr-sdk-0.16" / "fresh").exists()
        assert not (toolchains / "zephyr-sdk-0.16" / "stale").exists()
        assert (toolchains / "zephyr-sdk-0.15" / "keep").exists()

    def test_without_clear_target_merges(self, tmp_path):
        """Test an overlay adds to existing contents."""
        install_root = tmp_path / "tools"
        sdk = install_root / "toolchains" / "zephyr-sdk-0.16"
        (sdk / "cmake").mkdir(parents=True)

        archive = make_zip(tmp_path / "overlay.zip", {"arm-zephyr-eabi/bin/gcc": "x"})
        ArchiveInstaller().extract(
            make_descriptor("overlay.zip", name="toolchains/zephyr-sdk-0.16"), archive, install_root
        )

        assert (sdk / "cmake").exists()
        assert (sdk / "arm-zephyr-eabi" / "bin" / "gcc").exists()

    def test_list_top_level(self, tmp_path):
        """Test top-level names skip unsafe members."""
        archive = make_zip(tmp_path / "a.zip", {"a/b": "1", "c": "2", "../evil": "3", "./d/e": "4"})
        names = ArchiveInstaller().list_top_level(ArchiveKind.ZIP, archive)
        assert names == {"a", "c", "d"}


@pytest.mark.skipif(shutil.which("tar") is None, reason="tar not available")
class TestTarExtraction:
    """Tests for extraction with the system tar."""

    def test_extracts_tarball(self, tmp_path):
        """Test a gzipped tarball is extracted by tar."""
        archive = make_tar(tmp_path / "sdk.tar.gz", {"zephyr-sdk-0.16/setup.sh": "echo ok"}, tmp_path / "src")
        install_root = tmp_path / "tools"

        ok = ArchiveInstaller().extract(make_descriptor("sdk.tar.gz"), archive, install_root)

        assert ok
        assert (install_root / "toolchains" / "zephyr-sdk-0.16" / "setup.sh").read_text() == "echo ok"

    def test_tar_failure_returns_false(self, tmp_path):
        """Test a non-zero tar exit reports failure."""
        archive = tmp_path / "sdk.tar.xz"
        archive.write_bytes(b"garbage")

        with patch("zephyr_tools.packages.archive_utils.subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=2, stdout="", stderr="tar: bad archive")
            ok = ArchiveInstaller().extract(make_descriptor("sdk.tar.xz"), archive, tmp_path / "tools")

        assert ok is False
        cmd = mock_run.call_args[0][0]
        assert cmd[1:3] == ["-xvf", str(archive)]
        assert cmd[-2:] == ["-C", str(tmp_path / "tools" / "toolchains")]


class TestPostInstall:
    """Tests for post-install commands."""

    def test_resolves_program_against_install_dir(self, tmp_path):
        """Test the first token is joined onto the install directory."""
        entry = PostInstallCommand("zephyr-sdk-0.16/setup.sh -t arm-zephyr-eabi", resolve_against_install_dir=True)
        with patch("zephyr_tools.packages.archive_utils.subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout="done", stderr="")
            ok = ArchiveInstaller().post_install(make_descriptor("sdk.zip", post_install=[entry]), tmp_path)

        assert ok
        cmd = mock_run.call_args[0][0]
        assert cmd == [str(tmp_path / "toolchains" / "zephyr-sdk-0.16/setup.sh"), "-t", "arm-zephyr-eabi"]

    def test_first_failure_stops(self, tmp_path):
        """Test commands after a failing one don't run."""
        entries = [PostInstallCommand("first"), PostInstallCommand("second")]
        with patch("zephyr_tools.packages.archive_utils.subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="nope")
            ok = ArchiveInstaller().post_install(make_descriptor("sdk.zip", post_install=entries), tmp_path)

        assert ok is False
        assert mock_run.call_count == 1

    def test_program_missing(self, tmp_path):
        """Test a program that can't start reports failure."""
        entry = PostInstallCommand("missing.sh")
        with patch(
            "zephyr_tools.packages.archive_utils.subprocess.run",
            side_effect=FileNotFoundError("missing.sh"),
        ):
            ok = ArchiveInstaller().post_install(make_descriptor("sdk.zip", post_install=[entry]), tmp_path)
        assert ok is False

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell script")
    def test_runs_real_script(self, tmp_path):
        """Test an extracted script runs with its arguments."""
        install_root = tmp_path / "tools"
        script = install_root / "toolchains" / "sdk" / "setup.sh"
        script.parent.mkdir(parents=True)
        marker = tmp_path / "marker"
        script.write_text(f'#!/bin/sh\necho "$@" > "{marker}"\n')
        os.chmod(script, 0o755)

        entry = PostInstallCommand("sdk/setup.sh -t arm-zephyr-eabi", resolve_against_install_dir=True)
        ok = ArchiveInstaller().post_install(make_descriptor("sdk.zip", post_install=[entry]), install_root)

        assert ok
        assert marker.read_text().strip() == "-t arm-zephyr-eabi"
