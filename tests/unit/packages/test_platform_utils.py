"""Unit tests for platform detection."""

from unittest.mock import patch

import pytest

from zephyr_tools.packages import PlatformDetector, PlatformError


class TestPlatformDetector:
    """Test cases for PlatformDetector."""

    @pytest.mark.parametrize(
        "system,machine,expected",
        [
            ("Linux", "x86_64", ("linux", "x86_64")),
            ("Linux", "aarch64", ("linux", "aarch64")),
            ("Darwin", "arm64", ("macos", "aarch64")),
            ("Darwin", "x86_64", ("macos", "x86_64")),
            ("Windows", "AMD64", ("windows", "x86_64")),
        ],
    )
    def test_detect_sdk_platform(self, system, machine, expected):
        """Test host names map to SDK archive naming."""
        with patch("platform.system", return_value=system), patch("platform.machine", return_value=machine):
            assert PlatformDetector.detect_sdk_platform() == expected

    def test_unsupported_system(self):
        """Test an unknown operating system is rejected."""
        with patch("platform.system", return_value="FreeBSD"), patch("platform.machine", return_value="x86_64"):
            with pytest.raises(PlatformError, match="platform"):
                PlatformDetector.detect_sdk_platform()

    def test_unsupported_architecture(self):
        """Test an unknown architecture is rejected."""
        with patch("platform.system", return_value="Linux"), patch("platform.machine", return_value="riscv64"):
            with pytest.raises(PlatformError, match="architecture"):
                PlatformDetector.detect_sdk_platform()

    def test_python_executable_name(self):
        """Test the interpreter name per host."""
        with patch("platform.system", return_value="Windows"):
            assert PlatformDetector.python_executable_name() == "python"
        with patch("platform.system", return_value="Linux"):
            assert PlatformDetector.python_executable_name() == "python3"

    def test_get_platform_info_unsupported(self):
        """Test platform info records detection errors instead of raising."""
        with patch("platform.system", return_value="Plan9"):
            info = PlatformDetector.get_platform_info()
        assert info["sdk_format"] is None
        assert "Plan9".lower() in info["sdk_error"]
