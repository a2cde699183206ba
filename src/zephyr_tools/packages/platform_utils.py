"""Platform Detection Utilities.

This module detects the host platform and architecture in the naming used by
Zephyr SDK release archives.

Supported Platforms:
    - macos: x86_64, aarch64
    - linux: x86_64, aarch64
    - windows: x86_64
"""

import platform
from typing import Literal, Tuple


class PlatformError(Exception):
    """Raised when platform detection fails or platform is unsupported."""

    pass


PlatformName = Literal["macos", "linux", "windows"]
ArchName = Literal["x86_64", "aarch64"]

SUPPORTED_PLATFORMS = ("macos", "linux", "windows")
SUPPORTED_ARCHS = ("x86_64", "aarch64")


class PlatformDetector:
    """Detects the current platform and architecture for SDK selection."""

    @staticmethod
    def detect_sdk_platform() -> Tuple[str, str]:
        """Detect the current platform for Zephyr SDK selection.

        Returns:
            Tuple of (platform, architecture)
            Platform: 'macos', 'linux', or 'windows'
            Architecture: 'x86_64' or 'aarch64'

        Raises:
            PlatformError: If platform or architecture is unsupported
        """
        system = platform.system().lower()
        machine = platform.machine().lower()

        if system == "darwin":
            plat = "macos"
        elif system == "linux":
            plat = "linux"
        elif system == "windows":
            plat = "windows"
        else:
            raise PlatformError(f"Unsupported platform: {system}")

        if machine in ("x86_64", "amd64", "x64"):
            arch = "x86_64"
        elif machine in ("aarch64", "arm64"):
            arch = "aarch64"
        else:
            raise PlatformError(f"Unsupported architecture: {machine}")

        return plat, arch

    @staticmethod
    def python_executable_name() -> str:
        """Name of the Python 3 interpreter on PATH for this host."""
        return "python" if platform.system().lower() == "windows" else "python3"

    @staticmethod
    def get_platform_info() -> dict:
        """Get detailed information about the current platform.

        Returns:
            Dictionary with platform information
        """
        info = {
            "system": platform.system(),
            "machine": platform.machine(),
            "platform": platform.platform(),
            "python_version": platform.python_version(),
        }
        try:
            info["sdk_format"] = PlatformDetector.detect_sdk_platform()
        except PlatformError as e:
            info["sdk_format"] = None
            info["sdk_error"] = str(e)
        return info
