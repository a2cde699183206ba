"""Tools directory layout for zephyr-tools.

All downloaded and installed artifacts live under a single tools directory.

Directory Structure:
    ~/.zephyrtools/
    ├── downloads/                  # Download cache, keyed by archive filename
    │   └── zephyr-sdk-0.16.1_linux-x86_64_minimal.tar.xz
    ├── manifests/                  # <version>.sum checksum manifests
    ├── toolchains/
    │   └── zephyr-sdk-{version}/   # Minimal SDK + architecture overlays
    ├── env/                        # Python virtual environment with west
    ├── state.json                  # Global persisted state
    └── zephyr-tools.log            # Rotating diagnostic log

The location can be overridden with the ZEPHYR_TOOLS_DIR environment variable.
"""

import os
from pathlib import Path
from typing import Optional

TOOLS_DIR_ENV = "ZEPHYR_TOOLS_DIR"
MANIFEST_DIR_ENV = "ZEPHYR_TOOLS_MANIFEST_DIR"
TOOLS_FOLDER_NAME = ".zephyrtools"


class Cache:
    """Manages the zephyr-tools directory structure."""

    def __init__(self, tools_dir: Optional[Path] = None):
        """Initialize tools directory manager.

        Args:
            tools_dir: Tools directory. If None, uses ZEPHYR_TOOLS_DIR or ~/.zephyrtools
        """
        if tools_dir is None:
            tools_env = os.environ.get(TOOLS_DIR_ENV)
            if tools_env:
                tools_dir = Path(tools_env)
            else:
                tools_dir = Path.home() / TOOLS_FOLDER_NAME

        self.tools_dir = Path(tools_dir).resolve()

    @property
    def downloads_dir(self) -> Path:
        """Directory for downloaded archives."""
        return self.tools_dir / "downloads"

    @property
    def manifests_dir(self) -> Path:
        """Directory for checksum manifests."""
        manifest_env = os.environ.get(MANIFEST_DIR_ENV)
        if manifest_env:
            return Path(manifest_env).resolve()
        return self.tools_dir / "manifests"

    @property
    def toolchains_dir(self) -> Path:
        """Directory for installed SDKs."""
        return self.tools_dir / "toolchains"

    @property
    def python_env_dir(self) -> Path:
        """Directory for the Python virtual environment."""
        return self.tools_dir / "env"

    @property
    def state_file(self) -> Path:
        """Global persisted state file."""
        return self.tools_dir / "state.json"

    def get_toolchain_path(self, version: str) -> Path:
        """Get path where a toolchain version is installed.

        Args:
            version: SDK version string (e.g., '0.16.1')

        Returns:
            Path to the SDK install directory
        """
        return self.toolchains_dir / f"zephyr-sdk-{version}"

    def ensure_directories(self) -> None:
        """Create all tools directories if they don't exist."""
        for directory in [
            self.tools_dir,
            self.downloads_dir,
            self.manifests_dir,
            self.toolchains_dir,
        ]:
            directory.mkdir(parents=True, exist_ok=True)
