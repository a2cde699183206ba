"""CLI utility functions for zephyr-tools.

This module provides common utilities used across CLI commands including:
- Error handling and formatting
- Path validation
- On/off flag parsing
"""

import sys
import traceback
from pathlib import Path
from typing import NoReturn, Optional

from zephyr_tools.config import StateError
from zephyr_tools.packages import (
    ChecksumError,
    DownloadError,
    ExtractionError,
    ManifestError,
    PlatformError,
)
from zephyr_tools.project import ProjectError
from zephyr_tools.provisioning import PrerequisiteError, ProvisioningError

# Failures with a human-readable message; anything else is unexpected
EXPECTED_ERRORS = (
    ProjectError,
    ProvisioningError,
    PrerequisiteError,
    StateError,
    ManifestError,
    DownloadError,
    ChecksumError,
    ExtractionError,
    PlatformError,
)


class ErrorFormatter:
    """Formats and displays error messages with ANSI color codes."""

    # ANSI color codes
    RED = "\033[1;31m"
    GREEN = "\033[1;32m"
    YELLOW = "\033[1;33m"
    RESET = "\033[0m"

    @staticmethod
    def print_error(title: str, message: str) -> None:
        """Print formatted error message.

        Args:
            title: Error title (e.g., "Build failed")
            message: Error message details
        """
        print()
        print(f"{ErrorFormatter.RED}✗ {title}{ErrorFormatter.RESET}")
        if message:
            print()
            print(message)
        print()

    @staticmethod
    def print_success(message: str) -> None:
        print()
        print(f"{ErrorFormatter.GREEN}✓ {message}{ErrorFormatter.RESET}")

    @staticmethod
    def print_warning(message: str) -> None:
        print()
        print(f"{ErrorFormatter.YELLOW}✗ {message}{ErrorFormatter.RESET}")

    @staticmethod
    def handle_command_error(title: str, error: Exception, log_file: Optional[Path] = None) -> NoReturn:
        """Handle an expected failure with standard formatting.

        Args:
            title: What failed (e.g., "Init repo failed")
            error: The exception to report
            log_file: Log file holding the full detail
        """
        ErrorFormatter.print_error(title, str(error))
        hint = getattr(error, "hint", "")
        if hint:
            print(hint)
        if log_file is not None:
            print(f"See {log_file} for details.")
        sys.exit(1)

    @staticmethod
    def handle_keyboard_interrupt() -> NoReturn:
        """Handle KeyboardInterrupt with standard formatting."""
        ErrorFormatter.print_warning("Interrupted")
        sys.exit(130)  # Standard exit code for SIGINT

    @staticmethod
    def handle_unexpected_error(error: Exception, verbose: bool = False) -> NoReturn:
        """Handle unexpected errors with standard formatting.

        Args:
            error: The exception to handle
            verbose: Whether to print traceback
        """
        message = f"{type(error).__name__}: {error}"
        ErrorFormatter.print_error("Unexpected error", message)

        if verbose:
            print("Traceback:")
            print(traceback.format_exc())

        sys.exit(1)


class PathValidator:
    """Validates workspace paths and directories."""

    @staticmethod
    def validate_directory(path: Path) -> None:
        """Validate that a path exists and is a directory.

        Args:
            path: Path to validate

        Raises:
            SystemExit: If path doesn't exist or isn't a directory
        """
        if not path.exists():
            print(f"{ErrorFormatter.RED}✗ Error: Path does not exist: {path}{ErrorFormatter.RESET}")
            sys.exit(2)
        if not path.is_dir():
            print(f"{ErrorFormatter.RED}✗ Error: Path is not a directory: {path}{ErrorFormatter.RESET}")
            sys.exit(2)


def parse_on_off(value: str) -> bool:
    """Parse an on/off style flag.

    Raises:
        ValueError: If the value isn't recognized
    """
    lowered = value.strip().lower()
    if lowered in ("on", "true", "yes", "1", "enable", "enabled"):
        return True
    if lowered in ("off", "false", "no", "0", "disable", "disabled"):
        return False
    raise ValueError(f"Expected on or off, got {value!r}")
