"""Host prerequisite checks for environment setup.

Setup needs git and a Python 3 with pip and venv on PATH. Each check runs the
tool once; the first missing prerequisite stops setup before anything is
created on disk.
"""

import logging
import platform
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

from zephyr_tools.packages.platform_utils import PlatformDetector

logger = logging.getLogger(__name__)


class PrerequisiteError(Exception):
    """Raised when a required host tool is missing or unusable."""

    def __init__(self, tool: str, message: str, hint: str = ""):
        self.tool = tool
        self.hint = hint
        super().__init__(message)


INSTALL_HINTS: Dict[str, Dict[str, str]] = {
    "git": {
        "darwin": "Install Homebrew (https://brew.sh), then run `brew install git`.",
        "linux": "Install git with your distribution's package manager.",
        "windows": "Install git, e.g. `choco install git`.",
    },
    "python": {
        "darwin": "Install Homebrew (https://brew.sh), then run `brew install python3`.",
        "linux": "Install python with `apt install python3.10 python3.10-pip python3.10-venv`.",
        "windows": "Install Python 3, e.g. `choco install python`.",
    },
    "pip": {
        "linux": "Install the `python3.10-pip` package (or newer).",
        "default": "Install Python 3 with pip support.",
    },
    "venv": {
        "linux": "Install the `python3.10-venv` package (or newer).",
        "default": "Install Python 3 with venv support.",
    },
}


def install_hint(tool: str) -> str:
    hints = INSTALL_HINTS.get(tool, {})
    system = platform.system().lower()
    return hints.get(system, hints.get("default", ""))


@dataclass
class CheckResult:
    """Result of one prerequisite check."""

    tool: str
    command: List[str]
    output: str


class PrerequisiteChecker:
    """Checks that git, Python 3, pip and venv are available."""

    def __init__(self, env: Optional[Mapping[str, str]] = None, python: Optional[str] = None):
        """Initialize checker.

        Args:
            env: Environment the tools are looked up with
            python: Python interpreter name (platform default if None)
        """
        self.env = dict(env) if env is not None else None
        self.python = python or PlatformDetector.python_executable_name()

    def _run(self, tool: str, command: List[str]) -> CheckResult:
        logger.info(f"Checking {tool}: {' '.join(command)}")
        try:
            result = subprocess.run(command, capture_output=True, text=True, env=self.env)
        except OSError as e:
            raise PrerequisiteError(tool, f"{tool} is not installed: {e}", install_hint(tool))

        output = (result.stdout or "") + (result.stderr or "")
        logger.debug(output)
        if result.returncode != 0:
            raise PrerequisiteError(
                tool,
                f"{tool} check failed: `{' '.join(command)}` exited with code {result.returncode}",
                install_hint(tool),
            )
        return CheckResult(tool=tool, command=command, output=output)

    def check_git(self) -> CheckResult:
        return self._run("git", ["git", "--version"])

    def check_python(self) -> CheckResult:
        result = self._run("python", [self.python, "--version"])
        if "Python 3" not in result.output:
            raise PrerequisiteError(
                "python",
                f"{self.python} is not Python 3 (reported: {result.output.strip()})",
                install_hint("python"),
            )
        return result

    def check_pip(self) -> CheckResult:
        return self._run("pip", [self.python, "-m", "pip", "--version"])

    def check_venv(self) -> CheckResult:
        return self._run("venv", [self.python, "-m", "venv", "--help"])

    def check_all(self) -> List[CheckResult]:
        """Run every check in order.

        Raises:
            PrerequisiteError: For the first missing prerequisite
        """
        return [
            self.check_git(),
            self.check_python(),
            self.check_pip(),
            self.check_venv(),
        ]
