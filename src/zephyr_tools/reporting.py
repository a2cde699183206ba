"""User-facing progress and message reporting.

Pipelines and the task queue never print directly. They talk to a Reporter,
which the CLI implements on top of the console and tests implement as a
recorder.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Tuple

logger = logging.getLogger(__name__)


class Reporter:
    """Base reporter. Forwards everything to the log sink only."""

    def progress(self, increment: int, message: str = "") -> None:
        """Report a coarse progress increment (percent points)."""
        logger.debug(f"progress +{increment} {message}")

    def info(self, message: str) -> None:
        logger.info(message)

    def warning(self, message: str) -> None:
        logger.warning(message)

    def error(self, message: str) -> None:
        logger.error(message)

    def output(self, line: str) -> None:
        """Relay one line of external process output."""
        logger.debug(line)


class ConsoleReporter(Reporter):
    """Reporter printing colored messages and a running percentage."""

    RED = "\033[1;31m"
    GREEN = "\033[1;32m"
    YELLOW = "\033[1;33m"
    RESET = "\033[0m"

    def __init__(self, show_output: bool = True):
        """Initialize console reporter.

        Args:
            show_output: Whether to echo external process output lines
        """
        self.show_output = show_output
        self.percent = 0

    def progress(self, increment: int, message: str = "") -> None:
        super().progress(increment, message)
        self.percent = min(100, self.percent + increment)
        suffix = f" {message}" if message else ""
        print(f"[{self.percent:>3}%]{suffix}")

    def info(self, message: str) -> None:
        super().info(message)
        print(f"{self.GREEN}✓ {message}{self.RESET}")

    def warning(self, message: str) -> None:
        super().warning(message)
        print(f"{self.YELLOW}! {message}{self.RESET}")

    def error(self, message: str) -> None:
        super().error(message)
        print(f"{self.RED}✗ {message}{self.RESET}")

    def output(self, line: str) -> None:
        super().output(line)
        if self.show_output:
            print(line)


@dataclass
class RecordingReporter(Reporter):
    """Reporter that keeps every event in memory."""

    increments: List[Tuple[int, str]] = field(default_factory=list)
    messages: List[Tuple[str, str]] = field(default_factory=list)
    lines: List[str] = field(default_factory=list)

    def progress(self, increment: int, message: str = "") -> None:
        self.increments.append((increment, message))

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def warning(self, message: str) -> None:
        self.messages.append(("warning", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    def output(self, line: str) -> None:
        self.lines.append(line)

    @property
    def errors(self) -> List[str]:
        return [text for level, text in self.messages if level == "error"]

    @property
    def infos(self) -> List[str]:
        return [text for level, text in self.messages if level == "info"]
