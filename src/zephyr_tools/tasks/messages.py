"""
Typed values exchanged with the task queue.

A Job is one external command. JobOptions carry the per-job execution policy
chosen when the job is pushed. Jobs pushed in a row up to (and including) one
flagged final form a batch; the batch's outcome is delivered as a BatchResult
through the Future returned by TaskQueue.push().
"""

import shlex
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional, Sequence


class QueueState(Enum):
    """Task queue state enumeration."""

    IDLE = "idle"
    RUNNING = "running"
    CANCELLED = "cancelled"


class BatchStatus(Enum):
    """Final status of a batch."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobCancelledError(Exception):
    """Raised by a runner asked to start a job after cancellation."""

    pass


@dataclass(frozen=True)
class Job:
    """One externally runnable step.

    Attributes:
        name: Human-readable name shown in messages
        command: Program and arguments
        cwd: Working directory (None for the current directory)
        env: Environment variables overlaid on the process environment
    """

    name: str
    command: Sequence[str]
    cwd: Optional[str] = None
    env: Optional[Mapping[str, str]] = None

    @property
    def command_line(self) -> str:
        return shlex.join(self.command)


@dataclass(frozen=True)
class JobOptions:
    """Execution policy attached to a job when it is pushed.

    Attributes:
        ignore_error: A failure doesn't halt the batch
        is_final: Closes the batch; its completion triggers the continuation
        success_message: Shown once the batch completes
        on_complete: Called with payload after the final job succeeds
        payload: Data handed to on_complete and returned in the BatchResult
    """

    ignore_error: bool = False
    is_final: bool = False
    success_message: Optional[str] = None
    on_complete: Optional[Callable[[Any], None]] = None
    payload: Any = None


@dataclass
class JobOutcome:
    """Result of running one job to completion."""

    name: str
    returncode: Optional[int]
    output: str = ""
    error: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    finished_at: float = field(default_factory=time.time)

    @property
    def success(self) -> bool:
        return self.error is None and self.returncode == 0

    def describe(self) -> str:
        if self.error is not None:
            return f"{self.name}: {self.error}"
        return f"{self.name}: exited with code {self.returncode}"


@dataclass
class BatchResult:
    """Outcome of a batch, delivered through the batch future.

    Attributes:
        status: SUCCEEDED, FAILED or CANCELLED
        payload: The final job's payload (None if the batch never got there)
        message: Success message, or a description of the failure
        failed_job: Name of the job that aborted the batch
        outcomes: Outcomes of every job that ran, in order
    """

    status: BatchStatus
    payload: Any = None
    message: Optional[str] = None
    failed_job: Optional[str] = None
    outcomes: List[JobOutcome] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status is BatchStatus.SUCCEEDED


class CancellationToken:
    """Cooperative cancellation flag handed to runners."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise JobCancelledError("Job queue was cancelled")
