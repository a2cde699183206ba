"""Serialized execution of external commands."""

from .messages import (
    BatchResult,
    BatchStatus,
    CancellationToken,
    Job,
    JobCancelledError,
    JobOptions,
    JobOutcome,
    QueueState,
)
from .queue import TaskQueue
from .runner import JobRunner, SubprocessJobRunner

__all__ = [
    "TaskQueue",
    "Job",
    "JobOptions",
    "JobOutcome",
    "JobRunner",
    "SubprocessJobRunner",
    "BatchResult",
    "BatchStatus",
    "CancellationToken",
    "JobCancelledError",
    "QueueState",
]
