"""Job runners.

A runner executes a single Job to completion and reports its exit status.
The task queue owns ordering; runners only run.
"""

import logging
import os
import subprocess
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from .messages import CancellationToken, Job, JobOutcome

logger = logging.getLogger(__name__)


class JobRunner(ABC):
    """Interface for executing a job."""

    @abstractmethod
    def run(self, job: Job, token: CancellationToken) -> JobOutcome:
        """Run a job to completion.

        Raises:
            JobCancelledError: If the token was cancelled before the job started
        """
        pass


class SubprocessJobRunner(JobRunner):
    """Runs jobs as child processes, streaming their output.

    stdout and stderr are merged so lines come out in the order the tool
    printed them. Running processes are never killed: cancellation is only
    checked before a process is spawned.
    """

    def __init__(self, on_output: Optional[Callable[[str], None]] = None):
        """Initialize runner.

        Args:
            on_output: Called with each output line as it is produced
        """
        self.on_output = on_output

    def run(self, job: Job, token: CancellationToken) -> JobOutcome:
        token.raise_if_cancelled()

        env = None
        if job.env is not None:
            env = dict(os.environ)
            env.update(job.env)

        started_at = time.time()
        logger.info(f"[{job.name}] {job.command_line} (cwd={job.cwd or os.getcwd()})")

        lines: List[str] = []
        try:
            with subprocess.Popen(
                list(job.command),
                cwd=job.cwd,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
            ) as proc:
                assert proc.stdout is not None
                for line in proc.stdout:
                    line = line.rstrip("\n")
                    lines.append(line)
                    logger.debug(f"[{job.name}] {line}")
                    if self.on_output is not None:
                        self.on_output(line)
                returncode = proc.wait()
        except OSError as e:
            return JobOutcome(
                name=job.name,
                returncode=None,
                error=f"failed to start {job.command[0]}: {e}",
                started_at=started_at,
                finished_at=time.time(),
            )

        return JobOutcome(
            name=job.name,
            returncode=returncode,
            output="\n".join(lines),
            started_at=started_at,
            finished_at=time.time(),
        )
