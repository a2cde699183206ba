"""
Serialized job queue.

Jobs run one at a time, strictly in push order, on a single worker thread.
west isn't safe to run concurrently against the same workspace, so there is
never more than one external process in flight per queue.

Batches:
    Jobs pushed in a row form a batch, closed by the job whose options have
    is_final set. push() returns the batch's Future, which resolves with a
    BatchResult once the batch succeeds, fails or is cancelled. The final
    job's on_complete continuation runs on the worker thread after every job
    of the batch has finished and before the next batch's first job starts.

Failure policy:
    - ignore_error=True: the failure is logged and the batch continues
    - ignore_error=False: the batch's remaining jobs are discarded, the
      failure is reported, and on_complete is never called

Cancellation:
    Cooperative. cancel() discards every pending job; the running job is
    allowed to finish. Jobs later pushed into a batch that was still open at
    the cancel are dropped up to and including its final job. The queue then
    returns to IDLE, or keeps going with jobs pushed after the cancel.
"""

import logging
import threading
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Deque, List, Optional

from zephyr_tools.reporting import Reporter

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
from .runner import JobRunner, SubprocessJobRunner

logger = logging.getLogger(__name__)


class _Batch:
    """Book-keeping for one batch."""

    def __init__(self) -> None:
        self.future: "Future[BatchResult]" = Future()
        self.outcomes: List[JobOutcome] = []
        self.cancelled = False


@dataclass
class _Entry:
    job: Job
    options: JobOptions
    batch: _Batch


class TaskQueue:
    """Runs pushed jobs one at a time in FIFO order."""

    def __init__(self, runner: Optional[JobRunner] = None, reporter: Optional[Reporter] = None):
        """Initialize the queue.

        Args:
            runner: Executes individual jobs (defaults to SubprocessJobRunner)
            reporter: Receives user-facing messages
        """
        self.reporter = reporter or Reporter()
        self.runner = runner or SubprocessJobRunner(on_output=self.reporter.output)

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._pending: Deque[_Entry] = deque()
        self._state = QueueState.IDLE
        self._token = CancellationToken()
        self._open_batch: Optional[_Batch] = None
        self._current: Optional[_Entry] = None
        self._worker: Optional[threading.Thread] = None

    @property
    def state(self) -> QueueState:
        with self._lock:
            return self._state

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def push(self, job: Job, options: Optional[JobOptions] = None) -> "Future[BatchResult]":
        """Append a job, starting the worker if the queue is idle.

        Args:
            job: Job to run
            options: Execution policy for this job

        Returns:
            Future resolved with the BatchResult of the job's batch
        """
        options = options or JobOptions()
        with self._lock:
            batch = self._open_batch
            if batch is None:
                batch = _Batch()
                self._open_batch = batch
            if options.is_final:
                self._open_batch = None

            if batch.future.done() or batch.cancelled:
                # The batch was aborted or cancelled before the caller finished pushing it
                logger.info(f"Dropping job '{job.name}': its batch already ended")
                return batch.future

            self._pending.append(_Entry(job=job, options=options, batch=batch))
            logger.debug(f"Queued job '{job.name}' ({len(self._pending)} pending)")

            if self._worker is None:
                self._state = QueueState.RUNNING
                self._worker = threading.Thread(
                    target=self._drain, name="zephyr-tools-queue", daemon=True
                )
                self._worker.start()

            return batch.future

    def cancel(self) -> None:
        """Stop starting new jobs. The running job is allowed to finish."""
        with self._lock:
            if self._worker is None:
                return

            self._state = QueueState.CANCELLED
            self._token.cancel()

            dropped: List[_Batch] = []
            for entry in self._pending:
                if not any(entry.batch is b for b in dropped):
                    dropped.append(entry.batch)
            self._pending.clear()

            current = self._current
            if current is not None and not current.options.is_final:
                current.batch.cancelled = True
            for batch in dropped:
                batch.cancelled = True

            # A batch still being pushed stays open so its remaining jobs are dropped
            open_batch = self._open_batch
            if open_batch is not None:
                open_batch.cancelled = True
                if not any(open_batch is b for b in dropped):
                    dropped.append(open_batch)

        logger.info(f"Queue cancelled, {len(dropped)} batch(es) discarded")
        self.reporter.warning("Cancelled. Waiting for the running job to finish.")

        for batch in dropped:
            if current is not None and batch is current.batch:
                # Resolved by the worker once the running job finishes
                continue
            self._resolve(batch, BatchResult(status=BatchStatus.CANCELLED, message="Cancelled"))

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until the queue is idle.

        Returns:
            True if idle, False on timeout
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._worker is None, timeout)

    def _drain(self) -> None:
        while True:
            with self._lock:
                if not self._pending:
                    self._state = QueueState.IDLE
                    self._worker = None
                    self._token = CancellationToken()
                    self._idle.notify_all()
                    return
                if self._state is QueueState.CANCELLED:
                    # Only jobs pushed after the cancel are left
                    self._state = QueueState.RUNNING
                    self._token = CancellationToken()
                entry = self._pending.popleft()
                self._current = entry
                token = self._token

            outcome = self._run(entry, token)

            with self._lock:
                self._current = None

            self._finish_job(entry, outcome)

    def _run(self, entry: _Entry, token: CancellationToken) -> JobOutcome:
        try:
            token.raise_if_cancelled()
            return self.runner.run(entry.job, token)
        except JobCancelledError:
            entry.batch.cancelled = True
            return JobOutcome(name=entry.job.name, returncode=None, error="cancelled before start")
        except Exception as e:
            logger.exception(f"Runner error for job '{entry.job.name}'")
            return JobOutcome(name=entry.job.name, returncode=None, error=f"runner error: {e}")

    def _finish_job(self, entry: _Entry, outcome: JobOutcome) -> None:
        batch = entry.batch
        options = entry.options
        batch.outcomes.append(outcome)

        if batch.future.done():
            return

        if batch.cancelled and not (options.is_final and outcome.success):
            self._resolve(batch, BatchResult(status=BatchStatus.CANCELLED, message="Cancelled"))
            return

        if not outcome.success:
            if outcome.output:
                logger.error(f"Output of '{entry.job.name}':\n{outcome.output}")
            if options.ignore_error:
                logger.warning(f"Ignoring failure: {outcome.describe()}")
            else:
                with self._lock:
                    self._pending = deque(e for e in self._pending if e.batch is not batch)
                logger.error(f"Batch aborted: {outcome.describe()}")
                self.reporter.error(f"{entry.job.name} failed. Check the log for details.")
                self._resolve(
                    batch,
                    BatchResult(
                        status=BatchStatus.FAILED,
                        message=outcome.describe(),
                        failed_job=entry.job.name,
                    ),
                )
                return

        if not options.is_final:
            return

        if options.on_complete is not None:
            try:
                options.on_complete(options.payload)
            except Exception as e:
                logger.exception(f"Completion of '{entry.job.name}' failed")
                self.reporter.error(f"{entry.job.name}: {e}")
                self._resolve(
                    batch,
                    BatchResult(
                        status=BatchStatus.FAILED,
                        payload=options.payload,
                        message=f"completion failed: {e}",
                        failed_job=entry.job.name,
                    ),
                )
                return

        if options.success_message:
            self.reporter.info(options.success_message)

        self._resolve(
            batch,
            BatchResult(
                status=BatchStatus.SUCCEEDED,
                payload=options.payload,
                message=options.success_message,
            ),
        )

    def _resolve(self, batch: _Batch, result: BatchResult) -> None:
        result.outcomes = list(batch.outcomes)
        if not batch.future.done():
            batch.future.set_result(result)
