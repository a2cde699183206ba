"""Unit tests for the serialized task queue."""

import threading
import time

from zephyr_tools.reporting import RecordingReporter
from zephyr_tools.tasks import (
    BatchStatus,
    CancellationToken,
    Job,
    JobOptions,
    JobOutcome,
    JobRunner,
    QueueState,
    TaskQueue,
)

TIMEOUT = 5


class FakeRunner(JobRunner):
    """Runner that records calls and returns scripted exit codes."""

    def __init__(self, returncodes=None, events=None):
        self.returncodes = returncodes or {}
        self.events = events if events is not None else []
        self.outcomes = []
        self.gates = {}
        self.started = {}
        self._lock = threading.Lock()

    def gate(self, name):
        """Block the named job until the returned event is set."""
        self.gates[name] = threading.Event()
        self.started[name] = threading.Event()
        return self.gates[name]

    def run(self, job, token):
        token.raise_if_cancelled()
        started_at = time.time()
        if job.name in self.started:
            self.started[job.name].set()
        if job.name in self.gates:
            self.gates[job.name].wait(TIMEOUT)
        with self._lock:
            self.events.append(job.name)
        time.sleep(0.001)
        outcome = JobOutcome(
            name=job.name,
            returncode=self.returncodes.get(job.name, 0),
            started_at=started_at,
            finished_at=time.time(),
        )
        self.outcomes.append(outcome)
        return outcome


def make_job(name):
    return Job(name=name, command=["echo", name])


class TestTaskQueueOrdering:
    """Tests for FIFO execution."""

    def test_jobs_run_in_push_order(self):
        """Test jobs run one at a time in the order they were pushed."""
        runner = FakeRunner()
        queue = TaskQueue(runner=runner)

        futures = [queue.push(make_job(f"job{i}"), JobOptions(is_final=True)) for i in range(5)]
        for future in futures:
            assert future.result(TIMEOUT).status is BatchStatus.SUCCEEDED

        assert runner.events == [f"job{i}" for i in range(5)]

        # No two jobs overlap
        for earlier, later in zip(runner.outcomes, runner.outcomes[1:]):
            assert earlier.finished_at <= later.started_at

    def test_queue_returns_to_idle(self):
        """Test the queue goes back to IDLE after draining."""
        queue = TaskQueue(runner=FakeRunner())
        assert queue.state is QueueState.IDLE

        queue.push(make_job("a"), JobOptions(is_final=True)).result(TIMEOUT)

        assert queue.wait_idle(TIMEOUT)
        assert queue.state is QueueState.IDLE
        assert queue.pending_count == 0

    def test_continuation_runs_between_batches(self):
        """Test on_complete runs after its batch and before the next batch."""
        events = []
        runner = FakeRunner(events=events)
        queue = TaskQueue(runner=runner)
        gate = runner.gate("a1")

        queue.push(make_job("a1"))
        first = queue.push(
            make_job("a2"),
            JobOptions(is_final=True, on_complete=lambda payload: events.append(f"done:{payload}"), payload="a"),
        )
        second = queue.push(make_job("b1"), JobOptions(is_final=True))
        gate.set()

        result = first.result(TIMEOUT)
        second.result(TIMEOUT)

        assert events == ["a1", "a2", "done:a", "b1"]
        assert result.payload == "a"
        assert [o.name for o in result.outcomes] == ["a1", "a2"]

    def test_success_message_reported(self):
        """Test the final job's success message is reported once."""
        reporter = RecordingReporter()
        queue = TaskQueue(runner=FakeRunner(), reporter=reporter)

        result = queue.push(make_job("a"), JobOptions(is_final=True, success_message="Build complete!")).result(TIMEOUT)

        assert result.message == "Build complete!"
        assert reporter.infos == ["Build complete!"]


class TestTaskQueueFailures:
    """Tests for failure handling."""

    def test_failure_aborts_batch(self):
        """Test a failing job discards the rest of its batch."""
        continuation_calls = []
        runner = FakeRunner(returncodes={"a": 1})
        reporter = RecordingReporter()
        queue = TaskQueue(runner=runner, reporter=reporter)
        gate = runner.gate("a")

        future = queue.push(make_job("a"))
        queue.push(make_job("b"))
        queue.push(make_job("c"), JobOptions(is_final=True, on_complete=continuation_calls.append))
        gate.set()

        result = future.result(TIMEOUT)
        assert result.status is BatchStatus.FAILED
        assert result.failed_job == "a"
        queue.wait_idle(TIMEOUT)

        assert runner.events == ["a"]
        assert continuation_calls == []
        assert len(reporter.errors) == 1

    def test_jobs_pushed_after_abort_are_dropped(self):
        """Test jobs pushed to an already aborted batch never run."""
        runner = FakeRunner(returncodes={"a": 1})
        queue = TaskQueue(runner=runner)

        future = queue.push(make_job("a"))
        assert future.result(TIMEOUT).status is BatchStatus.FAILED

        late = queue.push(make_job("b"), JobOptions(is_final=True))
        assert late is future
        queue.wait_idle(TIMEOUT)
        assert runner.events == ["a"]

    def test_failure_does_not_affect_next_batch(self):
        """Test a failed batch leaves later batches untouched."""
        runner = FakeRunner(returncodes={"a": 2})
        queue = TaskQueue(runner=runner)

        failed = queue.push(make_job("a"), JobOptions(is_final=True))
        passed = queue.push(make_job("b"), JobOptions(is_final=True))

        assert failed.result(TIMEOUT).status is BatchStatus.FAILED
        assert passed.result(TIMEOUT).status is BatchStatus.SUCCEEDED
        assert runner.events == ["a", "b"]

    def test_ignore_error_continues(self):
        """Test a failure with ignore_error lets the batch continue."""
        continuation_calls = []
        runner = FakeRunner(returncodes={"init": 1})
        queue = TaskQueue(runner=runner)

        queue.push(make_job("init"), JobOptions(ignore_error=True))
        future = queue.push(
            make_job("update"),
            JobOptions(is_final=True, on_complete=continuation_calls.append, payload={"dest": "x"}),
        )

        result = future.result(TIMEOUT)
        assert result.status is BatchStatus.SUCCEEDED
        assert runner.events == ["init", "update"]
        assert continuation_calls == [{"dest": "x"}]
        assert result.outcomes[0].returncode == 1

    def test_continuation_exception_fails_batch(self):
        """Test an exception in on_complete turns the batch FAILED."""

        def explode(payload):
            raise RuntimeError("boom")

        queue = TaskQueue(runner=FakeRunner())
        result = queue.push(make_job("a"), JobOptions(is_final=True, on_complete=explode)).result(TIMEOUT)

        assert result.status is BatchStatus.FAILED
        assert "boom" in result.message

        # The queue keeps working
        assert queue.push(make_job("b"), JobOptions(is_final=True)).result(TIMEOUT).success

    def test_runner_exception_fails_batch(self):
        """Test a runner raising is treated as a job failure."""

        class BrokenRunner(JobRunner):
            def run(self, job, token):
                raise OSError("no such program")

        result = TaskQueue(runner=BrokenRunner()).push(make_job("a"), JobOptions(is_final=True)).result(TIMEOUT)

        assert result.status is BatchStatus.FAILED
        assert "no such program" in result.message


class TestTaskQueueCancel:
    """Tests for cooperative cancellation."""

    def test_cancel_discards_pending_jobs(self):
        """Test cancel drops pending batches and lets the running job finish."""
        runner = FakeRunner()
        queue = TaskQueue(runner=runner)
        gate = runner.gate("running")

        running = queue.push(make_job("running"), JobOptions(is_final=True))
        pending = [queue.push(make_job(f"p{i}"), JobOptions(is_final=True)) for i in range(3)]
        assert runner.started["running"].wait(TIMEOUT)

        queue.cancel()
        for future in pending:
            assert future.result(TIMEOUT).status is BatchStatus.CANCELLED
        gate.set()

        assert running.result(TIMEOUT).status is BatchStatus.SUCCEEDED
        assert queue.wait_idle(TIMEOUT)
        assert runner.events == ["running"]
        assert queue.state is QueueState.IDLE

    def test_cancel_mid_batch_skips_continuation(self):
        """Test cancelling during a batch resolves it CANCELLED without continuation."""
        continuation_calls = []
        runner = FakeRunner()
        queue = TaskQueue(runner=runner)
        gate = runner.gate("first")

        future = queue.push(make_job("first"))
        queue.push(make_job("second"), JobOptions(is_final=True, on_complete=continuation_calls.append))
        assert runner.started["first"].wait(TIMEOUT)

        queue.cancel()
        gate.set()

        assert future.result(TIMEOUT).status is BatchStatus.CANCELLED
        queue.wait_idle(TIMEOUT)
        assert runner.events == ["first"]
        assert continuation_calls == []

    def test_jobs_pushed_into_cancelled_batch_are_dropped(self):
        """Test the rest of a batch pushed after a cancel never runs or completes."""
        continuation_calls = []
        runner = FakeRunner()
        queue = TaskQueue(runner=runner)
        gate = runner.gate("first")

        future = queue.push(make_job("first"))
        assert runner.started["first"].wait(TIMEOUT)

        queue.cancel()
        last = queue.push(
            make_job("last"),
            JobOptions(is_final=True, on_complete=continuation_calls.append, payload="p"),
        )
        gate.set()

        assert last is future
        assert future.result(TIMEOUT).status is BatchStatus.CANCELLED
        assert queue.wait_idle(TIMEOUT)
        assert runner.events == ["first"]
        assert continuation_calls == []

        # The cancelled batch is closed, the next push starts a fresh one
        after = queue.push(make_job("after"), JobOptions(is_final=True))
        assert after.result(TIMEOUT).status is BatchStatus.SUCCEEDED
        assert runner.events == ["first", "after"]

    def test_jobs_pushed_after_cancel_run(self):
        """Test the queue keeps draining jobs pushed after a cancel."""
        runner = FakeRunner()
        queue = TaskQueue(runner=runner)
        gate = runner.gate("running")

        queue.push(make_job("running"), JobOptions(is_final=True))
        dropped = queue.push(make_job("dropped"), JobOptions(is_final=True))
        assert runner.started["running"].wait(TIMEOUT)

        queue.cancel()
        later = queue.push(make_job("later"), JobOptions(is_final=True))
        gate.set()

        assert dropped.result(TIMEOUT).status is BatchStatus.CANCELLED
        assert later.result(TIMEOUT).status is BatchStatus.SUCCEEDED
        assert runner.events == ["running", "later"]

    def test_cancel_when_idle_is_noop(self):
        """Test cancelling an idle queue changes nothing."""
        queue = TaskQueue(runner=FakeRunner())
        queue.cancel()
        assert queue.state is QueueState.IDLE


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_raise_if_cancelled(self):
        """Test the token raises only once cancelled."""
        from zephyr_tools.tasks import JobCancelledError

        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel()
        assert token.cancelled
        try:
            token.raise_if_cancelled()
        except JobCancelledError:
            pass
        else:
            raise AssertionError("expected JobCancelledError")
