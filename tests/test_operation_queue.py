"""Tests for OperationQueue ordering, serial execution, suspension and shutdown."""
import threading
import time

import pytest

from core.operation_queue import Operation, OperationQueue


def _poll(predicate, timeout=2.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return False


class ConcurrencyGauge:
    def __init__(self):
        self.lock = threading.Lock()
        self.current = 0
        self.peak = 0

    def enter(self):
        with self.lock:
            self.current += 1
            self.peak = max(self.peak, self.current)

    def leave(self):
        with self.lock:
            self.current -= 1


class RecordingOperation(Operation):
    def __init__(self, label, log, gate=None, gauge=None, work=0.0):
        super().__init__(name=f"rec-{label}")
        self.label = label
        self.log = log
        self.gate = gate
        self.gauge = gauge
        self.work = work
        self.started = threading.Event()

    def main(self):
        self.started.set()
        if self.gauge:
            self.gauge.enter()
        try:
            if self.gate is not None:
                self.gate.wait(2)
            if self.work:
                time.sleep(self.work)
            self.log.append(self.label)
        finally:
            if self.gauge:
                self.gauge.leave()


class ExplodingOperation(Operation):
    def main(self):
        raise RuntimeError("boom")


@pytest.fixture()
def queue():
    q = OperationQueue("test queue", max_concurrent=1)
    q.start()
    yield q
    q.shutdown(timeout=2)


class TestOperationQueue:
    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            OperationQueue("bad", max_concurrent=0)

    def test_runs_in_submission_order(self, queue):
        log = []
        for i in range(10):
            queue.add_operation(RecordingOperation(i, log))
        assert queue.wait_until_all_operations_are_finished(timeout=2)
        assert log == list(range(10))

    def test_serial_queue_never_overlaps(self, queue):
        log, gauge = [], ConcurrencyGauge()
        for i in range(8):
            queue.add_operation(RecordingOperation(i, log, gauge=gauge, work=0.005))
        assert queue.wait_until_all_operations_are_finished(timeout=3)
        assert gauge.peak == 1

    def test_wider_queue_runs_in_parallel(self):
        q = OperationQueue("wide", max_concurrent=3)
        q.start()
        try:
            gate = threading.Event()
            log, gauge = [], ConcurrencyGauge()
            ops = [RecordingOperation(i, log, gate=gate, gauge=gauge) for i in range(3)]
            for op in ops:
                q.add_operation(op)
            assert _poll(lambda: all(op.started.is_set() for op in ops))
            gate.set()
            assert q.wait_until_all_operations_are_finished(timeout=2)
            assert gauge.peak == 3
        finally:
            q.shutdown(timeout=2)

    def test_second_operation_waits_for_first(self, queue):
        gate = threading.Event()
        log = []
        first = RecordingOperation("first", log, gate=gate)
        second = RecordingOperation("second", log)
        queue.add_operation(first)
        queue.add_operation(second)
        assert _poll(first.started.is_set)
        time.sleep(0.05)
        assert not second.started.is_set()
        assert queue.operation_count == 2
        gate.set()
        assert _poll(second.started.is_set)
        assert queue.wait_until_all_operations_are_finished(timeout=2)
        assert log == ["first", "second"]

    def test_suspended_queue_does_not_dequeue(self, queue):
        log = []
        queue.suspend()
        assert queue.is_suspended
        op = RecordingOperation("held", log)
        queue.add_operation(op)
        time.sleep(0.3)
        assert not op.started.is_set()
        queue.resume()
        assert _poll(op.started.is_set)
        assert queue.wait_until_all_operations_are_finished(timeout=2)

    def test_suspend_does_not_interrupt_running_operation(self, queue):
        gate = threading.Event()
        log = []
        running = RecordingOperation("running", log, gate=gate)
        waiting = RecordingOperation("waiting", log)
        queue.add_operation(running)
        assert _poll(running.started.is_set)
        queue.add_operation(waiting)
        queue.suspend()
        gate.set()
        assert _poll(lambda: log == ["running"])
        time.sleep(0.3)
        assert not waiting.started.is_set()
        queue.resume()
        assert queue.wait_until_all_operations_are_finished(timeout=2)
        assert log == ["running", "waiting"]

    def test_cancelled_operation_skips_main_and_completion(self, queue):
        log = []
        completions = []
        op = RecordingOperation("cancelled", log)
        op.completion_callback = completions.append
        op.cancel()
        queue.add_operation(op)
        assert queue.wait_until_all_operations_are_finished(timeout=2)
        assert op.is_finished
        assert not op.started.is_set()
        assert completions == []

    def test_completion_fires_once(self, queue):
        completions = []
        op = RecordingOperation("done", [])
        op.completion_callback = completions.append
        queue.add_operation(op)
        assert queue.wait_until_all_operations_are_finished(timeout=2)
        assert completions == [op]

    def test_worker_survives_failing_operation(self, queue):
        completions = []
        bad = ExplodingOperation()
        bad.completion_callback = completions.append
        log = []
        queue.add_operation(bad)
        queue.add_operation(RecordingOperation("after", log))
        assert queue.wait_until_all_operations_are_finished(timeout=2)
        assert completions == [bad]
        assert log == ["after"]

    def test_worker_survives_failing_callback(self, queue):
        log = []
        op = RecordingOperation("a", log)
        def broken_callback(_op):
            raise RuntimeError("callback")

        op.completion_callback = broken_callback
        queue.add_operation(op)
        queue.add_operation(RecordingOperation("b", log))
        assert queue.wait_until_all_operations_are_finished(timeout=2)
        assert log == ["a", "b"]

    def test_shutdown_discards_queued_and_rejects_new(self):
        q = OperationQueue("shutdown", max_concurrent=1)
        q.start()
        gate = threading.Event()
        log = []
        running = RecordingOperation("running", log, gate=gate)
        queued = RecordingOperation("queued", log)
        q.add_operation(running)
        assert _poll(running.started.is_set)
        q.add_operation(queued)

        threading.Timer(0.1, gate.set).start()
        q.shutdown(timeout=2)

        assert log == ["running"]
        assert queued.is_cancelled
        assert q.operation_count == 0
        assert q.add_operation(RecordingOperation("late", log)) is False
        q.shutdown(timeout=1)  # idempotent
