import threading

import pytest

from src.pipeline.batching import Batch
from src.pipeline.counter import OutstandingCounter
from src.pipeline.dispatch import DispatchQueue
from src.pipeline.metrics import PipelineMetrics
from tests.fakes import RecordingExecutor


def _dispatch(executor, workers=1, capacity=None):
    counter = OutstandingCounter()
    metrics = PipelineMetrics()
    dq = DispatchQueue(
        executor, counter, metrics, workers=workers, capacity=capacity, retry_sleep_ms=0
    )
    dq.start()
    return dq, counter, metrics


def _submit(dq: DispatchQueue, counter: OutstandingCounter, statement: str) -> None:
    counter.increment()
    dq.enqueue(Batch(statement=statement, rows=1))


def test_full_queue_blocks_producer_until_worker_frees_slot():
    """
    Backpressure: 1 воркер завис на первом батче, ёмкость очереди 1.

    Второй батч помещается в очередь, третий блокирует producer,
    пока воркер не освободит слот.
    """
    gate = threading.Event()
    ex = RecordingExecutor(gate=gate)
    dq, counter, _ = _dispatch(ex, workers=1, capacity=1)

    _submit(dq, counter, "s1")
    assert ex.started.wait(timeout=1)
    _submit(dq, counter, "s2")

    producer = threading.Thread(target=_submit, args=(dq, counter, "s3"), daemon=True)
    producer.start()
    producer.join(timeout=0.2)
    assert producer.is_alive()

    gate.set()
    producer.join(timeout=2)
    assert not producer.is_alive()

    counter.await_zero()
    assert ex.executed == ["s1", "s2", "s3"]
    assert dq.shutdown(timeout_sec=2) is True


def test_worker_retries_until_success_and_decrements_once():
    ex = RecordingExecutor(fail_first=4)
    dq, counter, metrics = _dispatch(ex, workers=2)

    _submit(dq, counter, "INSERT INTO x")
    counter.await_zero()

    snap = metrics.snapshot()
    assert ex.executed == ["INSERT INTO x"]
    assert snap.execute_errors == 4
    assert snap.batches_executed == 1
    assert counter.value == 0
    dq.shutdown(timeout_sec=2)


def test_worker_skips_unknown_messages():
    ex = RecordingExecutor()
    dq, counter, _ = _dispatch(ex)

    dq._queue.put("не батч")
    _submit(dq, counter, "s1")
    counter.await_zero()

    assert ex.executed == ["s1"]
    dq.shutdown(timeout_sec=2)


def test_shutdown_reports_stuck_workers_without_raising():
    gate = threading.Event()
    ex = RecordingExecutor(gate=gate)
    dq, counter, _ = _dispatch(ex, workers=1, capacity=2)

    _submit(dq, counter, "s1")
    assert ex.started.wait(timeout=1)

    assert dq.shutdown(timeout_sec=0.1) is False

    gate.set()
    counter.await_zero()


def test_capacity_defaults_to_worker_count():
    dq = DispatchQueue(
        RecordingExecutor(), OutstandingCounter(), PipelineMetrics(), workers=3
    )
    assert dq.capacity == 3


@pytest.mark.parametrize("capacity", [-1, -100])
def test_negative_capacity_is_rejected(capacity):
    with pytest.raises(ValueError):
        DispatchQueue(
            RecordingExecutor(),
            OutstandingCounter(),
            PipelineMetrics(),
            workers=2,
            capacity=capacity,
        )


def test_zero_capacity_means_worker_count():
    dq = DispatchQueue(
        RecordingExecutor(), OutstandingCounter(), PipelineMetrics(), workers=2, capacity=0
    )
    assert dq.capacity == 2


def test_accepted_counts_batches_but_not_sentinels():
    ex = RecordingExecutor()
    dq, counter, _ = _dispatch(ex, workers=2)

    _submit(dq, counter, "s1")
    _submit(dq, counter, "s2")
    counter.await_zero()
    assert dq.shutdown(timeout_sec=2) is True

    assert dq.accepted == 2


class ExitingExecutor(RecordingExecutor):
    def execute(self, statement: str) -> int:
        self.started.set()
        raise SystemExit(1)


def test_system_exit_ends_worker_and_leaves_batch_counted():
    """
    SystemExit не ретраится: воркер завершается, батч остаётся в счётчике.
    """
    ex = ExitingExecutor()
    dq, counter, metrics = _dispatch(ex, workers=1)

    _submit(dq, counter, "s1")
    assert ex.started.wait(timeout=1)
    dq._threads[0].join(timeout=2)

    assert not dq._threads[0].is_alive()
    assert counter.value == 1
    assert metrics.snapshot().batches_executed == 0
