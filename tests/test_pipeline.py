import threading

import pytest

from src.pipeline.coordinator import (
    BatchPipeline,
    PipelineBuilder,
    PipelineConfig,
    PipelineState,
)
from src.utils.errors import ExecutionError, PipelineClosedError, PipelineStateError
from tests.fakes import RecordingExecutor


def _cfg(**kw) -> PipelineConfig:
    kw.setdefault("retry_sleep_ms", 0)
    kw.setdefault("shutdown_timeout_sec", 2.0)
    return PipelineConfig(**kw)


def test_drain_with_many_producers_executes_every_row_once():
    """
    8 producer-потоков по 200 строк, 3 воркера, маленький лимит батча.

    После await_drain счётчик равен нулю, буфер пуст и каждая строка
    встречается в выполненных statement-ах ровно один раз.
    """
    ex = RecordingExecutor()
    pipeline = BatchPipeline(ex, _cfg(workers=3, max_batch_bytes=500)).start()
    producers, rows = 8, 200

    def produce(p: int) -> None:
        for r in range(rows):
            pipeline.append_row(
                "power", "meters", f"d{p}", {"ts": r, "value": f"p{p}-r{r}"}
            )

    threads = [threading.Thread(target=produce, args=(p,)) for p in range(producers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    pipeline.await_drain()

    assert pipeline.outstanding == 0
    assert pipeline.pending_rows == 0
    assert all(len(s.encode("utf-8")) <= 500 for s in ex.executed)

    text = "".join(ex.executed)
    for p in range(producers):
        for r in range(rows):
            assert text.count(f"'p{p}-r{r}'") == 1

    snap = pipeline.metrics()
    assert snap.rows_appended == producers * rows
    assert snap.rows_enqueued == producers * rows
    assert snap.batches_executed == len(ex.executed)
    pipeline.close()


def test_rows_from_one_producer_keep_their_order():
    ex = RecordingExecutor()
    pipeline = BatchPipeline(ex, _cfg(workers=1, max_batch_bytes=300)).start()

    for r in range(50):
        pipeline.append_row("db", "st", "t1", {"v": f"r{r:02d}"})
    pipeline.await_drain()

    text = "".join(ex.executed)
    positions = [text.index(f"'r{r:02d}'") for r in range(50)]
    assert positions == sorted(positions)
    pipeline.close()


def test_failed_attempts_are_retried_and_executed_once():
    ex = RecordingExecutor(fail_first=3)
    pipeline = BatchPipeline(ex, _cfg(workers=2)).start()

    pipeline.append_row("db", "st", "t1", {"v": 1})
    pipeline.await_drain()

    assert len(ex.executed) == 1
    assert pipeline.outstanding == 0
    assert pipeline.metrics().execute_errors == 3
    pipeline.close()


def test_drain_is_a_barrier_not_a_shutdown():
    ex = RecordingExecutor()
    pipeline = BatchPipeline(ex, _cfg(workers=2)).start()

    pipeline.append_row("db", "st", "t1", {"v": 1})
    pipeline.await_drain()
    assert pipeline.state is PipelineState.RUNNING

    pipeline.append_row("db", "st", "t1", {"v": 2})
    pipeline.await_drain()
    assert len(ex.executed) == 2
    pipeline.close()


def test_state_is_draining_while_waiting_for_store():
    gate = threading.Event()
    ex = RecordingExecutor(gate=gate)
    pipeline = BatchPipeline(ex, _cfg(workers=1)).start()
    pipeline.append_row("db", "st", "t1", {"v": 1})

    drainer = threading.Thread(target=pipeline.await_drain, daemon=True)
    drainer.start()
    assert ex.started.wait(timeout=1)
    assert pipeline.state is PipelineState.DRAINING

    gate.set()
    drainer.join(timeout=2)
    assert not drainer.is_alive()
    assert pipeline.state is PipelineState.RUNNING
    pipeline.close()


def test_close_twice_is_noop():
    ex = RecordingExecutor()
    pipeline = BatchPipeline(ex, _cfg(workers=2)).start()
    pipeline.append_row("db", "st", "t1", {"v": 1})

    pipeline.close()
    pipeline.close()

    assert pipeline.state is PipelineState.CLOSED
    assert len(ex.executed) == 1


def test_append_after_close_raises():
    pipeline = BatchPipeline(RecordingExecutor(), _cfg(workers=1)).start()
    pipeline.close()

    with pytest.raises(PipelineClosedError):
        pipeline.append_row("db", "st", "t1", {"v": 1})


def test_append_before_start_raises():
    pipeline = BatchPipeline(RecordingExecutor(), _cfg(workers=1))
    assert pipeline.state is PipelineState.BUILDING

    with pytest.raises(PipelineStateError):
        pipeline.append_row("db", "st", "t1", {"v": 1})

    pipeline.close()
    assert pipeline.state is PipelineState.CLOSED


def test_start_twice_raises():
    pipeline = BatchPipeline(RecordingExecutor(), _cfg(workers=1)).start()
    with pytest.raises(PipelineStateError):
        pipeline.start()
    pipeline.close()


def test_context_manager_drains_on_exit():
    ex = RecordingExecutor()
    with BatchPipeline(ex, _cfg(workers=2)) as pipeline:
        pipeline.append_row("db", "st", "t1", {"v": 1}, {"site": "A"})

    assert pipeline.state is PipelineState.CLOSED
    assert ex.executed == [
        "INSERT INTO `db`.`st` (`tbname`,`v`,`site`) VALUES ('t1','1','A')"
    ]


def test_insert_row_is_synchronous_and_surfaces_errors():
    ok = RecordingExecutor()
    pipeline = BatchPipeline(ok, _cfg(workers=1)).start()
    assert pipeline.insert_row("db", "st", "t1", {"v": None}) == 1
    assert ok.executed == ["INSERT INTO `db`.`st` (`tbname`,`v`) VALUES ('t1',NULL)"]
    pipeline.close()

    broken = RecordingExecutor(fail_first=10)
    pipeline = BatchPipeline(broken, _cfg(workers=1)).start()
    with pytest.raises(ExecutionError):
        pipeline.insert_row("db", "st", "t1", {"v": 1}, max_retries=1)
    pipeline.close()


def test_builder_starts_pipeline():
    ex = RecordingExecutor()
    pipeline = (
        PipelineBuilder()
        .executor(ex)
        .workers(2)
        .queue_maxsize(4)
        .max_batch_bytes(1000)
        .retry_sleep_ms(0)
        .build()
    )

    assert pipeline.state is PipelineState.RUNNING
    assert pipeline.cfg.workers == 2
    assert pipeline.cfg.queue_maxsize == 4
    pipeline.close()


def test_negative_queue_maxsize_is_rejected():
    with pytest.raises(ValueError, match="capacity"):
        BatchPipeline(RecordingExecutor(), _cfg(workers=1, queue_maxsize=-1))


def test_builder_requires_engine_or_executor():
    with pytest.raises(PipelineStateError):
        PipelineBuilder().workers(1).build()
