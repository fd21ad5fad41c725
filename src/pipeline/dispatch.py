import queue
import threading
import time
from dataclasses import dataclass
from typing import List, Optional

from src.db.executor import StatementExecutor
from src.pipeline.batching import Batch
from src.pipeline.counter import OutstandingCounter
from src.pipeline.metrics import PipelineMetrics
from src.settings.logging import logger


@dataclass(frozen=True)
class WorkerConfig:
    """
    Конфигурация воркера.

    :param worker_id: Идентификатор воркера (для логов).
    :param retry_sleep_ms: Пауза между попытками выполнения батча
                           (None — значение по умолчанию у executor).
    """

    worker_id: int
    retry_sleep_ms: Optional[int] = None


def worker_main(
    in_queue: "queue.Queue[Optional[Batch]]",
    executor: StatementExecutor,
    counter: OutstandingCounter,
    metrics: PipelineMetrics,
    cfg: WorkerConfig,
) -> None:
    """
    Воркер: читает Batch из очереди и выполняет его до успеха.

    Sentinel для остановки: None. Батч ретраится бесконечно, поэтому
    каждый поставленный в очередь батч рано или поздно выполняется и
    уменьшает счётчик ровно один раз.

    :param in_queue: Очередь батчей.
    :param executor: StatementExecutor.
    :param counter: Счётчик незавершённых батчей.
    :param metrics: PipelineMetrics.
    :param cfg: WorkerConfig.
    :return: None.
    """
    logger.debug("Worker#%s запущен", cfg.worker_id)

    while True:
        msg = in_queue.get()

        if msg is None:
            # sentinel
            break

        if not isinstance(msg, Batch):
            logger.warning(
                "Worker#%s получил необрабатываемое сообщение: %r", cfg.worker_id, msg
            )
            continue

        _process_batch(executor, msg, counter, metrics, cfg)

    logger.debug("Worker#%s закончил работу", cfg.worker_id)


def _retry_sleep_s(executor: StatementExecutor, cfg: WorkerConfig) -> float:
    ms = executor.retry_sleep_ms if cfg.retry_sleep_ms is None else cfg.retry_sleep_ms
    return ms / 1000


def _process_batch(
    executor: StatementExecutor,
    batch: Batch,
    counter: OutstandingCounter,
    metrics: PipelineMetrics,
    cfg: WorkerConfig,
) -> None:
    """
    Выполняет один Batch с бесконечными ретраями и отмечает его выполненным.

    Ловятся только Exception: KeyboardInterrupt, SystemExit и прочие
    BaseException завершают воркер, а батч остаётся учтённым в счётчике,
    и await_drain/close после этого не вернутся. Executor не должен
    пропускать такие исключения наружу.

    :param executor: StatementExecutor.
    :param batch: Batch.
    :param counter: OutstandingCounter.
    :param metrics: PipelineMetrics.
    :param cfg: WorkerConfig.
    :return: None.
    """
    while True:
        try:
            n = executor.execute_with_retry(
                batch.statement,
                max_retries=None,
                sleep_ms=cfg.retry_sleep_ms,
                on_error=lambda e: metrics.inc("execute_errors"),
            )
            break
        except Exception:
            # execute_with_retry сам не бросает; воркер не должен умереть
            # и из-за ошибок вокруг него
            logger.exception(
                "Worker#%s неожиданная ошибка, батч будет повторён. rows=%s",
                cfg.worker_id,
                batch.rows,
            )
            time.sleep(_retry_sleep_s(executor, cfg))

    metrics.inc("batches_executed")
    metrics.inc("rows_affected", max(n, 0))
    counter.decrement()


class _BatchQueue(queue.Queue):
    """queue.Queue, считающая элементы, реально положенные в очередь."""

    def __init__(self, maxsize: int) -> None:
        super().__init__(maxsize)
        self.accepted = 0

    def _put(self, item: Optional[Batch]) -> None:
        # вызывается под mutex очереди
        self.queue.append(item)
        if item is not None:
            self.accepted += 1


class DispatchQueue:
    """
    Ограниченная очередь батчей + фиксированный пул воркеров.

    Ёмкость очереди — единственный клапан backpressure: когда очередь
    полна, enqueue блокирует producer-поток, пока воркер не освободит место.

    :param executor: StatementExecutor, которым воркеры выполняют батчи.
    :param counter: Счётчик незавершённых батчей (воркеры делают decrement).
    :param metrics: PipelineMetrics.
    :param workers: Количество воркеров.
    :param capacity: Ёмкость очереди (None или 0 — равна workers).
    :param retry_sleep_ms: Пауза между попытками выполнения.
    """

    def __init__(
        self,
        executor: StatementExecutor,
        counter: OutstandingCounter,
        metrics: PipelineMetrics,
        *,
        workers: int,
        capacity: Optional[int] = None,
        retry_sleep_ms: Optional[int] = None,
    ) -> None:
        if workers < 1:
            raise ValueError(f"workers должен быть >= 1, получено: {workers}")
        if capacity is not None and capacity < 0:
            raise ValueError(f"capacity должна быть >= 0, получено: {capacity}")

        self.executor = executor
        self.counter = counter
        self.metrics = metrics
        self.workers = int(workers)
        self.capacity = int(capacity) if capacity else self.workers
        self.retry_sleep_ms = retry_sleep_ms

        self._queue = _BatchQueue(self.capacity)
        self._threads: List[threading.Thread] = []

    def qsize(self) -> int:
        return self._queue.qsize()

    @property
    def accepted(self) -> int:
        """Сколько батчей уже лежит или лежало в очереди (sentinel не считается)."""
        return self._queue.accepted

    def start(self) -> None:
        """Запускает воркеров (daemon-потоки)."""
        for i in range(self.workers):
            t = threading.Thread(
                target=worker_main,
                name=f"tdbatch-worker-{i}",
                args=(
                    self._queue,
                    self.executor,
                    self.counter,
                    self.metrics,
                    WorkerConfig(worker_id=i, retry_sleep_ms=self.retry_sleep_ms),
                ),
                daemon=True,
            )
            t.start()
            self._threads.append(t)

        logger.info(
            "Запущено воркеров: %s, ёмкость очереди: %s", self.workers, self.capacity
        )

    def enqueue(self, batch: Batch) -> None:
        """
        Блокирующая постановка батча в очередь.

        :param batch: Batch.
        :return: None.
        """
        self._queue.put(batch)  # backpressure тут
        self.metrics.inc("batches_enqueued")
        self.metrics.inc("rows_enqueued", batch.rows)

    def shutdown(self, timeout_sec: float = 30.0) -> bool:
        """
        Останавливает воркеров: по одному sentinel на воркер и join.

        Вызывать после drain, иначе sentinel встанет в очередь за
        невыполненными батчами и join может не уложиться в таймаут.

        :param timeout_sec: Таймаут ожидания каждого воркера.
        :return: True, если все воркеры завершились.
        """
        for _ in self._threads:
            self._queue.put(None)

        for t in self._threads:
            t.join(timeout=timeout_sec)

        alive = [t.name for t in self._threads if t.is_alive()]
        if alive:
            logger.error("Воркеры не завершились за %.1fs: %s", timeout_sec, alive)
            return False

        self._threads = []
        return True
