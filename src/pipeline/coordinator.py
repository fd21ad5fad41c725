import enum
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.engine import Engine

from src.db.executor import DEFAULT_RETRY_SLEEP_MS, StatementExecutor
from src.db.render import render_insert, render_row
from src.pipeline.batching import BatchBuffer
from src.pipeline.counter import OutstandingCounter
from src.pipeline.dispatch import DispatchQueue
from src.pipeline.metrics import MetricsSnapshot, PipelineMetrics
from src.settings.logging import logger
from src.utils.errors import PipelineClosedError, PipelineStateError


@dataclass(frozen=True)
class PipelineConfig:
    """
    Конфиг пайплайна асинхронной записи.

    :param workers: Количество воркеров (параллельных statement-ов).
    :param queue_maxsize: Ёмкость очереди батчей (None/0 — равна workers).
    :param max_batch_bytes: Лимит размера одного statement в байтах.
    :param show_sql: Логировать текст каждого statement (DEBUG).
    :param retry_sleep_ms: Пауза между попытками выполнения батча.
    :param shutdown_timeout_sec: Сколько ждать завершения каждого воркера в close().
    """

    workers: int = 10
    queue_maxsize: Optional[int] = None
    max_batch_bytes: int = 1024 * 1024
    show_sql: bool = False
    retry_sleep_ms: int = DEFAULT_RETRY_SLEEP_MS
    shutdown_timeout_sec: float = 30.0


class PipelineState(enum.Enum):
    BUILDING = "building"
    RUNNING = "running"
    DRAINING = "draining"
    CLOSED = "closed"


class BatchPipeline:
    """
    Асинхронная пакетная запись строк в TDengine.

    Схема:
    - любые потоки вызывают append_row: строка рендерится во фрагмент и
      копится в BatchBuffer;
    - при переполнении лимита байт буфер сбрасывается в ограниченную
      очередь (producer блокируется, если очередь полна);
    - N воркеров выполняют батчи с бесконечными ретраями;
    - await_drain сбрасывает остаток и ждёт, пока OutstandingCounter
      не станет нулём.

    Каждый экземпляр владеет своим буфером, счётчиком и пулом воркеров.

    :param executor: StatementExecutor.
    :param cfg: PipelineConfig.
    """

    def __init__(
        self, executor: StatementExecutor, cfg: Optional[PipelineConfig] = None
    ) -> None:
        self.cfg = cfg or PipelineConfig()
        self.executor = executor

        self._metrics = PipelineMetrics()
        self._counter = OutstandingCounter()
        self._dispatch = DispatchQueue(
            executor,
            self._counter,
            self._metrics,
            workers=self.cfg.workers,
            capacity=self.cfg.queue_maxsize,
            retry_sleep_ms=self.cfg.retry_sleep_ms,
        )
        self._buffer = BatchBuffer(
            sink=self._dispatch,
            counter=self._counter,
            max_bytes=self.cfg.max_batch_bytes,
        )

        self._lifecycle_lock = threading.Lock()
        self._state = PipelineState.BUILDING
        self._closing = False
        self._drains = 0

    def __enter__(self) -> "BatchPipeline":
        if self._state is PipelineState.BUILDING:
            self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def state(self) -> PipelineState:
        with self._lifecycle_lock:
            if self._state is PipelineState.RUNNING and self._drains > 0:
                return PipelineState.DRAINING
            return self._state

    @property
    def outstanding(self) -> int:
        """Сколько батчей поставлено в очередь, но ещё не выполнено."""
        return self._counter.value

    @property
    def pending_rows(self) -> int:
        """Сколько строк лежит в буфере и ещё не сброшено в очередь."""
        return len(self._buffer)

    def start(self) -> "BatchPipeline":
        """
        Запускает пул воркеров: BUILDING -> RUNNING.

        :return: self.
        :raises PipelineStateError: Если пайплайн уже запущен или закрыт.
        """
        with self._lifecycle_lock:
            if self._state is not PipelineState.BUILDING:
                raise PipelineStateError(
                    f"start() допустим только в состоянии building, сейчас {self._state.value}"
                )
            self._dispatch.start()
            self._state = PipelineState.RUNNING

        logger.info(
            "Pipeline запущен: workers=%s queue=%s max_batch_bytes=%s",
            self.cfg.workers,
            self._dispatch.capacity,
            self.cfg.max_batch_bytes,
        )
        return self

    build = start

    def append_row(
        self,
        db: str,
        super_table: str,
        table: str,
        fields: Mapping[str, Any],
        tags: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """
        Асинхронно добавляет строку; запись произойдёт при сбросе батча.

        Ошибки выполнения сюда не доходят: батч ретраится воркером.
        Перед завершением программы нужно вызвать await_drain() или close().

        :param db: Имя базы данных.
        :param super_table: Имя супер-таблицы.
        :param table: Имя подтаблицы.
        :param fields: Колонки строки.
        :param tags: Теги подтаблицы.
        :raises PipelineStateError: Если пайплайн ещё не запущен.
        :raises PipelineClosedError: Если пайплайн закрыт.
        """
        self._ensure_started()
        fragment = render_row(db, super_table, table, fields, tags)
        self._buffer.append(fragment)
        self._metrics.inc("rows_appended")

    def flush(self) -> None:
        """Сбрасывает частично заполненный буфер в очередь (не ждёт выполнения)."""
        self._ensure_started()
        self._buffer.flush_if_non_empty()

    def await_drain(self) -> None:
        """
        Барьер: сбрасывает остаток буфера и ждёт выполнения всех батчей.

        Пайплайн после этого продолжает работать. При недоступной БД
        вызов блокируется, пока воркеры не достучатся.
        """
        self._ensure_started()
        with self._lifecycle_lock:
            self._drains += 1
        try:
            self._buffer.flush_if_non_empty()
            self._counter.await_zero()
        finally:
            with self._lifecycle_lock:
                self._drains -= 1

    def close(self) -> None:
        """
        Дожидается выполнения всего накопленного и останавливает воркеров.

        Повторный вызов ничего не делает. Таймаута на ожидание БД нет:
        close() блокируется, пока все батчи не будут выполнены.
        """
        with self._lifecycle_lock:
            if self._closing or self._state is PipelineState.CLOSED:
                return
            self._closing = True
            started = self._state is not PipelineState.BUILDING

        logger.info("Закрытие pipeline: ждём выполнения всех батчей")

        self._buffer.seal()
        if started:
            self.await_drain()
            self._dispatch.shutdown(self.cfg.shutdown_timeout_sec)

        with self._lifecycle_lock:
            self._state = PipelineState.CLOSED

        logger.info("Pipeline закрыт: %s", self.metrics().as_dict())

    def metrics(self) -> MetricsSnapshot:
        return self._metrics.snapshot()

    def insert_row(
        self,
        db: str,
        super_table: str,
        table: str,
        fields: Mapping[str, Any],
        tags: Optional[Mapping[str, Any]] = None,
        max_retries: Optional[int] = 0,
    ) -> int:
        """
        Синхронная вставка одной строки мимо буфера и очереди.

        :raises ExecutionError: Если ретраи исчерпаны.
        """
        return self.executor.execute_update(
            render_insert(db, super_table, table, fields, tags),
            max_retries=max_retries,
        )

    def execute_update(
        self,
        statement: str,
        max_retries: Optional[int] = 0,
        sleep_ms: Optional[int] = None,
    ) -> int:
        return self.executor.execute_update(statement, max_retries, sleep_ms)

    def execute_query(
        self,
        statement: str,
        max_retries: Optional[int] = 0,
        sleep_ms: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return self.executor.execute_query(statement, max_retries, sleep_ms)

    def _ensure_started(self) -> None:
        state = self._state
        if state is PipelineState.BUILDING:
            raise PipelineStateError("Pipeline не запущен: вызовите start()")
        if state is PipelineState.CLOSED:
            raise PipelineClosedError("Pipeline закрыт")


class PipelineBuilder:
    """
    Пошаговая сборка BatchPipeline.

    Пример::

        pipeline = (
            PipelineBuilder()
            .engine(engine)
            .workers(5)
            .max_batch_bytes(512 * 1024)
            .build()
        )
    """

    def __init__(self) -> None:
        self._engine: Optional[Engine] = None
        self._executor: Optional[StatementExecutor] = None
        self._options: Dict[str, Any] = {}

    def engine(self, engine: Engine) -> "PipelineBuilder":
        self._engine = engine
        return self

    def executor(self, executor: StatementExecutor) -> "PipelineBuilder":
        """Готовый executor (например, с другим драйвером); engine тогда не нужен."""
        self._executor = executor
        return self

    def workers(self, n: int) -> "PipelineBuilder":
        self._options["workers"] = int(n)
        return self

    def queue_maxsize(self, n: int) -> "PipelineBuilder":
        self._options["queue_maxsize"] = int(n)
        return self

    def max_batch_bytes(self, n: int) -> "PipelineBuilder":
        self._options["max_batch_bytes"] = int(n)
        return self

    def show_sql(self, enabled: bool = True) -> "PipelineBuilder":
        self._options["show_sql"] = bool(enabled)
        return self

    def retry_sleep_ms(self, ms: int) -> "PipelineBuilder":
        self._options["retry_sleep_ms"] = int(ms)
        return self

    def build(self) -> BatchPipeline:
        """
        Создаёт и запускает пайплайн.

        :return: BatchPipeline в состоянии RUNNING.
        :raises PipelineStateError: Если не задан ни engine, ни executor.
        """
        cfg = PipelineConfig(**self._options)

        executor = self._executor
        if executor is None:
            if self._engine is None:
                raise PipelineStateError("Нужно задать engine() или executor()")
            executor = StatementExecutor(
                self._engine,
                show_sql=cfg.show_sql,
                retry_sleep_ms=cfg.retry_sleep_ms,
            )

        return BatchPipeline(executor, cfg).start()
