import threading
from dataclasses import dataclass
from time import monotonic
from typing import Dict


@dataclass(frozen=True)
class MetricsSnapshot:
    """
    Снимок метрик пайплайна.

    :param ts: Timestamp monotonic (секунды) на момент снимка.
    :param rows_appended: Сколько строк принято через append_row.
    :param batches_enqueued: Сколько батчей поставлено в очередь.
    :param rows_enqueued: Сколько строк ушло в очередь в составе батчей.
    :param batches_executed: Сколько батчей успешно выполнено воркерами.
    :param rows_affected: Сумма rowcount по выполненным батчам (по данным драйвера).
    :param execute_errors: Сколько неудачных попыток выполнения (с учётом ретраев).
    """

    ts: float
    rows_appended: int
    batches_enqueued: int
    rows_enqueued: int
    batches_executed: int
    rows_affected: int
    execute_errors: int

    def as_dict(self) -> Dict[str, int | float]:
        return {
            "ts": self.ts,
            "rows_appended": self.rows_appended,
            "batches_enqueued": self.batches_enqueued,
            "rows_enqueued": self.rows_enqueued,
            "batches_executed": self.batches_executed,
            "rows_affected": self.rows_affected,
            "execute_errors": self.execute_errors,
        }


class PipelineMetrics:
    """
    Счётчики пайплайна, общие для producer-потоков и воркеров.

    Синхронизация лёгкая: один lock на все поля, строгой
    согласованности с OutstandingCounter не требуется.
    """

    FIELDS = (
        "rows_appended",
        "batches_enqueued",
        "rows_enqueued",
        "batches_executed",
        "rows_affected",
        "execute_errors",
    )

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: Dict[str, int] = dict.fromkeys(self.FIELDS, 0)

    def inc(self, field: str, delta: int = 1) -> None:
        """
        Потокобезопасно увеличивает счётчик.

        :param field: Имя поля из FIELDS.
        :param delta: На сколько увеличить.
        :return: None.
        """
        if delta == 0:
            return
        with self._lock:
            self._values[field] += int(delta)

    def snapshot(self) -> MetricsSnapshot:
        """Консистентный снимок всех счётчиков."""
        with self._lock:
            return MetricsSnapshot(ts=monotonic(), **self._values)
