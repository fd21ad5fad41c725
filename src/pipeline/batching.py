import threading
from dataclasses import dataclass
from typing import List, Protocol

from src.db.render import INSERT_PREFIX
from src.pipeline.counter import OutstandingCounter
from src.utils.errors import PipelineClosedError


def _byte_len(text: str) -> int:
    """Длина текста в байтах UTF-8 (именно байты уходят по сети)."""
    return len(text.encode("utf-8"))


@dataclass(frozen=True)
class Batch:
    """
    Готовый к выполнению batch statement.

    :param statement: Префикс + склеенные фрагменты строк.
    :param rows: Сколько строк (фрагментов) внутри.
    """

    statement: str
    rows: int


class BatchSink(Protocol):
    """Куда BatchBuffer отдаёт сброшенные батчи (DispatchQueue)."""

    @property
    def accepted(self) -> int:
        """Сколько батчей sink уже принял (положил в очередь)."""
        ...

    def enqueue(self, batch: Batch) -> None: ...


class BatchBuffer:
    """
    Накопитель фрагментов строк в один statement с лимитом по байтам.

    Лимит проверяется до добавления: если префикс + буфер + новый фрагмент
    >= max_bytes, текущий буфер сначала сбрасывается, и фрагмент начинает
    следующий батч. Фрагмент, который сам по себе больше лимита, не
    режется и уходит отдельным батчем.

    Все мутации идут под одним lock. Сброс (постановка в очередь +
    increment счётчика + очистка) выполняется в той же критической
    секции, поэтому await_drain не может увидеть пустой буфер при ещё
    не учтённом батче.

    :param sink: Очередь, принимающая батчи (блокирующий enqueue).
    :param counter: Счётчик незавершённых батчей.
    :param max_bytes: Лимит размера statement в байтах.
    :param prefix: Командный префикс statement.
    """

    def __init__(
        self,
        *,
        sink: BatchSink,
        counter: OutstandingCounter,
        max_bytes: int,
        prefix: str = INSERT_PREFIX,
    ) -> None:
        self.sink = sink
        self.counter = counter
        self.max_bytes = int(max_bytes)
        self.prefix = prefix

        self._prefix_bytes = _byte_len(prefix)
        self._parts: List[str] = []
        self._bytes: int = 0
        self._sealed = False
        self._lock = threading.Lock()

    def __len__(self) -> int:
        """Количество фрагментов в буфере."""
        with self._lock:
            return len(self._parts)

    @property
    def bytes_pending(self) -> int:
        """Размер накопленных фрагментов (без префикса)."""
        with self._lock:
            return self._bytes

    def append(self, fragment: str) -> None:
        """
        Добавляет фрагмент, при необходимости предварительно сбросив буфер.

        :param fragment: Отрендеренный фрагмент строки.
        :raises PipelineClosedError: Если буфер запечатан (close()).
        """
        fragment_bytes = _byte_len(fragment)

        with self._lock:
            if self._sealed:
                raise PipelineClosedError("Пайплайн закрыт, строки не принимаются")

            if self._prefix_bytes + self._bytes + fragment_bytes >= self.max_bytes:
                self._flush_locked()

            self._parts.append(fragment)
            self._bytes += fragment_bytes

    def flush_if_non_empty(self) -> bool:
        """
        Сбрасывает накопленное в очередь как один Batch.

        :return: True, если батч был отправлен, False для пустого буфера.
        """
        with self._lock:
            return self._flush_locked()

    def seal(self) -> None:
        """Запрещает дальнейшие append. Сброс остатка по-прежнему работает."""
        with self._lock:
            self._sealed = True

    def _flush_locked(self) -> bool:
        if not self._parts:
            return False

        batch = Batch(statement=self.prefix + "".join(self._parts), rows=len(self._parts))

        # increment до put: воркер может выполнить батч и сделать decrement
        # раньше, чем put вернёт управление
        self.counter.increment()
        accepted = self.sink.accepted
        try:
            self.sink.enqueue(batch)  # backpressure тут
        except BaseException:
            if self.sink.accepted == accepted:
                # батч не попал в очередь: буфер не трогаем, счётчик откатываем
                self.counter.decrement()
            else:
                # батч уже в очереди (исключение после put): воркер сам
                # сделает decrement, а строки не должны уйти второй раз
                self._clear()
            raise

        self._clear()
        return True

    def _clear(self) -> None:
        self._parts = []
        self._bytes = 0
