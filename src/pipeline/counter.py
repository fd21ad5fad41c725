import threading


class OutstandingCounter:
    """
    Счётчик незавершённой работы с ожиданием обнуления.

    Значение = количество батчей, поставленных в очередь, но ещё не
    выполненных. Увеличивается ровно один раз на каждый enqueue и
    уменьшается ровно один раз на каждое успешное выполнение.

    await_zero возвращается только когда счётчик действительно равен нулю:
    предикат перепроверяется после каждого пробуждения.
    """

    def __init__(self) -> None:
        self._value = 0
        self._cond = threading.Condition(threading.Lock())

    @property
    def value(self) -> int:
        with self._cond:
            return self._value

    def increment(self) -> None:
        with self._cond:
            self._value += 1

    def decrement(self) -> None:
        """
        Уменьшает счётчик; при достижении нуля будит всех ожидающих.

        Вызов без парного increment — ошибка вызывающего кода.
        """
        with self._cond:
            self._value -= 1
            if self._value == 0:
                self._cond.notify_all()

    def await_zero(self) -> None:
        """Блокирует вызывающий поток, пока счётчик не станет равен нулю."""
        with self._cond:
            self._cond.wait_for(lambda: self._value == 0)
