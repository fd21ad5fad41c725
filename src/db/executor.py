import time
from typing import Any, Callable, Dict, List, Optional, TypeVar

from sqlalchemy.engine import Engine, Result

from src.settings.logging import logger
from src.utils.errors import ExecutionError

T = TypeVar("T")

# Возвращается execute_with_retry, если statement так и не выполнился.
UNKNOWN_ROWCOUNT = -1

DEFAULT_RETRY_SLEEP_MS = 5000

ErrorHook = Callable[[BaseException], None]


class StatementExecutor:
    """
    Выполняет текстовые statement-ы в TDengine через SQLAlchemy Engine.

    Три режима:
    - execute: одна попытка, ошибки драйвера пробрасываются как есть;
    - execute_with_retry: ретраи (бесконечные при max_retries=None),
      никогда не бросает на временных ошибках — используется воркерами
      асинхронного пайплайна;
    - execute_update / execute_query: синхронный путь, после исчерпания
      ретраев бросает ExecutionError.

    :param engine: SQLAlchemy Engine.
    :param show_sql: Логировать текст каждого statement (DEBUG).
    :param retry_sleep_ms: Пауза между попытками по умолчанию.
    """

    def __init__(
        self,
        engine: Optional[Engine],
        *,
        show_sql: bool = False,
        retry_sleep_ms: int = DEFAULT_RETRY_SLEEP_MS,
    ) -> None:
        self.engine = engine
        self.show_sql = show_sql
        self.retry_sleep_ms = int(retry_sleep_ms)

    def execute(self, statement: str) -> int:
        """
        Одна попытка выполнить statement в отдельной транзакции.

        :param statement: Текст statement.
        :return: Количество затронутых строк по данным драйвера.
        """
        if self.show_sql:
            logger.debug("SQL: %s", statement)

        with self.engine.begin() as conn:
            result = conn.exec_driver_sql(statement)
            return result.rowcount

    def execute_with_retry(
        self,
        statement: str,
        max_retries: Optional[int] = None,
        sleep_ms: Optional[int] = None,
        on_error: Optional[ErrorHook] = None,
    ) -> int:
        """
        Выполняет statement, повторяя попытки при ошибках.

        max_retries=None — повторять бесконечно, 0 — ровно одна попытка.
        Каждая ошибка логируется вместе с текстом statement.

        :param statement: Текст statement.
        :param max_retries: Сколько повторов допускается после первой попытки.
        :param sleep_ms: Пауза между попытками (по умолчанию retry_sleep_ms).
        :param on_error: Колбэк на каждую неудачную попытку (для метрик).
        :return: Количество затронутых строк или UNKNOWN_ROWCOUNT,
                 если ретраи исчерпаны.
        """
        value, err, _ = self._attempt(
            self.execute, statement, max_retries, sleep_ms, on_error
        )
        return UNKNOWN_ROWCOUNT if err is not None else value

    def execute_update(
        self,
        statement: str,
        max_retries: Optional[int] = 0,
        sleep_ms: Optional[int] = None,
    ) -> int:
        """
        Синхронная запись: как execute_with_retry, но ошибка доходит до вызывающего.

        :param statement: Текст statement.
        :param max_retries: Бюджет повторов (None — бесконечно).
        :param sleep_ms: Пауза между попытками.
        :return: Количество затронутых строк.
        :raises ExecutionError: Если ретраи исчерпаны.
        """
        return self._checked(self.execute, statement, max_retries, sleep_ms)

    def execute_query(
        self,
        statement: str,
        max_retries: Optional[int] = 0,
        sleep_ms: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Выполняет запрос и возвращает строки как словари "колонка -> значение".

        :param statement: Текст запроса.
        :param max_retries: Бюджет повторов.
        :param sleep_ms: Пауза между попытками.
        :return: Список строк.
        :raises ExecutionError: Если ретраи исчерпаны.
        """
        return self.execute_query_with(
            statement,
            lambda result: [dict(row) for row in result.mappings()],
            max_retries=max_retries,
            sleep_ms=sleep_ms,
        )

    def execute_query_with(
        self,
        statement: str,
        handler: Callable[[Result], T],
        max_retries: Optional[int] = 0,
        sleep_ms: Optional[int] = None,
    ) -> T:
        """
        Выполняет запрос и отдаёт Result в handler, пока соединение открыто.

        Удобно, когда результат большой и его нужно обработать потоково,
        не собирая список в памяти.

        :param statement: Текст запроса.
        :param handler: Функция, получающая sqlalchemy Result.
        :param max_retries: Бюджет повторов.
        :param sleep_ms: Пауза между попытками.
        :return: То, что вернул handler.
        :raises ExecutionError: Если ретраи исчерпаны.
        """

        def call(sql: str) -> T:
            if self.show_sql:
                logger.debug("SQL: %s", sql)
            with self.engine.connect() as conn:
                return handler(conn.exec_driver_sql(sql))

        return self._checked(call, statement, max_retries, sleep_ms)

    def _checked(
        self,
        call: Callable[[str], T],
        statement: str,
        max_retries: Optional[int],
        sleep_ms: Optional[int],
    ) -> T:
        value, err, attempts = self._attempt(call, statement, max_retries, sleep_ms, None)
        if err is not None:
            raise ExecutionError(statement, attempts) from err
        return value

    def _attempt(
        self,
        call: Callable[[str], T],
        statement: str,
        max_retries: Optional[int],
        sleep_ms: Optional[int],
        on_error: Optional[ErrorHook],
    ) -> tuple[Optional[T], Optional[BaseException], int]:
        """
        Общий цикл ретраев.

        :return: (результат, последняя ошибка, число попыток). Ошибка не None
                 только если бюджет повторов исчерпан.
        """
        sleep_s = (self.retry_sleep_ms if sleep_ms is None else sleep_ms) / 1000
        remaining = max_retries
        attempt = 0

        while True:
            attempt += 1
            try:
                return call(statement), None, attempt
            except Exception as e:
                if on_error is not None:
                    on_error(e)

                if remaining is not None and remaining <= 0:
                    logger.error(
                        "Statement не выполнен (attempt %s), ретраи исчерпаны: %r\n%s",
                        attempt,
                        e,
                        statement,
                    )
                    return None, e, attempt

                logger.warning(
                    "Ошибка выполнения statement (attempt %s), sleep %.2fs: %r\n%s",
                    attempt,
                    sleep_s,
                    e,
                    statement,
                )
                if remaining is not None:
                    remaining -= 1
                time.sleep(sleep_s)
