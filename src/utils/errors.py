class SettingsError(Exception):
    """Ошибка загрузки или валидации настроек приложения."""


class PipelineError(Exception):
    """Базовая ошибка пайплайна асинхронной записи."""


class PipelineStateError(PipelineError):
    """Операция недопустима в текущем состоянии пайплайна."""


class PipelineClosedError(PipelineStateError):
    """Пайплайн закрыт (или закрывается) и не принимает новые строки."""


class ExecutionError(Exception):
    """
    Statement не удалось выполнить после исчерпания ретраев.

    :param statement: Текст statement, который не был выполнен.
    :param attempts: Сколько попыток было сделано.
    """

    def __init__(self, statement: str, attempts: int) -> None:
        super().__init__(
            f"Statement не выполнен после {attempts} попыток: {statement[:200]}"
        )
        self.statement = statement
        self.attempts = attempts
