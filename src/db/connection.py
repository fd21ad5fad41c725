from sqlalchemy import create_engine
from sqlalchemy.engine import Engine


def get_engine(db_url: str, *, pool_size: int = 10) -> Engine:
    """
    Создаёт SQLAlchemy Engine для TDengine.

    Диалекты taosrest:// и taosws:// регистрирует пакет taospy
    (extra "tdengine"). Размер пула подбирается под количество воркеров,
    чтобы каждый воркер получал своё соединение без ожидания.

    :param db_url: Строка подключения (EnvSettings.db_url).
    :param pool_size: Размер пула соединений.
    :return: Engine.
    """
    return create_engine(
        db_url,
        pool_pre_ping=True,
        pool_size=pool_size,
        max_overflow=0,
    )
