import os
from dataclasses import dataclass

from src.utils.errors import SettingsError

SUPPORTED_DRIVERS = ("taosrest", "taosws")


@dataclass(frozen=True)
class EnvSettings:
    """
    Класс для загрузки и валидации настроек из переменных окружения.

    Отвечает за:
    - чтение обязательных переменных окружения;
    - валидацию наличия и корректности значений;
    - формирование строки подключения к TDengine (DB_URL);
    - остановку приложения при ошибках конфигурации.

    Используется при старте приложения. При отсутствии обязательных
    переменных окружения выбрасывает SettingsError.
    """

    db_url: str

    @classmethod
    def load(cls) -> "EnvSettings":
        """
        Загружает и валидирует настройки из переменных окружения.

        :return: Экземпляр EnvSettings с корректно загруженными настройками.
        :raises SettingsError: Если обязательные переменные окружения отсутствуют
                               или имеют некорректный формат.
        """
        host = cls._required("TDENGINE_HOST")
        port = cls._int("TDENGINE_PORT", default=6041)
        user = os.getenv("TDENGINE_USER") or "root"
        password = cls._required("TDENGINE_PASSWORD")
        driver = os.getenv("TDENGINE_DRIVER") or "taosrest"

        if driver not in SUPPORTED_DRIVERS:
            raise SettingsError(
                f"ENV TDENGINE_DRIVER должен быть одним из {SUPPORTED_DRIVERS}, "
                f"получено: {driver!r}"
            )

        db_url = f"{driver}://{user}:{password}@{host}:{port}"
        return cls(db_url=db_url)

    @staticmethod
    def _required(name: str) -> str:
        """
        Возвращает обязательную переменную окружения.

        :param name: Имя переменной окружения.
        :return: Значение переменной окружения в виде строки.
        :raises SettingsError: Если переменная окружения отсутствует или пуста.
        """
        value = os.getenv(name)
        if value is None or value.strip() == "":
            raise SettingsError(
                f"ENV {name} не задан. Проверь .env / переменные окружения."
            )
        return value

    @staticmethod
    def _int(name: str, default: int | None = None) -> int:
        """
        Возвращает целочисленную переменную окружения.

        :param name: Имя переменной окружения.
        :param default: Значение по умолчанию, если переменная не задана.
        :return: Значение переменной окружения в виде целого числа.
        :raises SettingsError: Если значение отсутствует и default не задан,
                               либо если значение невозможно привести к int.
        """
        value = os.getenv(name)
        if value is None or value.strip() == "":
            if default is None:
                raise SettingsError(f"ENV {name} не задан и не имеет default.")
            return default
        try:
            return int(value)
        except ValueError:
            raise SettingsError(
                f"ENV {name} должен быть числом, " f"получено: {value!r}"
            )
