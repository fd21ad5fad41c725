import configparser
from dataclasses import dataclass
from pathlib import Path

from src.utils.errors import SettingsError

CONFIG_PATH = Path(__file__).resolve().parent.parent.parent / "config.ini"


@dataclass(frozen=True)
class IniSettings:
    """
    Настройки пайплайна из INI-файла.

    Файл читается один раз при старте CLI. Любая проблема (нет файла,
    секции, ключа, пустое значение, неверный тип) превращается в
    SettingsError.

    queue_maxsize = 0 означает "равен количеству воркеров".
    """

    input_path: str
    workers: int
    queue_maxsize: int
    max_batch_bytes: int
    show_sql: bool
    retry_sleep_ms: int
    log_level: str

    # имя_поля_в_классе -> (секция, ключ)
    _MAP = {
        "input_path": ("INPUT", "path"),
        "workers": ("PIPELINE", "workers"),
        "queue_maxsize": ("PIPELINE", "queue_maxsize"),
        "max_batch_bytes": ("PIPELINE", "max_batch_bytes"),
        "show_sql": ("PIPELINE", "show_sql"),
        "retry_sleep_ms": ("RETRY", "sleep_ms"),
        "log_level": ("LOG", "level"),
    }

    @classmethod
    def load(cls, path: Path = CONFIG_PATH) -> "IniSettings":
        """
        Загружает и валидирует настройки из INI-файла.

        :param path: Путь к INI-файлу конфигурации.
        :return: Экземпляр IniSettings.
        :raises SettingsError: Если файл не найден, не прочитан или с ошибками.
        """
        if not path.exists():
            raise SettingsError(f"INI файл не найден: {path}")

        parser = configparser.ConfigParser()
        if not parser.read(path, encoding="utf-8"):
            raise SettingsError(f"Не удалось прочитать INI файл: {path}")

        raw_data = {
            field: cls._required(parser, sec, key, path)
            for field, (sec, key) in cls._MAP.items()
        }
        data = cls._cast_types(raw_data)

        if data["workers"] < 1:
            raise SettingsError(f"workers должен быть >= 1, получено: {data['workers']}")
        if data["queue_maxsize"] < 0:
            raise SettingsError(
                f"queue_maxsize должен быть >= 0, получено: {data['queue_maxsize']}"
            )
        if data["max_batch_bytes"] < 1:
            raise SettingsError(
                f"max_batch_bytes должен быть >= 1, получено: {data['max_batch_bytes']}"
            )
        return cls(**data)

    @staticmethod
    def _required(
        parser: configparser.ConfigParser, section: str, key: str, path: Path
    ) -> str:
        """
        Возвращает обязательный непустой параметр из секции INI-файла.

        :param parser: ConfigParser с загруженным файлом.
        :param section: Имя секции.
        :param key: Имя параметра.
        :param path: Путь к файлу (для текста ошибки).
        :return: Значение параметра в виде строки.
        :raises SettingsError: Если секция, ключ отсутствуют или значение пустое.
        """
        if not parser.has_section(section):
            raise SettingsError(f"Секция [{section}] отсутствует в {path.name}")

        if not parser.has_option(section, key):
            raise SettingsError(
                f"Ключ '{key}' отсутствует в секции [{section}] ({path.name})"
            )

        value = parser.get(section, key)
        if not value.strip():
            raise SettingsError(f"Ключ '{key}' в секции [{section}] пустой ({path.name})")

        return value.strip()

    @classmethod
    def _cast_types(cls, raw: dict[str, str]) -> dict[str, object]:
        """Приводит строковые значения из INI к типам из аннотаций IniSettings."""
        result: dict[str, object] = {}

        for field, value in raw.items():
            target_type = cls.__annotations__[field]

            try:
                if target_type is bool:
                    result[field] = value.lower() in {"1", "true", "yes", "on"}
                elif target_type is int:
                    result[field] = int(value)
                else:
                    result[field] = value
            except ValueError as e:
                raise SettingsError(
                    f"Некорректное значение для '{field}': {value}"
                ) from e

        return result
