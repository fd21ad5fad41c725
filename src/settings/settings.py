from dataclasses import dataclass
from pathlib import Path

from src.settings.env_settings import EnvSettings
from src.settings.ini_settings import CONFIG_PATH, IniSettings
from src.settings.logging import logger
from src.utils.errors import SettingsError


@dataclass(frozen=True)
class AppSettings:
    """
    Главный класс настроек приложения.

    Объединяет настройки из переменных окружения (EnvSettings)
    и INI-файла (IniSettings).
    """

    env: EnvSettings
    ini: IniSettings


def load_settings(ini_path: Path = CONFIG_PATH) -> AppSettings:
    """
    Загружает и валидирует все настройки приложения.

    Вызывается явно из CLI: сам пайплайн настроек не читает и
    получает всё через PipelineConfig.

    :param ini_path: Путь к config.ini.
    :return: Экземпляр AppSettings с валидированными настройками.
    :raises SettingsError: Если произошла ошибка при загрузке
                           или валидации настроек.
    """
    try:
        env = EnvSettings.load()
        ini = IniSettings.load(ini_path)
    except SettingsError as e:
        logger.error(f"Ошибка при загрузке настроек программы: {e}")
        raise
    return AppSettings(env=env, ini=ini)
