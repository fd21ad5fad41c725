import logging

import colorlog

handler = colorlog.StreamHandler()
handler.setFormatter(
    colorlog.ColoredFormatter(
        "%(log_color)s%(asctime)s [%(levelname)s] %(threadName)s %(module)s (%(funcName)s:%(lineno)d): %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        log_colors={
            "DEBUG": "cyan",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "bold_red",
        },
    )
)

logger = logging.getLogger("tdbatch")
logger.addHandler(handler)
logger.setLevel(logging.DEBUG)


def set_level(level: str) -> None:
    """
    Меняет уровень логирования (значение из секции [LOG] config.ini).

    :param level: Имя уровня: DEBUG, INFO, WARNING, ERROR, CRITICAL.
    :return: None.
    """
    logger.setLevel(level.upper())
