import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from src.settings.logging import logger


@dataclass
class ReaderStats:
    """
    Счётчики чтения входного JSONL-файла.

    :ivar lines_seen: Сколько непустых строк прочитано.
    :ivar rows_emitted: Сколько строк отдано в пайплайн.
    :ivar skipped_records: Сколько строк пропущено (битый JSON, нет ключей).
    """

    lines_seen: int = 0
    rows_emitted: int = 0
    skipped_records: int = 0


@dataclass(frozen=True)
class RowRecord:
    """
    Одна строка для записи в супер-таблицу.

    :ivar db: Имя базы данных.
    :ivar super_table: Имя супер-таблицы.
    :ivar table: Имя подтаблицы.
    :ivar fields: Колонки.
    :ivar tags: Теги.
    """

    db: str
    super_table: str
    table: str
    fields: Dict[str, Any]
    tags: Dict[str, Any] = field(default_factory=dict)


_REQUIRED_KEYS = ("db", "super_table", "table", "fields")


def _parse_line(line: str) -> RowRecord:
    obj = json.loads(line)
    if not isinstance(obj, dict):
        raise ValueError("ожидался JSON-объект")

    missing = [k for k in _REQUIRED_KEYS if not obj.get(k)]
    if missing:
        raise ValueError(f"нет ключей: {missing}")

    fields = obj["fields"]
    tags = obj.get("tags") or {}
    if not isinstance(fields, dict) or not isinstance(tags, dict):
        raise ValueError("fields и tags должны быть объектами")

    return RowRecord(
        db=str(obj["db"]),
        super_table=str(obj["super_table"]),
        table=str(obj["table"]),
        fields=fields,
        tags=tags,
    )


def iter_rows(path: Path, stats: Optional[ReaderStats] = None) -> Iterator[RowRecord]:
    """
    Потоково читает JSONL-файл со строками для записи.

    Формат строки::

        {"db": "power", "super_table": "meters", "table": "d1001",
         "fields": {"ts": "2024-01-01 00:00:00", "current": 10.3},
         "tags": {"location": "Beijing"}}

    Пустые строки игнорируются, некорректные — логируются и
    пропускаются (учитываются в stats.skipped_records).

    :param path: Путь к файлу.
    :param stats: Счётчики (опционально).
    :return: Итератор RowRecord.
    """
    st = stats if stats is not None else ReaderStats()

    with path.open("r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue

            st.lines_seen += 1
            try:
                rec = _parse_line(line)
            except ValueError as e:
                # json.JSONDecodeError тоже ValueError
                st.skipped_records += 1
                logger.warning("Строка %s пропущена: %s", lineno, e)
                continue

            st.rows_emitted += 1
            yield rec
