from typing import Any, Mapping

INSERT_PREFIX = "INSERT INTO"

# Таблица трансляции для экранирования строковых литералов TDengine.
_TRANSLATE = {
    ord("\\"): "\\\\",
    ord("'"): "\\'",
}


def _quote_ident(name: str) -> str:
    """Оборачивает имя БД/таблицы/колонки в обратные кавычки."""
    return "`" + str(name).replace("`", "``") + "`"


def _quote_value(value: Any) -> str:
    """
    Преобразует значение колонки/тега в литерал SQL.

    - None -> NULL (без кавычек).
    - bool -> 'true' / 'false' (в нижнем регистре, как понимает TDengine).
    - Всё остальное -> str(value) в одинарных кавычках,
      обратный слэш и кавычка экранируются.

    :param value: Значение поля.
    :return: Литерал для VALUES (...).
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "'true'" if value else "'false'"

    s = str(value)
    # Быстрый путь: экранировать нечего
    if ("'" not in s) and ("\\" not in s):
        return f"'{s}'"
    return "'" + s.translate(_TRANSLATE) + "'"


def render_row(
    db: str,
    super_table: str,
    table: str,
    fields: Mapping[str, Any],
    tags: Mapping[str, Any] | None = None,
) -> str:
    """
    Рендерит одну строку в фрагмент INSERT для супер-таблицы TDengine.

    Формат фрагмента (с ведущим пробелом, чтобы фрагменты можно было
    склеивать после префикса INSERT INTO)::

        `db`.`stb` (`tbname`,`c1`,`t1`) VALUES ('table','v1','tv1')

    Подтаблица создаётся сервером автоматически по tbname, теги
    передаются в том же списке колонок, что и обычные поля.

    :param db: Имя базы данных.
    :param super_table: Имя супер-таблицы.
    :param table: Имя подтаблицы (tbname).
    :param fields: Колонки строки: имя -> значение.
    :param tags: Теги подтаблицы: имя -> значение.
    :return: Фрагмент statement.
    """
    items = list(fields.items())
    if tags:
        items.extend(tags.items())

    names = ",".join(_quote_ident(k) for k, _ in items)
    values = ",".join(_quote_value(v) for _, v in items)

    return (
        f" {_quote_ident(db)}.{_quote_ident(super_table)} "
        f"(`tbname`,{names}) VALUES ({_quote_value(table)},{values})"
    )


def render_insert(
    db: str,
    super_table: str,
    table: str,
    fields: Mapping[str, Any],
    tags: Mapping[str, Any] | None = None,
) -> str:
    """Полный INSERT для одной строки (синхронный путь записи)."""
    return INSERT_PREFIX + render_row(db, super_table, table, fields, tags)
