from pathlib import Path

from src.db.connection import get_engine
from src.db.executor import StatementExecutor
from src.pipeline.coordinator import BatchPipeline, PipelineConfig
from src.settings.logging import logger, set_level
from src.settings.settings import load_settings
from src.source.reader import ReaderStats, iter_rows


def main() -> None:
    """
    Точка входа: загрузка строк из JSONL-файла в TDengine.

    Последовательность выполнения:
    1) Читает настройки (env + config.ini)
    2) Запускает пайплайн асинхронной пакетной записи
    3) Построчно читает входной файл и добавляет строки в пайплайн
    4) close(): дожидается выполнения всех батчей и останавливает воркеров

    :return: None.
    """
    settings = load_settings()
    set_level(settings.ini.log_level)

    cfg = PipelineConfig(
        workers=settings.ini.workers,
        queue_maxsize=settings.ini.queue_maxsize or None,
        max_batch_bytes=settings.ini.max_batch_bytes,
        show_sql=settings.ini.show_sql,
        retry_sleep_ms=settings.ini.retry_sleep_ms,
    )
    engine = get_engine(settings.env.db_url, pool_size=cfg.workers)
    executor = StatementExecutor(
        engine, show_sql=cfg.show_sql, retry_sleep_ms=cfg.retry_sleep_ms
    )

    stats = ReaderStats()
    logger.info("Запуск pipeline: %s", cfg)

    with BatchPipeline(executor, cfg) as pipeline:
        for rec in iter_rows(Path(settings.ini.input_path), stats=stats):
            pipeline.append_row(
                rec.db, rec.super_table, rec.table, rec.fields, rec.tags
            )

    logger.info(
        "Загрузка завершена. lines=%s rows=%s skipped=%s metrics=%s",
        stats.lines_seen,
        stats.rows_emitted,
        stats.skipped_records,
        pipeline.metrics().as_dict(),
    )
    engine.dispose()


if __name__ == "__main__":
    main()
