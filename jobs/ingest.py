"""Job that ingests one SHF export, from disk or from its published URL."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from jobs.config import JobSettings, load_settings
from pipelines.processor import IngestReport, ShfDataProcessor
from pipelines.sources.shf import fetch_shf_csv
from storage.db import DuckDBStore, connect, mark_stale_uploads_failed

load_dotenv()

logger = logging.getLogger(__name__)


def _filename_from_url(url: str) -> str:
    name = url.rstrip("/").rsplit("/", 1)[-1].split("?", 1)[0]
    return name or "shf_download.csv"


async def _read_source(path: Path | None, url: str | None) -> tuple[bytes, str]:
    if path is not None:
        return path.read_bytes(), path.name
    if url:
        logger.info("Downloading SHF export from %s...", url)
        return await fetch_shf_csv(url), _filename_from_url(url)
    raise ValueError("Provide a file path or set SHF_CSV_URL.")


def ingest(
    path: str | os.PathLike[str] | None = None,
    *,
    url: str | None = None,
    settings: JobSettings | None = None,
    db_path: str | os.PathLike[str] | None = None,
) -> IngestReport:
    """Read the export, run the processor against DuckDB and return its report."""

    settings = settings or load_settings()
    source_path = Path(path) if path is not None else None
    data, filename = asyncio.run(_read_source(source_path, url or settings.source_url))

    conn = connect(db_path)
    try:
        processor = ShfDataProcessor(DuckDBStore(conn), settings.processor_config())
        return processor.ingest_bytes(data, filename)
    finally:
        conn.close()


def sweep_stale_uploads(
    *,
    settings: JobSettings | None = None,
    db_path: str | os.PathLike[str] | None = None,
) -> int:
    settings = settings or load_settings()
    conn = connect(db_path)
    try:
        return mark_stale_uploads_failed(conn, settings.stale_after)
    finally:
        conn.close()


def main(path: str | None = None, *, url: str | None = None) -> int:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    report = ingest(path, url=url)
    if report.stats is not None:
        logger.info("Run summary: %s", report.stats.summary())
    if not report.result.success:
        logger.error("Ingestion failed: %s", report.result.error)
        return 1
    logger.info(
        "Ingest job finished (records processed=%s).", report.result.records_processed
    )
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
