"""File exports of stored price indices using DuckDB's COPY command."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Sequence

import duckdb

from storage.db import build_price_index_query

ExportFormat = Literal["csv", "parquet"]

MEDIA_TYPES: dict[str, str] = {
    "csv": "text/csv",
    "parquet": "application/vnd.apache.parquet",
}


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _copy_options(fmt: ExportFormat, *, include_header: bool, delimiter: str) -> str:
    if fmt == "parquet":
        return "FORMAT PARQUET"
    if fmt == "csv":
        escaped = delimiter.replace("'", "''")
        header = "TRUE" if include_header else "FALSE"
        return f"FORMAT CSV, HEADER {header}, DELIMITER '{escaped}'"
    raise ValueError(f"Unsupported export format '{fmt}'.")


def export_price_indices(
    conn: duckdb.DuckDBPyConnection,
    destination: str | Path,
    *,
    fmt: ExportFormat = "csv",
    where: str | None = None,
    params: Sequence[Any] | None = None,
    limit: int | None = None,
    include_header: bool = True,
    delimiter: str = ",",
) -> Path:
    """Materialize the joined price-index view (optionally filtered) into a file."""

    options = _copy_options(fmt, include_header=include_header, delimiter=delimiter)
    dest_path = Path(destination)
    _ensure_parent(dest_path)
    sql = build_price_index_query(where, limit)
    sanitized_path = str(dest_path).replace("'", "''")
    conn.execute(f"COPY ({sql}) TO '{sanitized_path}' ({options})", params or [])
    return dest_path


__all__ = ["export_price_indices", "ExportFormat", "MEDIA_TYPES"]
