"""DuckDB persistence for locations, property types, price indices and upload logs."""

from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import Any, Iterable, Sequence

import duckdb

from pipelines.model import (
    Location,
    LocationType,
    PriceIndexRecord,
    PropertyType,
    UploadLog,
    UploadStatus,
)
from storage.base import PriceIndexStore, StorageError

DB_ENV_VAR = "PRICE_INDEX_DB_PATH"
DEFAULT_DB_PATH = Path("data/price_index.duckdb")

LOCATIONS_TABLE = "locations"
PROPERTY_TYPES_TABLE = "residential_property_types"
PRICE_INDICES_TABLE = "residential_price_indices"
UPLOAD_LOGS_TABLE = "data_upload_logs"

# name -> (display_name_en, display_name_es)
DEFAULT_PROPERTY_TYPES: dict[str, tuple[str, str]] = {
    "nueva": ("New Properties", "Propiedades Nuevas"),
    "usada": ("Used Properties", "Propiedades Usadas"),
    "casa_sola": ("Single Family Homes", "Casas Individuales"),
    "condominio": ("Condominiums", "Condominios"),
    "media_residencial": ("Mid-tier Residential", "Media - Residencial"),
}

# Type-agnostic records are stored with an empty property_type_id so the
# composite primary key applies to them too.
NO_PROPERTY_TYPE = ""

PRICE_INDEX_SELECT = f"""
    SELECT
        p.location_id,
        l.name AS location_name,
        l.type AS location_type,
        l.state,
        NULLIF(p.property_type_id, '') AS property_type_id,
        t.name AS property_type,
        p.quarter,
        p.year,
        p.index_value
    FROM {PRICE_INDICES_TABLE} p
    JOIN {LOCATIONS_TABLE} l ON l.id = p.location_id
    LEFT JOIN {PROPERTY_TYPES_TABLE} t ON t.id = p.property_type_id
"""

logger = logging.getLogger(__name__)


def _ensure_parent_dir(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


def get_database_path(override: str | os.PathLike[str] | None = None) -> Path:
    """Resolve the DuckDB file path from an explicit override or environment variable."""

    if override is not None:
        return Path(override)
    env_value = os.getenv(DB_ENV_VAR)
    if env_value:
        return Path(env_value)
    return DEFAULT_DB_PATH


def connect(
    path: str | os.PathLike[str] | None = None,
    *,
    read_only: bool = False,
    ensure: bool = True,
) -> duckdb.DuckDBPyConnection:
    """Create a DuckDB connection, optionally ensuring schema availability."""

    db_path = get_database_path(path)
    if not read_only:
        _ensure_parent_dir(db_path)
    conn = duckdb.connect(str(db_path), read_only=read_only)
    if ensure and not read_only:
        ensure_schema(conn)
    return conn


def ensure_schema(conn: duckdb.DuckDBPyConnection) -> None:
    """Create all tables and indexes if missing and seed the property types."""

    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {LOCATIONS_TABLE} (
            id TEXT PRIMARY KEY,
            type TEXT NOT NULL
                CHECK (type IN ('national', 'state', 'municipality', 'metro_zone')),
            name TEXT NOT NULL,
            state TEXT,
            parent_id TEXT,
            created_at TIMESTAMP NOT NULL
        )
        """
    )
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {PROPERTY_TYPES_TABLE} (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL UNIQUE,
            display_name_en TEXT NOT NULL,
            display_name_es TEXT NOT NULL
        )
        """
    )
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {PRICE_INDICES_TABLE} (
            location_id TEXT NOT NULL,
            property_type_id TEXT NOT NULL DEFAULT '',
            quarter INTEGER NOT NULL CHECK (quarter >= 1 AND quarter <= 4),
            year INTEGER NOT NULL CHECK (year >= 2005),
            index_value DECIMAL(10, 2) NOT NULL,
            updated_at TIMESTAMP NOT NULL,
            PRIMARY KEY (location_id, property_type_id, quarter, year)
        )
        """
    )
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {UPLOAD_LOGS_TABLE} (
            id TEXT PRIMARY KEY,
            filename TEXT NOT NULL,
            upload_date TIMESTAMP NOT NULL,
            updated_at TIMESTAMP,
            records_processed INTEGER NOT NULL DEFAULT 0,
            status TEXT NOT NULL DEFAULT 'processing'
                CHECK (status IN ('processing', 'completed', 'failed')),
            error_message TEXT
        )
        """
    )
    conn.execute(
        f"CREATE INDEX IF NOT EXISTS idx_locations_type ON {LOCATIONS_TABLE} (type)"
    )
    conn.execute(
        f"CREATE INDEX IF NOT EXISTS idx_locations_state ON {LOCATIONS_TABLE} (state)"
    )
    seed_property_types(conn)


def seed_property_types(
    conn: duckdb.DuckDBPyConnection,
    property_types: dict[str, tuple[str, str]] = DEFAULT_PROPERTY_TYPES,
) -> int:
    """Insert any missing reference property types. Returns the number added."""

    existing = {
        row[0] for row in conn.execute(f"SELECT name FROM {PROPERTY_TYPES_TABLE}").fetchall()
    }
    missing = [
        (_new_id(), name, labels[0], labels[1])
        for name, labels in property_types.items()
        if name not in existing
    ]
    if missing:
        conn.executemany(
            f"""
            INSERT INTO {PROPERTY_TYPES_TABLE} (id, name, display_name_en, display_name_es)
            VALUES (?, ?, ?, ?)
            """,
            missing,
        )
    return len(missing)


def _location_from_row(row: Sequence[Any]) -> Location:
    return Location(
        id=row[0],
        type=row[1],
        name=row[2],
        state=row[3],
        parent_id=row[4],
        created_at=row[5],
    )


def fetch_locations(
    conn: duckdb.DuckDBPyConnection,
    *,
    type: LocationType | None = None,
    state: str | None = None,
) -> list[Location]:
    """Return persisted locations, optionally filtered by type and state."""

    sql = f"SELECT id, type, name, state, parent_id, created_at FROM {LOCATIONS_TABLE}"
    filters: list[str] = []
    params: list[Any] = []
    if type:
        filters.append("type = ?")
        params.append(type)
    if state:
        filters.append("state = ?")
        params.append(state)
    if filters:
        sql += " WHERE " + " AND ".join(filters)
    sql += " ORDER BY type, state NULLS FIRST, name"
    return [_location_from_row(row) for row in conn.execute(sql, params).fetchall()]


def insert_location(
    conn: duckdb.DuckDBPyConnection,
    *,
    type: LocationType,
    name: str,
    state: str | None = None,
    parent_id: str | None = None,
) -> Location:
    location = Location(
        id=_new_id(),
        type=type,
        name=name,
        state=state or None,
        parent_id=parent_id,
        created_at=_utcnow(),
    )
    conn.execute(
        f"""
        INSERT INTO {LOCATIONS_TABLE} (id, type, name, state, parent_id, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        [
            location.id,
            location.type,
            location.name,
            location.state,
            location.parent_id,
            location.created_at,
        ],
    )
    return location


def fetch_property_types(conn: duckdb.DuckDBPyConnection) -> list[PropertyType]:
    rows = conn.execute(
        f"""
        SELECT id, name, display_name_en, display_name_es
        FROM {PROPERTY_TYPES_TABLE}
        ORDER BY name
        """
    ).fetchall()
    return [
        PropertyType(id=row[0], name=row[1], display_name_en=row[2], display_name_es=row[3])
        for row in rows
    ]


def _serialize_record(record: PriceIndexRecord, written_at: datetime) -> tuple:
    return (
        record.location_id,
        record.property_type_id or NO_PROPERTY_TYPE,
        record.quarter,
        record.year,
        record.index_value,
        written_at,
    )


def upsert_price_indices(
    conn: duckdb.DuckDBPyConnection, records: Iterable[PriceIndexRecord]
) -> int:
    """Insert or overwrite a batch of ``PriceIndexRecord`` rows atomically.

    Records sharing a conflict key within the batch collapse to the last one.

    Returns
    -------
    int
        Number of rows written to the database.
    """

    deduplicated: dict[tuple[str, str, int, int], PriceIndexRecord] = {}
    for record in records:
        deduplicated[record.conflict_key()] = record
    if not deduplicated:
        return 0

    written_at = _utcnow()
    serialized = [_serialize_record(record, written_at) for record in deduplicated.values()]
    conn.begin()
    try:
        conn.executemany(
            f"""
            INSERT INTO {PRICE_INDICES_TABLE} (
                location_id,
                property_type_id,
                quarter,
                year,
                index_value,
                updated_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (location_id, property_type_id, quarter, year)
            DO UPDATE SET
                index_value = excluded.index_value,
                updated_at = excluded.updated_at
            """,
            serialized,
        )
    except duckdb.Error:
        conn.rollback()
        raise
    conn.commit()
    return len(serialized)


def fetch_price_indices(
    conn: duckdb.DuckDBPyConnection,
    *,
    where: str | None = None,
    params: Sequence[object] | None = None,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """Query stored price indices joined with their location and property type."""

    sql = build_price_index_query(where, limit)
    cursor = conn.execute(sql, params or [])
    columns = [column[0] for column in cursor.description]
    return [dict(zip(columns, row, strict=True)) for row in cursor.fetchall()]


def build_price_index_query(where: str | None = None, limit: int | None = None) -> str:
    sql = PRICE_INDEX_SELECT
    if where:
        sql += f" WHERE {where}"
    sql += " ORDER BY p.year, p.quarter, l.type, l.name"
    if limit is not None:
        sql += f" LIMIT {int(limit)}"
    return sql


def fetch_price_trend(
    conn: duckdb.DuckDBPyConnection,
    location_id: str,
    *,
    property_type_id: str | None = None,
    years_back: int = 20,
    today: date | None = None,
) -> list[dict[str, Any]]:
    """Return the quarterly series for a location with quarter-over-quarter growth.

    ``growth_rate`` is a percentage relative to the previous quarter and is 0
    for the first observation or when the previous value is not positive.
    """

    first_year = (today or date.today()).year - years_back
    rows = conn.execute(
        f"""
        WITH series AS (
            SELECT
                year,
                quarter,
                index_value,
                LAG(index_value) OVER (ORDER BY year, quarter) AS prev_value
            FROM {PRICE_INDICES_TABLE}
            WHERE location_id = ?
              AND property_type_id = ?
              AND year >= ?
        )
        SELECT
            year,
            quarter,
            index_value,
            CASE
                WHEN prev_value IS NOT NULL AND prev_value > 0
                THEN ROUND((index_value - prev_value) / prev_value * 100, 4)
                ELSE 0
            END AS growth_rate
        FROM series
        ORDER BY year, quarter
        """,
        [location_id, property_type_id or NO_PROPERTY_TYPE, first_year],
    ).fetchall()
    return [
        {"year": row[0], "quarter": row[1], "index_value": row[2], "growth_rate": float(row[3])}
        for row in rows
    ]


def fetch_location_hierarchy(
    conn: duckdb.DuckDBPyConnection, location_id: str
) -> list[dict[str, Any]]:
    """Return a location and all of its descendants, deepest level first."""

    rows = conn.execute(
        f"""
        WITH RECURSIVE location_tree AS (
            SELECT id, name, type, state, 0 AS level
            FROM {LOCATIONS_TABLE}
            WHERE id = ?
            UNION ALL
            SELECT l.id, l.name, l.type, l.state, lt.level + 1
            FROM {LOCATIONS_TABLE} l
            JOIN location_tree lt ON l.parent_id = lt.id
        )
        SELECT id, name, type, state, level
        FROM location_tree
        ORDER BY level DESC, name
        """,
        [location_id],
    ).fetchall()
    return [
        {"id": row[0], "name": row[1], "type": row[2], "state": row[3], "level": row[4]}
        for row in rows
    ]


def _upload_log_from_row(row: Sequence[Any]) -> UploadLog:
    return UploadLog(
        id=row[0],
        filename=row[1],
        upload_date=row[2],
        updated_at=row[3],
        records_processed=row[4],
        status=row[5],
        error_message=row[6],
    )


def insert_upload_log(conn: duckdb.DuckDBPyConnection, filename: str) -> UploadLog:
    log = UploadLog(id=_new_id(), filename=filename, upload_date=_utcnow())
    conn.execute(
        f"""
        INSERT INTO {UPLOAD_LOGS_TABLE} (id, filename, upload_date, records_processed, status)
        VALUES (?, ?, ?, 0, 'processing')
        """,
        [log.id, log.filename, log.upload_date],
    )
    return log


def finish_upload_log(
    conn: duckdb.DuckDBPyConnection,
    log_id: str,
    *,
    status: UploadStatus,
    records_processed: int,
    error: str | None = None,
) -> None:
    updated = conn.execute(
        f"""
        UPDATE {UPLOAD_LOGS_TABLE}
        SET status = ?, records_processed = ?, error_message = ?, updated_at = ?
        WHERE id = ?
        RETURNING id
        """,
        [status, records_processed, error, _utcnow(), log_id],
    ).fetchall()
    if not updated:
        raise StorageError(f"Upload log {log_id} does not exist.")


def fetch_upload_logs(
    conn: duckdb.DuckDBPyConnection,
    *,
    status: UploadStatus | None = None,
    limit: int | None = None,
) -> list[UploadLog]:
    sql = f"""
        SELECT id, filename, upload_date, updated_at, records_processed, status, error_message
        FROM {UPLOAD_LOGS_TABLE}
    """
    params: list[Any] = []
    if status:
        sql += " WHERE status = ?"
        params.append(status)
    sql += " ORDER BY upload_date DESC"
    if limit is not None:
        sql += f" LIMIT {int(limit)}"
    return [_upload_log_from_row(row) for row in conn.execute(sql, params).fetchall()]


def mark_stale_uploads_failed(
    conn: duckdb.DuckDBPyConnection,
    older_than: timedelta,
    *,
    now: datetime | None = None,
) -> int:
    """Fail upload logs stuck in ``processing`` longer than ``older_than``."""

    cutoff = (now or _utcnow()) - older_than
    minutes = int(older_than.total_seconds() // 60)
    swept = conn.execute(
        f"""
        UPDATE {UPLOAD_LOGS_TABLE}
        SET status = 'failed', error_message = ?, updated_at = ?
        WHERE status = 'processing' AND upload_date < ?
        RETURNING id
        """,
        [f"Ingestion did not finish within {minutes} minutes.", _utcnow(), cutoff],
    ).fetchall()
    if swept:
        logger.warning("Marked %s stale upload logs as failed.", len(swept))
    return len(swept)


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except duckdb.Error as exc:
        raise StorageError(f"Failed to {action}: {exc}") from exc


class DuckDBStore(PriceIndexStore):
    """``PriceIndexStore`` backed by a DuckDB connection the caller owns."""

    def __init__(self, conn: duckdb.DuckDBPyConnection) -> None:
        self.conn = conn

    def list_locations(self) -> list[Location]:
        with _storage_errors("list locations"):
            return fetch_locations(self.conn)

    def create_location(
        self,
        type: LocationType,
        name: str,
        state: str | None = None,
        parent_id: str | None = None,
    ) -> Location:
        with _storage_errors(f"create location {name!r}"):
            return insert_location(
                self.conn, type=type, name=name, state=state, parent_id=parent_id
            )

    def list_property_types(self) -> list[PropertyType]:
        with _storage_errors("list property types"):
            return fetch_property_types(self.conn)

    def upsert_price_indices(self, records: Sequence[PriceIndexRecord]) -> int:
        with _storage_errors("upsert price indices"):
            return upsert_price_indices(self.conn, records)

    def create_upload_log(self, filename: str) -> UploadLog:
        with _storage_errors("create upload log"):
            return insert_upload_log(self.conn, filename)

    def update_upload_log(
        self,
        log_id: str,
        status: UploadStatus,
        records_processed: int,
        error: str | None = None,
    ) -> None:
        with _storage_errors("update upload log"):
            finish_upload_log(
                self.conn,
                log_id,
                status=status,
                records_processed=records_processed,
                error=error,
            )


__all__ = [
    "connect",
    "ensure_schema",
    "seed_property_types",
    "fetch_locations",
    "insert_location",
    "fetch_property_types",
    "upsert_price_indices",
    "fetch_price_indices",
    "build_price_index_query",
    "fetch_price_trend",
    "fetch_location_hierarchy",
    "insert_upload_log",
    "finish_upload_log",
    "fetch_upload_logs",
    "mark_stale_uploads_failed",
    "get_database_path",
    "DuckDBStore",
    "StorageError",
    "LOCATIONS_TABLE",
    "PROPERTY_TYPES_TABLE",
    "PRICE_INDICES_TABLE",
    "UPLOAD_LOGS_TABLE",
]
