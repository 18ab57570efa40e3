"""FastAPI service exposing SHF price indices and the CSV upload operation."""

from __future__ import annotations

import logging
import os
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import duckdb
from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from jobs.config import load_settings
from pipelines.model import IngestResult
from pipelines.processor import ShfDataProcessor
from storage.db import (
    DuckDBStore,
    connect,
    fetch_location_hierarchy,
    fetch_locations,
    fetch_price_indices,
    fetch_price_trend,
    fetch_property_types,
    fetch_upload_logs,
)
from storage.exports import MEDIA_TYPES, export_price_indices

DEFAULT_LIMIT = 200
MAX_LIMIT = 5000
ALLOWED_FORMATS = {"json", "csv", "parquet"}
LOCATION_TYPES = {"national", "state", "municipality", "metro_zone"}
logger = logging.getLogger(__name__)
load_dotenv()


@asynccontextmanager
async def lifespan(_: FastAPI):
    conn = connect()
    conn.close()
    yield


app = FastAPI(title="SHF Price Index API", version="0.1.0", lifespan=lifespan)


def _configure_cors() -> None:
    raw_origins = os.getenv("API_CORS_ORIGINS", "*")
    origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
    )


_configure_cors()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/uploads")
def upload_csv(file: UploadFile = File(..., description="SHF CSV export")) -> JSONResponse:
    """Ingest one SHF export; always answers with the ingest result payload."""

    try:
        data = file.file.read()
    finally:
        file.file.close()

    settings = load_settings()
    try:
        conn = connect()
    except duckdb.Error as exc:
        logger.error("Database unavailable for upload %s: %s", file.filename, exc)
        result = IngestResult(success=False, error=f"Failed to create upload log: {exc}")
        return JSONResponse(status_code=503, content=result.to_payload())

    try:
        processor = ShfDataProcessor(DuckDBStore(conn), settings.processor_config())
        result = processor.process_file(data, file.filename or "upload.csv")
    finally:
        conn.close()

    status_code = 200 if result.success else 422
    return JSONResponse(status_code=status_code, content=result.to_payload())


@app.get("/uploads")
def list_uploads(limit: int = Query(50, ge=1, le=500)) -> dict[str, Any]:
    conn = connect(read_only=True)
    try:
        logs = fetch_upload_logs(conn, limit=limit)
    finally:
        conn.close()
    return {"count": len(logs), "items": [log.model_dump(mode="json") for log in logs]}


@app.get("/property-types")
def list_property_types() -> dict[str, Any]:
    conn = connect(read_only=True)
    try:
        property_types = fetch_property_types(conn)
    finally:
        conn.close()
    return {"items": [item.model_dump(mode="json") for item in property_types]}


@app.get("/locations")
def list_locations(
    type: str | None = Query(None, description="national, state, municipality or metro_zone"),
    state: str | None = Query(None, description="State name for municipalities"),
) -> dict[str, Any]:
    if type and type not in LOCATION_TYPES:
        raise HTTPException(status_code=400, detail=f"Unsupported location type '{type}'.")
    conn = connect(read_only=True)
    try:
        locations = fetch_locations(conn, type=type, state=state)
    finally:
        conn.close()
    return {
        "count": len(locations),
        "items": [location.model_dump(mode="json") for location in locations],
    }


@app.get("/locations/{location_id}/hierarchy")
def location_hierarchy(location_id: str) -> dict[str, Any]:
    conn = connect(read_only=True)
    try:
        nodes = fetch_location_hierarchy(conn, location_id)
    finally:
        conn.close()
    if not nodes:
        raise HTTPException(status_code=404, detail=f"Unknown location '{location_id}'")
    return {"items": nodes}


def _build_filters(
    *,
    location_id: str | None,
    property_type: str | None,
    year: int | None,
) -> tuple[str | None, list[Any]]:
    filters: list[str] = []
    params: list[Any] = []

    if location_id:
        filters.append("p.location_id = ?")
        params.append(location_id)
    if property_type == "none":
        filters.append("p.property_type_id = ''")
    elif property_type:
        filters.append("t.name = ?")
        params.append(property_type)
    if year:
        filters.append("p.year = ?")
        params.append(year)

    if not filters:
        return None, params

    return " AND ".join(filters), params


@app.get("/price-indices")
def get_price_indices(
    background_tasks: BackgroundTasks,
    format: str = Query("json", description="Response format: json, csv, or parquet"),
    location_id: str | None = Query(None, description="Location identifier"),
    property_type: str | None = Query(
        None, description="Property-type code (e.g. 'usada'); 'none' for type-agnostic records"
    ),
    year: int | None = Query(None, ge=2005, description="Observation year"),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT, description="Maximum records returned"),
):
    fmt = format.lower()
    if fmt not in ALLOWED_FORMATS:
        raise HTTPException(status_code=400, detail=f"Unsupported format '{format}'.")

    where, params = _build_filters(
        location_id=location_id,
        property_type=property_type,
        year=year,
    )

    conn = connect(read_only=True)
    try:
        if fmt == "json":
            items = fetch_price_indices(conn, where=where, params=params, limit=limit)
            payload = {"count": len(items), "items": items}
            return JSONResponse(content=jsonable_encoder(payload))

        suffix = f".{fmt}"
        with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as tmp:
            dest = Path(tmp.name)

        export_price_indices(conn, dest, fmt=fmt, where=where, params=params, limit=limit)

        def _cleanup(path: Path) -> None:
            try:
                path.unlink()
            except FileNotFoundError:
                pass

        background_tasks.add_task(_cleanup, dest)
        return FileResponse(
            dest,
            media_type=MEDIA_TYPES[fmt],
            filename=f"price_indices{suffix}",
            background=background_tasks,
        )
    except duckdb.Error as exc:  # pragma: no cover - defensive
        raise HTTPException(status_code=500, detail="Database query failed") from exc
    finally:
        conn.close()


@app.get("/price-indices/trend")
def get_price_trend(
    location_id: str = Query(..., description="Location identifier"),
    property_type_id: str | None = Query(None, description="Property-type id; omit for untyped"),
    years_back: int = Query(20, ge=1, le=50),
) -> JSONResponse:
    conn = connect(read_only=True)
    try:
        series = fetch_price_trend(
            conn, location_id, property_type_id=property_type_id, years_back=years_back
        )
    finally:
        conn.close()
    return JSONResponse(content=jsonable_encoder({"count": len(series), "items": series}))
