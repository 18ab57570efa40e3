from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

import pytest

from pipelines.config import DEFAULT_PROPERTY_TYPE_LABELS
from pipelines.model import (
    Location,
    LocationType,
    PriceIndexRecord,
    PropertyType,
    UploadLog,
    UploadStatus,
)
from storage.base import PriceIndexStore, StorageError

SHF_CSV = "\n".join(
    [
        "Consecutivo;Global;Estado;Municipio;Trimestre;Año;Indice",
        "1;Nacional;;;1;2020;100,00",
        "2;Nacional;;;2;2020;150,25",
        "3;Usada;;;2;2020;140,10",
        "4;Nueva;;;2;2020;160,50",
        "5;ZM Guadalajara;;;2;2020;155,00",
        "6;Estatal;Jalisco;;2;2020;151,00",
        "7;Municipal;Jalisco;Guadalajara;2;2020;152,00",
        "8;Municipal;Jalisco;Guadalajara;3;2020;153,00",
        "9;Economica - Social;Jalisco;;2;2020;99,00",
        "10;Nacional;;;2",
        "",
    ]
)


class FakeStore(PriceIndexStore):
    """In-memory store with switchable failures."""

    def __init__(self) -> None:
        self.locations: list[Location] = []
        self.property_types = [
            PropertyType(id=f"pt-{code}", name=code)
            for code in DEFAULT_PROPERTY_TYPE_LABELS.values()
        ]
        self.price_indices: dict[tuple[str, str, int, int], PriceIndexRecord] = {}
        self.upload_logs: dict[str, UploadLog] = {}
        self.upsert_calls: list[int] = []
        self.fail_batches: set[int] = set()
        self.fail_location_names: set[str] = set()
        self.fail_create_log = False
        self.fail_property_types = False
        self.fail_update_log = False

    def list_locations(self) -> list[Location]:
        return list(self.locations)

    def create_location(
        self,
        type: LocationType,
        name: str,
        state: str | None = None,
        parent_id: str | None = None,
    ) -> Location:
        if name in self.fail_location_names:
            raise StorageError(f"insert rejected for {name}")
        location = Location(
            id=f"loc-{len(self.locations) + 1}",
            type=type,
            name=name,
            state=state,
            parent_id=parent_id,
        )
        self.locations.append(location)
        return location

    def list_property_types(self) -> list[PropertyType]:
        if self.fail_property_types:
            raise StorageError("property types unavailable")
        return list(self.property_types)

    def upsert_price_indices(self, records: Sequence[PriceIndexRecord]) -> int:
        self.upsert_calls.append(len(records))
        if len(self.upsert_calls) in self.fail_batches:
            raise StorageError(f"batch {len(self.upsert_calls)} rejected")
        for record in records:
            self.price_indices[record.conflict_key()] = record
        return len(records)

    def create_upload_log(self, filename: str) -> UploadLog:
        if self.fail_create_log:
            raise StorageError("permission denied")
        log = UploadLog(
            id=f"log-{len(self.upload_logs) + 1}",
            filename=filename,
            upload_date=datetime(2024, 1, 1),
        )
        self.upload_logs[log.id] = log
        return log

    def update_upload_log(
        self,
        log_id: str,
        status: UploadStatus,
        records_processed: int,
        error: str | None = None,
    ) -> None:
        if self.fail_update_log:
            raise StorageError("update rejected")
        self.upload_logs[log_id] = self.upload_logs[log_id].model_copy(
            update={
                "status": status,
                "records_processed": records_processed,
                "error_message": error,
            }
        )

    def location_named(self, name: str) -> Location:
        return next(location for location in self.locations if location.name == name)


@pytest.fixture()
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture()
def shf_csv_text() -> str:
    return SHF_CSV


@pytest.fixture()
def db_path(monkeypatch, tmp_path):
    path = tmp_path / "price_index.duckdb"
    monkeypatch.setenv("PRICE_INDEX_DB_PATH", str(path))
    return path
