"""Canonical data model for SHF residential price-index ingestion."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

LocationType = Literal["national", "state", "municipality", "metro_zone"]
UploadStatus = Literal["processing", "completed", "failed"]


class RawRow(BaseModel):
    """Literal fields of one SHF CSV line after text normalization."""

    sequence: int = Field(0, description="Row sequence number ('consecutivo').")
    category: str = Field(
        "", description="Category label ('global'): Nacional, ZM ..., property type, etc."
    )
    state: str = Field("", description="State name ('estado'); empty for national rows.")
    municipality: str = Field("", description="Municipality name ('municipio'); may be empty.")
    quarter: int = Field(0, description="Quarter of the observation (1-4).")
    year: int = Field(0, description="Year of the observation.")
    index_text: str = Field(
        "0", description="Index value as decimal text with a period separator."
    )

    model_config = ConfigDict(frozen=True)


class LocationKey(BaseModel):
    """Deduplication key for one location within an ingestion run."""

    name: str
    type: LocationType
    state: str = ""

    model_config = ConfigDict(frozen=True)

    def as_string(self) -> str:
        return f"{self.name}|{self.type}|{self.state}"


class ClassifiedRow(BaseModel):
    """A residential row paired with its location key and optional property-type code."""

    row: RawRow
    key: LocationKey
    property_type: Optional[str] = Field(
        default=None, description="Property-type code (e.g. 'usada') for national type rows."
    )

    model_config = ConfigDict(frozen=True)


class Location(BaseModel):
    """Persisted location in the national -> state -> municipality hierarchy."""

    id: str
    type: LocationType
    name: str
    state: Optional[str] = None
    parent_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def matches(self, key: LocationKey) -> bool:
        return (
            self.name == key.name
            and self.type == key.type
            and (self.state or "") == key.state
        )


class PropertyType(BaseModel):
    """Reference row from ``residential_property_types``."""

    id: str
    name: str = Field(..., description="Stable code such as 'nueva' or 'casa_sola'.")
    display_name_en: Optional[str] = None
    display_name_es: Optional[str] = None


class PriceIndexRecord(BaseModel):
    """One quarterly price-index observation ready to be upserted."""

    location_id: str
    property_type_id: Optional[str] = None
    quarter: int
    year: int
    index_value: Decimal

    model_config = ConfigDict(frozen=True)

    def conflict_key(self) -> tuple[str, str, int, int]:
        return (self.location_id, self.property_type_id or "", self.quarter, self.year)


class UploadLog(BaseModel):
    """Audit entry for one ingestion run."""

    id: str
    filename: str
    status: UploadStatus = "processing"
    records_processed: int = 0
    error_message: Optional[str] = None
    upload_date: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class IngestResult(BaseModel):
    """Structured outcome returned to callers of the ingest operation."""

    success: bool
    records_processed: int = Field(0, alias="recordsProcessed")
    error: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> dict[str, object]:
        return self.model_dump(by_alias=True, exclude_none=True)


__all__ = [
    "ClassifiedRow",
    "IngestResult",
    "Location",
    "LocationKey",
    "LocationType",
    "PriceIndexRecord",
    "PropertyType",
    "RawRow",
    "UploadLog",
    "UploadStatus",
]
