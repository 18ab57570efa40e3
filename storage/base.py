"""Storage interface consumed by the SHF ingestion pipeline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from pipelines.model import (
    Location,
    LocationType,
    PriceIndexRecord,
    PropertyType,
    UploadLog,
    UploadStatus,
)


class StorageError(RuntimeError):
    """Raised when a storage call cannot be completed."""


class PriceIndexStore(ABC):
    """Storage for locations, property types, price indices and upload logs.

    Implementations must surface backend failures as ``StorageError``. The
    pipeline skips a single location or batch only on ``StorageError``; any
    other exception fails the whole run.
    """

    @abstractmethod
    def list_locations(self) -> list[Location]:
        """Return every persisted location."""

    @abstractmethod
    def create_location(
        self,
        type: LocationType,
        name: str,
        state: str | None = None,
        parent_id: str | None = None,
    ) -> Location:
        """Insert a location and return it with its assigned id."""

    @abstractmethod
    def list_property_types(self) -> list[PropertyType]:
        """Return the residential property-type reference rows."""

    @abstractmethod
    def upsert_price_indices(self, records: Sequence[PriceIndexRecord]) -> int:
        """Atomically insert or overwrite records keyed on location, type, quarter and year."""

    @abstractmethod
    def create_upload_log(self, filename: str) -> UploadLog:
        """Create an upload log entry in ``processing`` state."""

    @abstractmethod
    def update_upload_log(
        self,
        log_id: str,
        status: UploadStatus,
        records_processed: int,
        error: str | None = None,
    ) -> None:
        """Move an upload log entry to a terminal state."""


__all__ = ["PriceIndexStore", "StorageError"]
