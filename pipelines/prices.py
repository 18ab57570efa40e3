"""Price-index record building and batched persistence."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Iterable, Iterator, Sequence

from pipelines.classify import RowClassifier
from pipelines.config import DEFAULT_BATCH_SIZE, FIRST_YEAR
from pipelines.locations import LocationResolution
from pipelines.model import ClassifiedRow, PriceIndexRecord
from storage.base import PriceIndexStore, StorageError

logger = logging.getLogger(__name__)


def parse_index_value(text: str) -> Decimal | None:
    try:
        value = Decimal(text.strip())
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite():
        return None
    return value


def is_valid_period(quarter: int, year: int) -> bool:
    # Unparseable quarter or year text arrives here as 0.
    return 1 <= quarter <= 4 and year >= FIRST_YEAR


@dataclass
class BuildOutcome:
    records: list[PriceIndexRecord] = field(default_factory=list)
    processed: int = 0
    skipped: int = 0


class PriceRecordBuilder:
    """Joins classified rows with location and property-type ids."""

    def __init__(self, store: PriceIndexStore, classifier: RowClassifier) -> None:
        self.store = store
        self.classifier = classifier

    def _property_type_ids(self) -> dict[str, str]:
        try:
            property_types = self.store.list_property_types()
        except StorageError as exc:
            logger.warning("Property types unavailable; storing rows untyped: %s", exc)
            return {}
        return {property_type.name: property_type.id for property_type in property_types}

    def build(
        self, rows: Iterable[ClassifiedRow], locations: LocationResolution
    ) -> BuildOutcome:
        property_type_ids = self._property_type_ids()
        outcome = BuildOutcome()

        for classified in rows:
            raw = classified.row
            key = self.classifier.location_key(raw)
            location_id = locations.get(key) if key is not None else None
            if location_id is None:
                outcome.skipped += 1
                continue

            if not is_valid_period(raw.quarter, raw.year):
                logger.debug("Skipping row %s with period Q%s %s", raw.sequence, raw.quarter, raw.year)
                outcome.skipped += 1
                continue

            index_value = parse_index_value(raw.index_text)
            if index_value is None:
                outcome.skipped += 1
                continue

            type_code = self.classifier.property_type(raw, key)
            outcome.records.append(
                PriceIndexRecord(
                    location_id=location_id,
                    property_type_id=property_type_ids.get(type_code) if type_code else None,
                    quarter=raw.quarter,
                    year=raw.year,
                    index_value=index_value,
                )
            )
            outcome.processed += 1

        logger.info(
            "Price data preparation: %s processed, %s skipped.",
            outcome.processed,
            outcome.skipped,
        )
        return outcome


def iter_batches(
    records: Sequence[PriceIndexRecord], batch_size: int
) -> Iterator[Sequence[PriceIndexRecord]]:
    for start in range(0, len(records), batch_size):
        yield records[start : start + batch_size]


@dataclass
class PersistOutcome:
    batches: int = 0
    succeeded: int = 0
    failed: int = 0
    written: int = 0


class BatchPersister:
    """Upserts records in fixed-size batches; a failed batch does not stop the rest."""

    def __init__(self, store: PriceIndexStore, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be a positive integer.")
        self.store = store
        self.batch_size = batch_size

    def persist(self, records: Sequence[PriceIndexRecord]) -> PersistOutcome:
        outcome = PersistOutcome()
        total_batches = -(-len(records) // self.batch_size)
        logger.info("Inserting %s records in %s batches...", len(records), total_batches)

        for number, batch in enumerate(iter_batches(records, self.batch_size), start=1):
            outcome.batches += 1
            try:
                written = self.store.upsert_price_indices(batch)
            except StorageError as exc:
                outcome.failed += 1
                logger.error("Batch %s/%s failed: %s", number, total_batches, exc)
                continue
            outcome.succeeded += 1
            outcome.written += written
            logger.info(
                "Batch %s/%s completed (%s records).", number, total_batches, len(batch)
            )

        return outcome


__all__ = [
    "BatchPersister",
    "BuildOutcome",
    "PersistOutcome",
    "PriceRecordBuilder",
    "is_valid_period",
    "iter_batches",
    "parse_index_value",
]
