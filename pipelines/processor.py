"""End-to-end SHF CSV ingestion with an audited upload log.

``ShfDataProcessor`` runs parse -> classify -> resolve locations -> build
records -> persist, strictly in that order, and records the outcome on a
``data_upload_logs`` entry. Callers always get an ``IngestResult`` back; no
exception escapes ``process_csv``/``process_file``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from pipelines.classify import RowClassifier
from pipelines.config import DEFAULT_CONFIG, ProcessorConfig
from pipelines.locations import LocationResolution, LocationResolver
from pipelines.model import IngestResult
from pipelines.prices import BatchPersister, BuildOutcome, PersistOutcome, PriceRecordBuilder
from pipelines.sources.shf import decode_csv_bytes, parse_shf_csv
from pipelines.text import TextNormalizer
from storage.base import PriceIndexStore

logger = logging.getLogger(__name__)


@dataclass
class RunStats:
    """Aggregate counters for one ingestion run."""

    encoding: str | None = None
    rows_parsed: int = 0
    rows_residential: int = 0
    locations: LocationResolution = field(default_factory=LocationResolution)
    build: BuildOutcome = field(default_factory=BuildOutcome)
    persist: PersistOutcome = field(default_factory=PersistOutcome)

    @property
    def records_built(self) -> int:
        return len(self.build.records)

    def summary(self) -> dict[str, object]:
        return {
            "encoding": self.encoding,
            "rows_parsed": self.rows_parsed,
            "rows_residential": self.rows_residential,
            "locations_resolved": len(self.locations),
            "locations_created": self.locations.created,
            "locations_failed": self.locations.failed,
            "records_built": self.records_built,
            "rows_skipped": self.build.skipped,
            "batches_succeeded": self.persist.succeeded,
            "batches_failed": self.persist.failed,
            "records_written": self.persist.written,
        }


@dataclass
class IngestReport:
    result: IngestResult
    stats: RunStats | None = None
    upload_log_id: str | None = None


class ShfDataProcessor:
    """Coordinates one SHF ingestion run against a ``PriceIndexStore``."""

    def __init__(
        self,
        store: PriceIndexStore,
        config: ProcessorConfig = DEFAULT_CONFIG,
        *,
        normalizer: TextNormalizer | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.normalizer = normalizer or TextNormalizer()
        self.classifier = RowClassifier(config)
        self.resolver = LocationResolver(store, config)
        self.builder = PriceRecordBuilder(store, self.classifier)
        self.persister = BatchPersister(store, config.batch_size)

    def _run_pipeline(self, content: str, stats: RunStats) -> None:
        rows = parse_shf_csv(content, self.normalizer)
        stats.rows_parsed = len(rows)
        logger.info("Total rows parsed: %s", stats.rows_parsed)

        residential = self.classifier.classify_all(rows)
        stats.rows_residential = len(residential)

        stats.locations = self.resolver.resolve(residential)

        # Reference data must be readable before any record is built.
        self.store.list_property_types()

        stats.build = self.builder.build(residential, stats.locations)
        stats.persist = self.persister.persist(stats.build.records)

    def _mark_failed(self, log_id: str, message: str) -> None:
        try:
            self.store.update_upload_log(log_id, "failed", 0, error=message)
        except Exception as exc:
            logger.error("Upload log %s left in processing state: %s", log_id, exc)

    def ingest(self, content: str, filename: str, *, encoding: str | None = None) -> IngestReport:
        logger.info("Starting CSV processing for %s", filename)
        try:
            log = self.store.create_upload_log(filename)
        except Exception as exc:
            logger.error("Failed to create upload log for %s: %s", filename, exc)
            return IngestReport(
                result=IngestResult(
                    success=False, records_processed=0, error=f"Failed to create upload log: {exc}"
                )
            )

        stats = RunStats(encoding=encoding)
        try:
            self._run_pipeline(content, stats)
            self.store.update_upload_log(log.id, "completed", stats.records_built)
        except Exception as exc:
            logger.exception("Error processing %s", filename)
            message = str(exc) or type(exc).__name__
            self._mark_failed(log.id, message)
            return IngestReport(
                result=IngestResult(success=False, records_processed=0, error=message),
                stats=stats,
                upload_log_id=log.id,
            )

        logger.info(
            "CSV processing completed for %s: %s records.", filename, stats.records_built
        )
        return IngestReport(
            result=IngestResult(success=True, records_processed=stats.records_built),
            stats=stats,
            upload_log_id=log.id,
        )

    def process_csv(self, content: str, filename: str) -> IngestResult:
        return self.ingest(content, filename).result

    def ingest_bytes(self, data: bytes, filename: str) -> IngestReport:
        text, encoding = decode_csv_bytes(data, self.config.encodings)
        logger.info("File read successfully (%s characters, %s).", len(text), encoding)
        return self.ingest(text, filename, encoding=encoding)

    def process_file(self, data: bytes, filename: str) -> IngestResult:
        return self.ingest_bytes(data, filename).result


def process_shf_csv(
    data: bytes,
    filename: str,
    store: PriceIndexStore,
    config: ProcessorConfig = DEFAULT_CONFIG,
) -> IngestResult:
    """Decode and ingest an uploaded SHF file with a fresh processor."""

    return ShfDataProcessor(store, config).process_file(data, filename)


__all__ = ["IngestReport", "RunStats", "ShfDataProcessor", "process_shf_csv"]
