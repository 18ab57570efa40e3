"""Environment-driven settings for ingestion jobs."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta

from pipelines.config import DEFAULT_BATCH_SIZE, ProcessorConfig

SHF_CSV_URL_ENV = "SHF_CSV_URL"
STALE_UPLOAD_MINUTES_ENV = "STALE_UPLOAD_MINUTES"
BATCH_SIZE_ENV = "INGEST_BATCH_SIZE"

DEFAULT_STALE_UPLOAD_MINUTES = 60


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer (got {raw!r}).") from exc


@dataclass(frozen=True)
class JobSettings:
    """Settings shared by the CLI, the API upload endpoint and scheduled runs."""

    source_url: str | None = None
    batch_size: int = DEFAULT_BATCH_SIZE
    stale_upload_minutes: int = DEFAULT_STALE_UPLOAD_MINUTES

    @property
    def stale_after(self) -> timedelta:
        return timedelta(minutes=self.stale_upload_minutes)

    def processor_config(self) -> ProcessorConfig:
        return ProcessorConfig(batch_size=self.batch_size)


def load_settings() -> JobSettings:
    return JobSettings(
        source_url=os.getenv(SHF_CSV_URL_ENV) or None,
        batch_size=_int_from_env(BATCH_SIZE_ENV, DEFAULT_BATCH_SIZE),
        stale_upload_minutes=_int_from_env(
            STALE_UPLOAD_MINUTES_ENV, DEFAULT_STALE_UPLOAD_MINUTES
        ),
    )


__all__ = ["JobSettings", "load_settings", "SHF_CSV_URL_ENV"]
