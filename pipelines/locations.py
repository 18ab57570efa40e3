"""Reconciliation of classified rows against persisted locations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from pipelines.config import DEFAULT_CONFIG, ProcessorConfig
from pipelines.model import ClassifiedRow, Location, LocationKey
from storage.base import PriceIndexStore, StorageError

# Parents are resolved before their children.
_HIERARCHY_ORDER = {"national": 0, "state": 1, "metro_zone": 2, "municipality": 3}

logger = logging.getLogger(__name__)


@dataclass
class LocationResolution:
    """Lookup from location key to persisted id, plus reconcile counters."""

    ids: dict[LocationKey, str] = field(default_factory=dict)
    created: int = 0
    reused: int = 0
    failed: int = 0

    def get(self, key: LocationKey) -> str | None:
        return self.ids.get(key)

    def __len__(self) -> int:
        return len(self.ids)


def unique_location_keys(rows: Iterable[ClassifiedRow]) -> list[LocationKey]:
    """Distinct keys across ``rows``, parents first, then by state and name."""

    keys = {row.key for row in rows}
    return sorted(keys, key=lambda k: (_HIERARCHY_ORDER[k.type], k.state, k.name))


class LocationResolver:
    """Reuses or creates one persisted location per distinct ``LocationKey``.

    Keys are reconciled one at a time against a fresh listing because the
    locations table has no unique constraint on ``(name, type, state)`` to
    upsert against.
    """

    def __init__(self, store: PriceIndexStore, config: ProcessorConfig = DEFAULT_CONFIG) -> None:
        self.store = store
        self.config = config

    def _national_key(self) -> LocationKey:
        return LocationKey(name=self.config.national_name, type="national")

    def _parent_id(self, key: LocationKey, resolution: LocationResolution) -> str | None:
        if key.type == "national":
            return None
        if key.type == "municipality":
            state_key = LocationKey(name=key.state, type="state")
            state_id = resolution.get(state_key)
            if state_id:
                return state_id
        return resolution.get(self._national_key())

    def _reconcile(self, key: LocationKey, resolution: LocationResolution) -> Location:
        existing = next(
            (location for location in self.store.list_locations() if location.matches(key)),
            None,
        )
        if existing is not None:
            resolution.reused += 1
            return existing

        created = self.store.create_location(
            key.type,
            key.name,
            state=key.state or None,
            parent_id=self._parent_id(key, resolution),
        )
        resolution.created += 1
        return created

    def resolve(self, rows: Iterable[ClassifiedRow]) -> LocationResolution:
        keys = unique_location_keys(rows)
        logger.info("Extracted %s unique location keys.", len(keys))

        resolution = LocationResolution()
        for key in keys:
            try:
                location = self._reconcile(key, resolution)
            except StorageError as exc:
                resolution.failed += 1
                logger.error("Could not resolve location %s: %s", key.as_string(), exc)
                continue
            resolution.ids[key] = location.id

        logger.info(
            "Location processing complete: %s created, %s existing, %s failed.",
            resolution.created,
            resolution.reused,
            resolution.failed,
        )
        return resolution


__all__ = ["LocationResolution", "LocationResolver", "unique_location_keys"]
