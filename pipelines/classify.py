"""Classification of SHF rows into the residential location hierarchy."""

from __future__ import annotations

import logging
from typing import Iterable

from pipelines.config import DEFAULT_CONFIG, ProcessorConfig
from pipelines.model import ClassifiedRow, LocationKey, RawRow

logger = logging.getLogger(__name__)


class RowClassifier:
    """Derives location keys and property-type codes from ``RawRow`` records.

    Rules are applied in priority order:

    1. national marker -> national location
    2. metro-zone prefix -> metro zone named after the label
    3. state without municipality -> state
    4. state and municipality -> municipality within that state
    5. property-type label -> national location tagged with the type code

    Rows in an excluded category, or matching no rule, are discarded.
    """

    def __init__(self, config: ProcessorConfig = DEFAULT_CONFIG) -> None:
        self.config = config

    def is_excluded(self, row: RawRow) -> bool:
        return row.category in self.config.excluded_categories

    def location_key(self, row: RawRow) -> LocationKey | None:
        config = self.config
        category = row.category
        state = row.state.strip()
        municipality = row.municipality.strip()

        if category == config.national_marker:
            return LocationKey(name=config.national_name, type="national")
        if category.startswith(config.metro_zone_prefix):
            return LocationKey(name=category, type="metro_zone")
        if state and not municipality:
            return LocationKey(name=state, type="state")
        if state and municipality:
            return LocationKey(name=municipality, type="municipality", state=state)
        if config.property_type_for(category) is not None:
            return LocationKey(name=config.national_name, type="national")
        return None

    def property_type(self, row: RawRow, key: LocationKey) -> str | None:
        # Only national rows reached through a type label carry a tag.
        if key.type != "national" or row.category == self.config.national_marker:
            return None
        return self.config.property_type_for(row.category)

    def classify(self, row: RawRow) -> ClassifiedRow | None:
        if self.is_excluded(row):
            return None
        key = self.location_key(row)
        if key is None:
            return None
        return ClassifiedRow(row=row, key=key, property_type=self.property_type(row, key))

    def classify_all(self, rows: Iterable[RawRow]) -> list[ClassifiedRow]:
        classified: list[ClassifiedRow] = []
        discarded = 0
        for row in rows:
            result = self.classify(row)
            if result is None:
                discarded += 1
                continue
            classified.append(result)
        logger.info(
            "Classified %s residential rows (%s discarded).", len(classified), discarded
        )
        return classified


__all__ = ["RowClassifier"]
