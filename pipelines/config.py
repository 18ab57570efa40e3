"""Immutable lookup tables and tunables for the SHF processor."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

NATIONAL_NAME = "Nacional"

# SHF category label -> residential_property_types.name
DEFAULT_PROPERTY_TYPE_LABELS: Mapping[str, str] = MappingProxyType(
    {
        "Nueva": "nueva",
        "Usada": "usada",
        "Casa sola": "casa_sola",
        "Casa en condominio - depto.": "condominio",
        "Media - Residencial": "media_residencial",
    }
)

# The CSV spells it without the accent.
DEFAULT_EXCLUDED_CATEGORIES: frozenset[str] = frozenset({"Economica - Social"})

# Tried in order; see pipelines.sources.shf.decode_csv_bytes.
DEFAULT_ENCODINGS: tuple[str, ...] = ("cp1252", "latin-1", "utf-8")

DEFAULT_BATCH_SIZE = 1000
# First year of the SHF series; storage rejects earlier observations.
FIRST_YEAR = 2005


@dataclass(frozen=True)
class ProcessorConfig:
    """Configuration describing how SHF rows are classified and persisted."""

    national_marker: str = NATIONAL_NAME
    national_name: str = NATIONAL_NAME
    metro_zone_prefix: str = "ZM "
    property_type_labels: Mapping[str, str] = field(
        default_factory=lambda: DEFAULT_PROPERTY_TYPE_LABELS
    )
    excluded_categories: frozenset[str] = DEFAULT_EXCLUDED_CATEGORIES
    encodings: tuple[str, ...] = DEFAULT_ENCODINGS
    batch_size: int = DEFAULT_BATCH_SIZE

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be a positive integer.")
        if not isinstance(self.property_type_labels, MappingProxyType):
            object.__setattr__(
                self, "property_type_labels", MappingProxyType(dict(self.property_type_labels))
            )

    def property_type_for(self, label: str) -> str | None:
        return self.property_type_labels.get(label)


DEFAULT_CONFIG = ProcessorConfig()


__all__ = [
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_CONFIG",
    "DEFAULT_ENCODINGS",
    "DEFAULT_EXCLUDED_CATEGORIES",
    "DEFAULT_PROPERTY_TYPE_LABELS",
    "FIRST_YEAR",
    "NATIONAL_NAME",
    "ProcessorConfig",
]
