"""Sociedad Hipotecaria Federal (SHF) price-index CSV reader.

Turns the raw bytes of an SHF export into ``RawRow`` records. The file is a
semicolon-delimited table with a single header line::

    Consecutivo;Global;Estado;Municipio;Trimestre;Año;Indice
    1;Nacional;;;1;2005;100,00
"""

from __future__ import annotations

import logging
import re
from typing import Iterable

from pipelines.common import fetch_bytes
from pipelines.model import RawRow
from pipelines.text import REPLACEMENT_CHAR, TextNormalizer

DELIMITER = ";"
MIN_FIELDS = 7
FALLBACK_ENCODING = "utf-8"

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")

logger = logging.getLogger(__name__)


def decode_csv_bytes(data: bytes, encodings: Iterable[str]) -> tuple[str, str]:
    """Decode ``data`` with the first candidate encoding that yields no U+FFFD.

    When every candidate produces replacement characters the one with the
    fewest wins. Returns ``(text, encoding)``.
    """

    best: tuple[str, str] | None = None
    best_count = 0
    for encoding in encodings:
        try:
            decoded = data.decode(encoding, errors="replace")
        except LookupError:
            logger.warning("Unknown encoding %r; trying the next candidate.", encoding)
            continue
        count = decoded.count(REPLACEMENT_CHAR)
        if count == 0:
            logger.info("Decoded CSV as %s.", encoding)
            return decoded, encoding
        if best is None or count < best_count:
            best, best_count = (decoded, encoding), count

    if best is not None:
        logger.warning(
            "Using %s encoding (%s replacement characters remain).", best[1], best_count
        )
        return best

    logger.warning("No candidate encoding usable; falling back to %s.", FALLBACK_ENCODING)
    return data.decode(FALLBACK_ENCODING, errors="replace"), FALLBACK_ENCODING


def _parse_int(raw: str) -> int:
    match = _LEADING_INT.match(raw)
    if not match:
        return 0
    return int(match.group(1))


def _parse_line(columns: list[str], normalizer: TextNormalizer) -> RawRow:
    index_text = columns[6].strip() or "0"
    return RawRow(
        sequence=_parse_int(columns[0]),
        category=normalizer(columns[1].strip()),
        state=normalizer(columns[2].strip()),
        municipality=normalizer(columns[3].strip()),
        quarter=_parse_int(columns[4]),
        year=_parse_int(columns[5]),
        index_text=index_text.replace(",", ".", 1),
    )


def parse_shf_csv(text: str, normalizer: TextNormalizer | None = None) -> list[RawRow]:
    """Split SHF CSV text into ``RawRow`` records, dropping malformed lines."""

    normalizer = normalizer or TextNormalizer()
    rows: list[RawRow] = []
    dropped = 0
    # Header is always the first line.
    for line in text.split("\n")[1:]:
        line = line.strip()
        if not line:
            continue
        columns = line.split(DELIMITER)
        if len(columns) < MIN_FIELDS:
            dropped += 1
            continue
        rows.append(_parse_line(columns, normalizer))

    if dropped:
        logger.info("Dropped %s malformed CSV lines.", dropped)
    return rows


async def fetch_shf_csv(url: str) -> bytes:
    """Download an SHF export; decoding is left to the processor."""

    return await fetch_bytes(url, headers={"Accept": "text/csv, */*"})


__all__ = ["decode_csv_bytes", "parse_shf_csv", "fetch_shf_csv", "DELIMITER", "MIN_FIELDS"]
