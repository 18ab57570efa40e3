"""Repair of mis-encoded Spanish text found in SHF CSV exports.

SHF publishes its files in a legacy single-byte encoding, but they are often
re-saved or read as something else along the way. Two kinds of damage show up:

* UTF-8 bytes read back as cp1252/latin-1, producing fragments such as ``Ã©``
  in place of ``é``.
* Accented vowels lost entirely (or replaced by U+FFFD), producing names such
  as ``Len`` or ``Mxico``.

The first kind is reversed with a fragment table, the second with a curated
list of place names matched on whole-word boundaries.
"""

from __future__ import annotations

import re
import unicodedata
from types import MappingProxyType
from typing import Iterable, Mapping

REPLACEMENT_CHAR = "\ufffd"

ACCENTED_CHARACTERS = "áéíóúÁÉÍÓÚñÑüÜ"

# Names whose accented vowel is commonly dropped. The corrupted form is
# derived by making every accented character optional.
DEFAULT_PLACE_NAMES: tuple[str, ...] = (
    "León",
    "México",
    "Querétaro",
    "Juárez",
    "Bahía",
    "Gutiérrez",
    "Culiacán",
    "García",
    "Mérida",
    "Cancún",
    "Potosí",
    "Michoacán",
    "Yucatán",
)

# Corruptions that drop more than the accented vowel.
DEFAULT_LITERAL_FIXES: tuple[tuple[str, str], ...] = (
    ("Qutaro", "Querétaro"),
    ("Gutrrez", "Gutiérrez"),
)


def _mojibake_fragments(characters: str) -> dict[str, str]:
    fragments: dict[str, str] = {}
    for char in characters:
        encoded = char.encode("utf-8")
        for codec in ("latin-1", "cp1252"):
            garbled = encoded.decode(codec, errors="replace")
            # "Á" and "Í" garble to the same cp1252 form; skip ambiguous ones
            if REPLACEMENT_CHAR in garbled:
                continue
            fragments[garbled] = char
    return fragments


def _corrupted_pattern(name: str) -> str:
    parts = []
    for char in name:
        if char in ACCENTED_CHARACTERS:
            parts.append(f"{REPLACEMENT_CHAR}?")
        else:
            parts.append(re.escape(char))
    return "".join(parts)


class TextNormalizer:
    """Best-effort repair of accented characters and known place names."""

    def __init__(
        self,
        place_names: Iterable[str] = DEFAULT_PLACE_NAMES,
        literal_fixes: Iterable[tuple[str, str]] = DEFAULT_LITERAL_FIXES,
    ) -> None:
        self._fragments: Mapping[str, str] = MappingProxyType(
            _mojibake_fragments(ACCENTED_CHARACTERS)
        )
        substitutions: list[tuple[re.Pattern[str], str]] = []
        for corrupted, replacement in literal_fixes:
            substitutions.append(
                (re.compile(rf"\b{re.escape(corrupted)}\b"), replacement)
            )
        for name in place_names:
            pattern = _corrupted_pattern(name)
            if pattern == re.escape(name):
                continue
            substitutions.append((re.compile(rf"\b{pattern}(?!\w)"), name))
        self._substitutions = tuple(substitutions)

    @property
    def fragments(self) -> Mapping[str, str]:
        return self._fragments

    def fix_mojibake(self, text: str) -> str:
        for garbled, char in self._fragments.items():
            if garbled in text:
                text = text.replace(garbled, char)
        return text

    def fix_place_names(self, text: str) -> str:
        for pattern, replacement in self._substitutions:
            text = pattern.sub(replacement, text)
        return text

    def normalize(self, text: str) -> str:
        if not text:
            return text
        repaired = self.fix_mojibake(text)
        repaired = self.fix_place_names(repaired)
        return unicodedata.normalize("NFC", repaired)

    __call__ = normalize


__all__ = ["TextNormalizer", "DEFAULT_PLACE_NAMES", "DEFAULT_LITERAL_FIXES", "REPLACEMENT_CHAR"]
