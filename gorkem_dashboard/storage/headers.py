"""Header normalization and canonical column mapping for Turkish sheet headers."""

from __future__ import annotations

import logging
import re
from typing import Dict, Mapping, Optional, Sequence, Tuple


logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")

# Uppercase folds run before lower(): "İ".lower() produces "i" plus a
# combining dot above, which would never match an ASCII pattern.
_UPPER_FOLDS: Tuple[Tuple[str, str], ...] = (
    ("İ", "i"),
    ("I", "i"),
    ("Ğ", "g"),
    ("Ü", "u"),
    ("Ş", "s"),
    ("Ö", "o"),
    ("Ç", "c"),
)
_LOWER_FOLDS: Tuple[Tuple[str, str], ...] = (
    ("ğ", "g"),
    ("ü", "u"),
    ("ş", "s"),
    ("ı", "i"),
    ("ö", "o"),
    ("ç", "c"),
)


def normalize_header(header: str) -> str:
    """Fold a free-text header into the lowercase ASCII-adjacent form used for matching."""

    value = header or ""
    for source, target in _UPPER_FOLDS:
        value = value.replace(source, target)
    value = value.lower()
    for source, target in _LOWER_FOLDS:
        value = value.replace(source, target)
    return _WHITESPACE.sub(" ", value).strip()


class ColumnRule:
    """Maps headers to ``key`` by substring (``contains``) or whole-header (``equals``) match."""

    def __init__(self, key: str, contains: Sequence[str] = (), equals: Sequence[str] = ()) -> None:
        self.key = key
        self.contains = tuple(normalize_header(part) for part in contains)
        self.equals = tuple(normalize_header(value) for value in equals)

    def matches(self, normalized: str) -> bool:
        return any(part in normalized for part in self.contains) or normalized in self.equals

    def __repr__(self) -> str:
        return f"ColumnRule({self.key!r})"


# Evaluated top to bottom for each header; the first match wins.
COLUMN_RULES: Tuple[ColumnRule, ...] = (
    ColumnRule("proje_adi", contains=("proje adi",), equals=("proje adı",)),
    ColumnRule("proje_kodu", contains=("proje kodu", "proje numarasi")),
    ColumnRule("proje_turu", contains=("proje turu", "proje türü")),
    ColumnRule("lokasyon", contains=("lokasyon",)),
    ColumnRule("isveren", contains=("isveren", "işveren")),
    ColumnRule("alt_yukleniciler", contains=("alt yuklenici",)),
    ColumnRule("yuklenici", contains=("yuklenici", "yüklenici")),
    ColumnRule("musavir", contains=("musavir", "müşavir")),
    ColumnRule("arsa_alani", contains=("arsa alani",)),
    ColumnRule("insaat_alani_brut", contains=("insaat alani brut",)),
    ColumnRule("insaat_alani_net", contains=("insaat alani net",)),
    ColumnRule("kat_adedi", contains=("kat adedi",)),
    ColumnRule("baslangic_tarihi", contains=("baslangic",)),
    ColumnRule("fiili_bitis_tarihi", contains=("fiili bitis",)),
    ColumnRule("bitis_tarihi", contains=("bitis",)),
    ColumnRule("devam_durumu", contains=("devam durumu",)),
    ColumnRule("yaklasik_maliyet", contains=("yaklasik maliyet",)),
    ColumnRule("kesin_teminat_yuzde", contains=("kesin teminat",)),
    ColumnRule("gecici_teminat_yuzde", contains=("gecici teminat",)),
    ColumnRule("finansman_kaynaklari", contains=("finansman",)),
    ColumnRule("gecici_kabul_durumu", contains=("gecici kabul",)),
    ColumnRule("kesin_kabul_durumu", contains=("kesin kabul",)),
    ColumnRule("as_built_durumu", contains=("as-built", "as built")),
)


def match_column_rule(header: str, rules: Sequence[ColumnRule] = COLUMN_RULES) -> Optional[str]:
    normalized = normalize_header(header)
    for rule in rules:
        if rule.matches(normalized):
            return rule.key
    return None


def build_column_mapping(
    headers: Sequence[str], rules: Sequence[ColumnRule] = COLUMN_RULES
) -> Dict[str, int]:
    """Map canonical field keys to column indexes for ``headers``.

    Headers that match no rule are left out. When two headers resolve to the
    same key, the later column replaces the earlier one.
    """

    mapping: Dict[str, int] = {}
    for index, header in enumerate(headers):
        key = match_column_rule(header, rules)
        if key is None:
            logger.debug("No column mapping for header", extra={"header": header, "index": index})
            continue
        if key in mapping:
            logger.debug(
                "Header remapped canonical key",
                extra={"key": key, "previous_index": mapping[key], "index": index},
            )
        mapping[key] = index
    return mapping


def read_field(row: Sequence[str], mapping: Mapping[str, int], key: str, default: str = "") -> str:
    index = mapping.get(key)
    if index is None or index >= len(row):
        return default
    value = row[index]
    if value is None or value == "":
        return default
    return str(value).strip()


def map_row(row: Sequence[str], mapping: Mapping[str, int]) -> Dict[str, str]:
    """Return every mapped canonical key with its cell value (empty when missing)."""

    return {key: read_field(row, mapping, key) for key in mapping}


__all__ = [
    "COLUMN_RULES",
    "ColumnRule",
    "build_column_mapping",
    "map_row",
    "match_column_rule",
    "normalize_header",
    "read_field",
]
