"""Tiered matching of one input value against a reference dataset.

Tiers are tried strictly in order and the first hit wins:

* exact       the source column equals the input, case-sensitive (confidence 1.0)
* normalized  equal after casefolding and whitespace collapsing (``NORMALIZED_CONFIDENCE``)
* fuzzy       best ``difflib`` similarity at or above the field threshold (confidence = score)
"""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from enum import Enum
from typing import Any

from import_doctor.coercion import is_blank
from import_doctor.fields import DEFAULT_FUZZY_CONFIDENCE, DerivedField, LookupField
from import_doctor.results import json_safe

NORMALIZED_CONFIDENCE = 0.95


class MatchType(str, Enum):
    EXACT = "exact"
    NORMALIZED = "normalized"
    FUZZY = "fuzzy"
    NONE = "none"


@dataclass
class LookupConfig:
    source_column: str
    target_column: str
    fuzzy_threshold: float = DEFAULT_FUZZY_CONFIDENCE
    fuzzy_enabled: bool = True
    derived_fields: list[DerivedField] = field(default_factory=list)

    @classmethod
    def from_field(cls, lookup_field: LookupField) -> LookupConfig:
        return cls(
            source_column=lookup_field.match.on,
            target_column=lookup_field.match.get,
            fuzzy_threshold=lookup_field.smart_matching.confidence,
            fuzzy_enabled=lookup_field.smart_matching.enabled,
            derived_fields=list(lookup_field.also_get),
        )


@dataclass
class LookupResult:
    matched: bool
    confidence: float
    match_type: MatchType
    input_value: Any
    matched_value: Any = None
    derived_values: dict[str, Any] = field(default_factory=dict)
    reference_row: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "matched": self.matched,
            "confidence": self.confidence,
            "match_type": self.match_type.value,
            "input_value": json_safe(self.input_value),
            "matched_value": json_safe(self.matched_value),
            "derived_values": json_safe(self.derived_values),
        }


def normalize_text(value: Any) -> str:
    text = unicodedata.normalize("NFKC", str(value))
    return " ".join(text.casefold().split())


def similarity(left: Any, right: Any) -> float:
    a = normalize_text(left)
    b = normalize_text(right)
    if not a or not b:
        return 0.0
    return SequenceMatcher(None, a, b).ratio()


def _exact_equal(candidate: Any, value: Any) -> bool:
    if isinstance(candidate, str) != isinstance(value, str):
        return str(candidate) == str(value)
    return bool(candidate == value)


def _no_match(input_value: Any) -> LookupResult:
    return LookupResult(matched=False, confidence=0.0, match_type=MatchType.NONE, input_value=input_value)


def _matched(
    input_value: Any,
    row: dict[str, Any],
    config: LookupConfig,
    confidence: float,
    match_type: MatchType,
) -> LookupResult:
    derived = {
        derived_field.name: row[derived_field.source]
        for derived_field in config.derived_fields
        if derived_field.source in row
    }
    return LookupResult(
        matched=True,
        confidence=confidence,
        match_type=match_type,
        input_value=input_value,
        matched_value=row.get(config.target_column),
        derived_values=derived,
        reference_row=row,
    )


def perform_lookup(
    input_value: Any,
    reference_rows: list[dict[str, Any]] | None,
    config: LookupConfig,
) -> LookupResult:
    if is_blank(input_value) or not reference_rows:
        return _no_match(input_value)

    source = config.source_column
    candidates = [
        (row, row[source])
        for row in reference_rows
        if isinstance(row, dict) and source in row and not is_blank(row[source])
    ]

    for row, candidate in candidates:
        if _exact_equal(candidate, input_value):
            return _matched(input_value, row, config, 1.0, MatchType.EXACT)

    needle = normalize_text(input_value)
    for row, candidate in candidates:
        if normalize_text(candidate) == needle:
            return _matched(input_value, row, config, NORMALIZED_CONFIDENCE, MatchType.NORMALIZED)

    if not config.fuzzy_enabled or not needle:
        return _no_match(input_value)

    matcher = SequenceMatcher(None)
    matcher.set_seq2(needle)
    best_row: dict[str, Any] | None = None
    best_score = 0.0
    for row, candidate in candidates:
        matcher.set_seq1(normalize_text(candidate))
        if matcher.real_quick_ratio() <= best_score or matcher.quick_ratio() <= best_score:
            continue
        score = matcher.ratio()
        if score > best_score:
            best_row, best_score = row, score

    if best_row is not None and best_score >= config.fuzzy_threshold:
        return _matched(input_value, best_row, config, best_score, MatchType.FUZZY)
    return _no_match(input_value)
