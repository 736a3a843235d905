"""Applies a field's transformation rules to raw cell values before lookups and validation."""

from __future__ import annotations

import re
from typing import Any, Callable

from import_doctor.fields import METADATA_KEY, TargetShape, TransformationRule


def _regex_flags(parameters: dict[str, Any]) -> int:
    flags = 0
    if parameters.get("ignore_case") or parameters.get("ignoreCase") or "i" in str(parameters.get("flags", "")):
        flags |= re.IGNORECASE
    return flags


def _replace(text: str, parameters: dict[str, Any]) -> str:
    pattern = parameters.get("pattern", parameters.get("search"))
    if pattern is None:
        raise ValueError("replace transformation needs a 'pattern' or 'search' parameter")
    replacement = str(parameters.get("replacement", parameters.get("replace", "")))
    if parameters.get("regex", True):
        return re.sub(str(pattern), replacement, text, flags=_regex_flags(parameters))
    return text.replace(str(pattern), replacement)


def _extract(text: str, parameters: dict[str, Any]) -> str:
    pattern = parameters.get("pattern")
    if pattern is None:
        raise ValueError("extract transformation needs a 'pattern' parameter")
    match = re.search(str(pattern), text, flags=_regex_flags(parameters))
    if match is None:
        return text
    return match.group(int(parameters.get("group", 0)))


TRANSFORMERS: dict[str, Callable[[str, dict[str, Any]], str]] = {
    "trim": lambda text, _: text.strip(),
    "uppercase": lambda text, _: text.upper(),
    "lowercase": lambda text, _: text.lower(),
    "replace": _replace,
    "extract": _extract,
}


def apply_transformations(value: Any, rules: list[TransformationRule]) -> Any:
    """Run rules in ``order``; only text values are transformed."""
    if not isinstance(value, str):
        return value
    for rule in sorted(rules, key=lambda item: item.order):
        transformer = TRANSFORMERS.get(rule.type)
        if transformer is None:
            raise ValueError(f"Unknown transformation '{rule.type}'")
        value = transformer(value, rule.parameters)
    return value


def transform_rows(rows: list[dict[str, Any]], shape: TargetShape) -> list[dict[str, Any]]:
    """Return copies of ``rows`` with every field's transformations applied."""
    transformed: list[dict[str, Any]] = []
    active = [item for item in shape.fields if item.transformation_rules]
    for row in rows:
        if not isinstance(row, dict):
            transformed.append(row)
            continue
        updated = {key: value for key, value in row.items() if key != METADATA_KEY}
        for item in active:
            if item.name in updated:
                updated[item.name] = apply_transformations(updated[item.name], item.transformation_rules)
        transformed.append(updated)
    return transformed
