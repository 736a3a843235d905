"""Schema helpers that derive fields and options from lookup configuration.

Every function returns a new ``TargetShape`` or field; nothing here mutates
its arguments or persists anything.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from import_doctor.coercion import is_blank
from import_doctor.errors import ReferenceColumnError, SchemaError
from import_doctor.fields import FieldValidationRule, LookupField, TargetField, TargetShape
from import_doctor.reference import ReferenceDataProvider

logger = logging.getLogger(__name__)

LOOKUP_OPTIONS_RULE = "lookup_enum"
LOOKUP_SOURCE_PREFIX = "lookup:"


def derived_source_tag(lookup_field_id: str) -> str:
    return f"{LOOKUP_SOURCE_PREFIX}{lookup_field_id}"


def is_derived_from(item: TargetField, lookup_field_id: str) -> bool:
    return item.metadata.get("source") == derived_source_tag(lookup_field_id)


def _require_lookup(shape: TargetShape, field_id: str) -> tuple[int, LookupField]:
    for index, item in enumerate(shape.fields):
        if item.id == field_id:
            if not isinstance(item, LookupField):
                raise SchemaError(f"Field '{field_id}' is not a lookup field")
            return index, item
    raise SchemaError(f"Field with ID '{field_id}' not found")


def build_lookup_options(
    lookup_field: LookupField,
    provider: ReferenceDataProvider,
) -> FieldValidationRule | None:
    """Distinct values of the ``match.on`` column, as a ``lookup_enum`` rule.

    Returns None when the reference data is not available yet.
    """
    rows = provider.get_reference_data_rows(lookup_field.reference_file)
    if not rows:
        return None
    column = lookup_field.match.on
    if not any(isinstance(row, dict) and column in row for row in rows):
        raise ReferenceColumnError(lookup_field.reference_file, column)

    values: list[str] = []
    seen: set[str] = set()
    for row in rows:
        value = row.get(column) if isinstance(row, dict) else None
        if is_blank(value):
            continue
        text = str(value).strip()
        if text not in seen:
            seen.add(text)
            values.append(text)
    return FieldValidationRule(
        type=LOOKUP_OPTIONS_RULE,
        value=values,
        message=f"Value must match an entry in {lookup_field.reference_file}",
        reference_file=lookup_field.reference_file,
    )


def with_lookup_options(lookup_field: LookupField, provider: ReferenceDataProvider) -> LookupField:
    rule = build_lookup_options(lookup_field, provider)
    if rule is None:
        logger.info("Reference data %s not available; options left unchanged", lookup_field.reference_file)
        return lookup_field
    kept = [item for item in lookup_field.validation_rules if item.type != LOOKUP_OPTIONS_RULE]
    return replace(lookup_field, validation_rules=[*kept, rule])


def refresh_lookup_validation(
    shape: TargetShape,
    provider: ReferenceDataProvider,
    field_id: str | None = None,
) -> TargetShape:
    if field_id is not None:
        _require_lookup(shape, field_id)
    fields = [
        with_lookup_options(item, provider)
        if isinstance(item, LookupField) and (field_id is None or item.id == field_id)
        else item
        for item in shape.fields
    ]
    return replace(shape, fields=fields)


def build_derived_fields(lookup_field: LookupField) -> list[TargetField]:
    return [
        TargetField(
            id=f"{lookup_field.id}__{derived.name}",
            name=derived.name,
            type=derived.type,
            display_name=derived.name.replace("_", " ").title(),
            description=f"Derived from {lookup_field.reference_file} column '{derived.source}'",
            metadata={
                "source": derived_source_tag(lookup_field.id),
                "derived_from": derived.source,
                "is_derived": True,
            },
        )
        for derived in lookup_field.also_get
    ]


def update_derived_fields(shape: TargetShape, lookup_field_id: str) -> TargetShape:
    """Replace the derived fields of one lookup, placing them right after it."""
    _, lookup_field = _require_lookup(shape, lookup_field_id)
    remaining = [item for item in shape.fields if not is_derived_from(item, lookup_field_id)]
    derived = build_derived_fields(lookup_field)

    taken = {item.name for item in remaining}
    for item in derived:
        if item.name in taken:
            raise SchemaError(f"Derived field '{item.name}' collides with an existing field")

    position = next(index for index, item in enumerate(remaining) if item.id == lookup_field_id)
    fields = remaining[: position + 1] + derived + remaining[position + 1 :]
    return replace(shape, fields=fields)


def add_lookup_field(
    shape: TargetShape,
    lookup_field: LookupField,
    provider: ReferenceDataProvider,
) -> TargetShape:
    if shape.get_field(lookup_field.name) is not None or shape.get_field_by_id(lookup_field.id) is not None:
        raise SchemaError(f"Field '{lookup_field.name}' already exists in {shape.name}")
    prepared = with_lookup_options(lookup_field, provider)
    return update_derived_fields(replace(shape, fields=[*shape.fields, prepared]), prepared.id)


def update_lookup_field(
    shape: TargetShape,
    field_id: str,
    updates: dict[str, Any],
    provider: ReferenceDataProvider,
) -> TargetShape:
    index, current = _require_lookup(shape, field_id)
    payload = current.to_dict()
    payload.update(updates)
    payload["id"] = current.id
    if payload.get("type") != "lookup":
        raise SchemaError(f"Field '{field_id}' must stay a lookup field")

    updated = TargetField.from_dict(payload)
    if updated.reference_file != current.reference_file or updated.match != current.match:
        updated = with_lookup_options(updated, provider)

    fields = list(shape.fields)
    fields[index] = updated
    return update_derived_fields(replace(shape, fields=fields), field_id)


def remove_lookup_field(shape: TargetShape, field_id: str) -> TargetShape:
    _require_lookup(shape, field_id)
    fields = [item for item in shape.fields if item.id != field_id and not is_derived_from(item, field_id)]
    return replace(shape, fields=fields)
