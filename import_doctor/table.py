"""Table state for interactive editing: cell edits re-run lookups and validation for that cell only."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from import_doctor.coercion import is_blank
from import_doctor.engine import ValidationEngine, ValidationProgressCallback
from import_doctor.fields import METADATA_KEY, LookupField, TargetShape, row_id
from import_doctor.lookups import LookupErrorEntry, LookupErrorType, LookupProcessor, LookupUpdateResult
from import_doctor.results import (
    RowValidationMetadata,
    ValidationResult,
    ValidationState,
    build_validation_state,
)

logger = logging.getLogger(__name__)


@dataclass
class CellEdit:
    row: dict[str, Any]
    lookup: LookupUpdateResult | None = None
    validations: dict[str, ValidationResult] = field(default_factory=dict)


def _metadata(row: dict[str, Any]) -> RowValidationMetadata | None:
    metadata = row.get(METADATA_KEY)
    return metadata if isinstance(metadata, RowValidationMetadata) else None


class TableSession:
    def __init__(
        self,
        shape: TargetShape,
        *,
        engine: ValidationEngine | None = None,
        processor: LookupProcessor | None = None,
        rows: list[dict[str, Any]] | None = None,
    ) -> None:
        self.shape = shape
        self.engine = engine or ValidationEngine()
        self.processor = processor
        self.rows: list[dict[str, Any]] = []
        self.state = ValidationState()
        if rows is not None:
            self.set_data(rows)

    def set_data(self, rows: list[dict[str, Any]]) -> None:
        self.rows = []
        for index, row in enumerate(rows):
            copied = dict(row)
            if row_id(copied) == "unknown":
                copied["_rowId"] = f"row_{index + 1}"
            self.rows.append(copied)
        self.recompute()

    def import_json(self, text: str) -> None:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError("Invalid JSON format") from exc
        if not isinstance(data, list):
            raise ValueError("Data must be an array")
        if not all(isinstance(item, dict) for item in data):
            raise ValueError("Data must be an array of objects")
        self.set_data(data)

    def recompute(self) -> ValidationState:
        self.state = build_validation_state(_metadata(row) for row in self.rows)
        return self.state

    def find_row_index(self, target_row_id: str) -> int:
        for index, row in enumerate(self.rows):
            if row_id(row) == str(target_row_id):
                return index
        raise KeyError(f"Row '{target_row_id}' not found")

    def get_row(self, target_row_id: str) -> dict[str, Any]:
        return self.rows[self.find_row_index(target_row_id)]

    def update_cell(self, target_row_id: str, column: str, value: Any) -> dict[str, Any]:
        """Set a value and drop that cell's stale validation."""
        index = self.find_row_index(target_row_id)
        row = dict(self.rows[index])
        row[column] = value
        metadata = _metadata(row)
        if metadata is not None:
            row[METADATA_KEY] = metadata.without_cell(column)
        self.rows[index] = row
        self.recompute()
        return row

    def validate_cell(self, target_row_id: str, column: str) -> ValidationResult:
        target_field = self.shape.get_field(column)
        if target_field is None:
            raise KeyError(f"Field '{column}' is not part of shape '{self.shape.name}'")
        index = self.find_row_index(target_row_id)
        row = dict(self.rows[index])
        result = self.engine.validate_cell(row.get(column), target_field, row, shape=self.shape, row_index=index)
        self._store(index, row, column, result)
        return result

    def _store(self, index: int, row: dict[str, Any], column: str, result: ValidationResult) -> None:
        metadata = _metadata(row) or RowValidationMetadata(row_id=row_id(row))
        row[METADATA_KEY] = metadata.with_cell(column, result)
        self.rows[index] = row
        self.recompute()

    def edit_cell(self, target_row_id: str, column: str, value: Any) -> CellEdit:
        """Apply a user edit: resolve lookups first, then revalidate the touched cells."""
        target_field = self.shape.get_field(column)
        lookup: LookupUpdateResult | None = None
        touched = [column]

        if isinstance(target_field, LookupField) and self.processor is not None and not is_blank(value):
            current = self.get_row(target_row_id)
            lookup = self.processor.process_lookup_update(value, target_field, current)
            if lookup.success:
                index = self.find_row_index(target_row_id)
                adopted = dict(lookup.updated_row)
                metadata = _metadata(adopted)
                derived_names = [derived.name for derived in target_field.also_get]
                if metadata is not None:
                    for name in [column, *derived_names]:
                        metadata = metadata.without_cell(name)
                    adopted[METADATA_KEY] = metadata
                self.rows[index] = adopted
                touched.extend(name for name in derived_names if self.shape.get_field(name) is not None)
            else:
                self.update_cell(target_row_id, column, None if target_field.on_mismatch == "null" else value)
        else:
            self.update_cell(target_row_id, column, value)

        validations: dict[str, ValidationResult] = {}
        for name in touched:
            if self.shape.get_field(name) is None:
                continue
            result = self.validate_cell(target_row_id, name)
            if name == column and lookup is not None and not lookup.success:
                result.add_issue(self._lookup_failure(target_field, value, lookup, target_row_id).to_issue())
                index = self.find_row_index(target_row_id)
                self._store(index, dict(self.rows[index]), name, result)
            validations[name] = result

        if not validations:
            self.recompute()
        return CellEdit(row=self.get_row(target_row_id), lookup=lookup, validations=validations)

    def _lookup_failure(
        self,
        lookup_field: LookupField,
        value: Any,
        lookup: LookupUpdateResult,
        target_row_id: str,
    ) -> LookupErrorEntry:
        if self.processor is not None and self.processor.load_reference_rows(lookup_field) is None:
            error_type = LookupErrorType.REFERENCE_UNAVAILABLE
        else:
            error_type = LookupErrorType.NO_MATCH
        return LookupErrorEntry(
            type=error_type,
            field_name=lookup_field.name,
            input_value=value,
            message=lookup.error or "Lookup failed",
            severity="error" if lookup_field.on_mismatch == "error" else "warning",
            row_index=self.find_row_index(target_row_id),
            row_id=str(target_row_id),
        )

    def validate_all(self) -> ValidationState:
        self.state = self.engine.validate_table(self.rows, self.shape)
        return self.state

    async def validate_all_async(self, on_progress: ValidationProgressCallback | None = None) -> ValidationState:
        self.state = await self.engine.validate_table_async(self.rows, self.shape, on_progress)
        return self.state

    def clear_validation(self) -> None:
        for row in self.rows:
            row.pop(METADATA_KEY, None)
        self.state = ValidationState(total_rows=len(self.rows))
        logger.debug("Cleared validation for %d rows", len(self.rows))
