"""Import pipeline: transformations, then lookups, then validation of the final values."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from import_doctor.engine import ValidationEngine, ValidationProgressCallback
from import_doctor.errors import ImportDoctorError
from import_doctor.fields import METADATA_KEY, TargetShape
from import_doctor.lookups import (
    LookupErrorEntry,
    LookupProcessingOptions,
    LookupProcessor,
    ProcessedLookupResult,
    has_lookup_fields,
)
from import_doctor.reference import ReferenceDataProvider
from import_doctor.results import (
    RowValidationMetadata,
    ValidationResult,
    ValidationState,
    build_validation_state,
    json_safe,
)
from import_doctor.transforms import transform_rows

logger = logging.getLogger(__name__)


@dataclass
class ImportRun:
    rows: list[Any]
    validation: ValidationState
    lookup: ProcessedLookupResult | None = None

    @property
    def has_errors(self) -> bool:
        return self.validation.total_errors > 0

    @property
    def lookup_failures(self) -> int:
        return len(self.lookup.errors) if self.lookup else 0

    def row_payloads(self, include_metadata: bool = False) -> list[Any]:
        payloads = []
        for row in self.rows:
            if not isinstance(row, dict):
                payloads.append(row)
                continue
            payload = {key: json_safe(value) for key, value in row.items() if key != METADATA_KEY}
            metadata = row.get(METADATA_KEY)
            if include_metadata and isinstance(metadata, RowValidationMetadata):
                payload[METADATA_KEY] = metadata.to_dict()
            payloads.append(payload)
        return payloads


def _row_metadata(rows: list[Any]) -> list[RowValidationMetadata | None]:
    return [
        row.get(METADATA_KEY) if isinstance(row, dict) and isinstance(row.get(METADATA_KEY), RowValidationMetadata) else None
        for row in rows
    ]


def attach_lookup_issues(rows: list[Any], entries: list[LookupErrorEntry]) -> ValidationState:
    """Fold bulk lookup failures into the validated rows and recompute the rollup."""
    for entry in entries:
        if entry.row_index is None or not entry.field_name:
            continue
        row = rows[entry.row_index]
        if not isinstance(row, dict):
            continue
        metadata = row.get(METADATA_KEY)
        if not isinstance(metadata, RowValidationMetadata):
            continue
        cell = ValidationResult()
        existing = metadata.cell_validations.get(entry.field_name)
        if existing is not None:
            cell.merge(existing)
            cell.duration = existing.duration
        cell.add_issue(entry.to_issue())
        row[METADATA_KEY] = metadata.with_cell(entry.field_name, cell)
    return build_validation_state(_row_metadata(rows))


def _prepare(
    rows: list[dict[str, Any]],
    shape: TargetShape,
    provider: ReferenceDataProvider | None,
) -> tuple[list[Any], LookupProcessor | None]:
    transformed = transform_rows(rows, shape)
    if not has_lookup_fields(shape):
        return transformed, None
    if provider is None:
        raise ImportDoctorError(f"Shape '{shape.name}' has lookup fields but no reference data was provided")
    return transformed, LookupProcessor(provider)


def run_import(
    rows: list[dict[str, Any]],
    shape: TargetShape,
    *,
    provider: ReferenceDataProvider | None = None,
    engine: ValidationEngine | None = None,
    options: LookupProcessingOptions | None = None,
) -> ImportRun:
    transformed, processor = _prepare(rows, shape, provider)
    lookup = None
    if processor is not None:
        lookup = processor.process_data_with_lookups(transformed, shape, options)
        transformed = lookup.data

    engine = engine or ValidationEngine()
    state = engine.validate_table(transformed, shape)
    if lookup is not None and lookup.errors:
        state = attach_lookup_issues(transformed, lookup.errors)
    logger.info("Import of %d rows finished with %d errors", len(transformed), state.total_errors)
    return ImportRun(rows=transformed, validation=state, lookup=lookup)


async def run_import_async(
    rows: list[dict[str, Any]],
    shape: TargetShape,
    *,
    provider: ReferenceDataProvider | None = None,
    engine: ValidationEngine | None = None,
    options: LookupProcessingOptions | None = None,
    on_progress: ValidationProgressCallback | None = None,
) -> ImportRun:
    transformed, processor = _prepare(rows, shape, provider)
    lookup = None
    if processor is not None:
        lookup = await processor.process_data_with_lookups_async(transformed, shape, options)
        transformed = lookup.data

    engine = engine or ValidationEngine()
    state = await engine.validate_table_async(transformed, shape, on_progress)
    if lookup is not None and lookup.errors:
        state = attach_lookup_issues(transformed, lookup.errors)
    return ImportRun(rows=transformed, validation=state, lookup=lookup)
