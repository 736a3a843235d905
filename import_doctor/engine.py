"""Cell, row and table validation over a rule registry."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Callable

from import_doctor.fields import METADATA_KEY, TargetField, TargetShape, row_id
from import_doctor.results import (
    RowValidationMetadata,
    Severity,
    ValidationIssue,
    ValidationResult,
    ValidationState,
    build_validation_state,
)
from import_doctor.rules import ValidationContext, ValidationRuleRegistry, build_default_registry

logger = logging.getLogger(__name__)

MAX_CHUNK_SIZE = 100

ValidationProgressCallback = Callable[[float, int, int, str], Any]


def chunk_size_for(total: int) -> int:
    return max(1, min(MAX_CHUNK_SIZE, total // 10))


async def notify(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    outcome = callback(*args)
    if inspect.isawaitable(outcome):
        await outcome


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


class ValidationEngine:
    def __init__(self, registry: ValidationRuleRegistry | None = None) -> None:
        self.registry = registry if registry is not None else build_default_registry()

    def validate_cell(
        self,
        value: Any,
        field: TargetField,
        row_data: dict[str, Any],
        *,
        shape: TargetShape | None = None,
        row_index: int | None = None,
    ) -> ValidationResult:
        """Run every applicable rule against one value.

        A rule that raises does not stop the others: its fault is logged and
        reported as an error issue carrying that rule's id and type.
        """
        started = time.perf_counter()
        context = ValidationContext(row_data=row_data, shape=shape, row_index=row_index)
        result = ValidationResult()

        for rule in self.registry.get_all_rules():
            try:
                if not rule.should_apply_to_field(field):
                    continue
                rule_result = rule.validate(value, field, context)
            except Exception as exc:
                logger.exception("Validation rule %s failed on field %s", rule.id, field.name)
                rule_result = ValidationResult(rules_applied=[rule.id])
                rule_result.add_issue(
                    ValidationIssue(
                        rule_id=rule.id,
                        rule_type=rule.type,
                        severity=Severity.ERROR,
                        message=f"Validation rule failed: {exc}",
                        field_name=field.name,
                        current_value=value,
                        metadata={"exception": type(exc).__name__},
                    )
                )
            result.merge(rule_result)

        result.duration = _elapsed_ms(started)
        return result

    def validate_row_cells(
        self,
        row: dict[str, Any],
        shape: TargetShape,
        row_index: int | None = None,
    ) -> dict[str, ValidationResult]:
        return {
            field.name: self.validate_cell(row.get(field.name), field, row, shape=shape, row_index=row_index)
            for field in shape.fields
        }

    def validate_row(self, row: dict[str, Any], shape: TargetShape) -> ValidationResult:
        started = time.perf_counter()
        combined = ValidationResult()
        for cell_result in self.validate_row_cells(row, shape).values():
            combined.merge(cell_result)
        combined.duration = _elapsed_ms(started)
        return combined

    def _validate_and_attach(
        self,
        row: dict[str, Any] | None,
        shape: TargetShape,
        row_index: int,
    ) -> RowValidationMetadata | None:
        if not isinstance(row, dict):
            logger.warning("Skipping row %d: expected a mapping, got %s", row_index, type(row).__name__)
            return None
        metadata = RowValidationMetadata(
            row_id=row_id(row),
            cell_validations=self.validate_row_cells(row, shape, row_index),
        )
        row[METADATA_KEY] = metadata
        return metadata

    def validate_table(self, data: list[dict[str, Any]], shape: TargetShape) -> ValidationState:
        started = time.perf_counter()
        row_metadata = [self._validate_and_attach(row, shape, index) for index, row in enumerate(data)]
        state = build_validation_state(row_metadata)
        self._log_completion(shape, state, started)
        return state

    async def validate_table_async(
        self,
        data: list[dict[str, Any]],
        shape: TargetShape,
        on_progress: ValidationProgressCallback | None = None,
    ) -> ValidationState:
        """Same outcome as ``validate_table``, yielding to the event loop between chunks."""
        started = time.perf_counter()
        total = len(data)
        chunk_size = chunk_size_for(total)
        row_metadata: list[RowValidationMetadata | None] = []

        for start in range(0, total, chunk_size):
            stop = min(start + chunk_size, total)
            for index in range(start, stop):
                row_metadata.append(self._validate_and_attach(data[index], shape, index))
            await notify(on_progress, min(1.0, stop / total), stop, total, f"Validated {stop} of {total} rows")
            await asyncio.sleep(0)

        state = build_validation_state(row_metadata)
        await notify(on_progress, 1.0, total, total, "Validation complete")
        self._log_completion(shape, state, started)
        return state

    def _log_completion(self, shape: TargetShape, state: ValidationState, started: float) -> None:
        logger.info(
            "Validated %d rows against '%s' in %.1f ms: %d errors, %d warnings",
            state.total_rows,
            shape.name,
            _elapsed_ms(started),
            state.total_errors,
            state.total_warnings,
        )
