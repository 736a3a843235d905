"""Runs reference lookups over whole imports and over single cell edits.

Bulk processing is best effort: every failed lookup becomes a
``LookupErrorEntry`` and processing carries on, unless the caller passes
``continue_on_error=False``. Input rows are never mutated; rewritten rows are
fresh dicts.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from import_doctor.coercion import is_blank
from import_doctor.engine import chunk_size_for, notify
from import_doctor.errors import LookupProcessingError, ReferenceDataNotFoundError
from import_doctor.fields import FieldType, LookupField, TargetShape, row_id
from import_doctor.matching import LookupConfig, LookupResult, MatchType, perform_lookup
from import_doctor.reference import ReferenceDataProvider
from import_doctor.results import Severity, SuggestedFix, ValidationIssue, ValidationRuleType, json_safe

logger = logging.getLogger(__name__)

LOOKUP_RULE_ID = "lookup-match"

LookupProgressCallback = Callable[[int, int], Any]


class LookupErrorType(str, Enum):
    NO_MATCH = "no_match"
    LOW_CONFIDENCE = "low_confidence"
    FUZZY_LIMIT = "fuzzy_limit"
    REFERENCE_UNAVAILABLE = "reference_unavailable"
    INVALID_ROW = "invalid_row"


@dataclass
class LookupErrorEntry:
    type: LookupErrorType
    field_name: str
    input_value: Any
    message: str
    severity: str = "error"
    row_index: int | None = None
    row_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "field_name": self.field_name,
            "input_value": json_safe(self.input_value),
            "message": self.message,
            "severity": self.severity,
            "row_index": self.row_index,
            "row_id": self.row_id,
        }

    def to_issue(self) -> ValidationIssue:
        """Express the failure as a cell issue so it shows up in the validation rollup."""
        return ValidationIssue(
            rule_id=LOOKUP_RULE_ID,
            rule_type=ValidationRuleType.LOOKUP,
            severity=Severity(self.severity),
            message=self.message,
            field_name=self.field_name,
            current_value=self.input_value,
            suggested_fixes=[
                SuggestedFix("mark_exception", "Keep the value and mark it as a known exception", self.input_value)
            ],
            metadata={"lookup_error": self.type.value},
        )


@dataclass
class LookupProcessingOptions:
    min_confidence: float = 0.0
    max_fuzzy_matches: int | None = None
    process_derived_fields: bool = True
    continue_on_error: bool = True
    on_progress: LookupProgressCallback | None = None


@dataclass
class LookupStats:
    total_rows: int = 0
    total_fields: int = 0
    exact_matches: int = 0
    normalized_matches: int = 0
    fuzzy_matches: int = 0
    failed_matches: int = 0
    success_rate: float = 1.0
    derived_columns: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_rows": self.total_rows,
            "total_fields": self.total_fields,
            "exact_matches": self.exact_matches,
            "normalized_matches": self.normalized_matches,
            "fuzzy_matches": self.fuzzy_matches,
            "failed_matches": self.failed_matches,
            "success_rate": self.success_rate,
            "derived_columns": self.derived_columns,
        }


@dataclass
class LookupPerformance:
    total_time: float = 0.0
    throughput: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"total_time": self.total_time, "throughput": self.throughput}


@dataclass
class ProcessedLookupResult:
    data: list[Any]
    errors: list[LookupErrorEntry] = field(default_factory=list)
    stats: LookupStats = field(default_factory=LookupStats)
    performance: LookupPerformance = field(default_factory=LookupPerformance)

    def to_dict(self, include_data: bool = False) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "errors": [entry.to_dict() for entry in self.errors],
            "stats": self.stats.to_dict(),
            "performance": self.performance.to_dict(),
        }
        if include_data:
            payload["data"] = json_safe(self.data)
        return payload


@dataclass
class LookupUpdateResult:
    success: bool
    updated_row: dict[str, Any]
    confidence: float | None = None
    match_type: MatchType | None = None
    error: str | None = None


@dataclass
class LookupUpdateRequest:
    row_id: str
    field_name: str
    value: Any
    field: LookupField
    row_data: dict[str, Any]


def get_lookup_fields(shape: TargetShape) -> list[LookupField]:
    return [item for item in shape.fields if item.type is FieldType.LOOKUP and isinstance(item, LookupField)]


def has_lookup_fields(shape: TargetShape) -> bool:
    return bool(get_lookup_fields(shape))


def lookup_field_stats(shape: TargetShape) -> dict[str, Any]:
    fields = get_lookup_fields(shape)
    return {
        "total_lookup_fields": len(fields),
        "total_derived_fields": sum(len(item.also_get) for item in fields),
        "lookup_fields": [{"name": item.name, "derived_field_count": len(item.also_get)} for item in fields],
    }


def _no_match_message(value: Any, lookup_field: LookupField) -> str:
    return f'No match found for "{value}" in {lookup_field.reference_file}'


def reject_async_callback(callback: Callable[..., Any] | None, alternative: str | None = None) -> None:
    if callback is not None and inspect.iscoroutinefunction(callback):
        hint = f"; use {alternative}" if alternative else ""
        raise TypeError(f"on_progress must be a plain function for synchronous processing{hint}")


def notify_sync(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    outcome = callback(*args)
    if inspect.isawaitable(outcome):
        if inspect.iscoroutine(outcome):
            outcome.close()
        raise TypeError("on_progress returned an awaitable during synchronous processing")


class _BulkRun:
    """Mutable bookkeeping for one ``process_data_with_lookups`` call."""

    def __init__(
        self,
        processor: LookupProcessor,
        rows: list[Any],
        shape: TargetShape,
        options: LookupProcessingOptions,
    ) -> None:
        self.rows = rows
        self.options = options
        self.fields = get_lookup_fields(shape)
        self.configs = {item.name: LookupConfig.from_field(item) for item in self.fields}
        self.references = {item.name: processor.load_reference_rows(item) for item in self.fields}
        self.fuzzy_counts = {item.name: 0 for item in self.fields}
        self.data: list[Any] = []
        self.errors: list[LookupErrorEntry] = []
        self.stats = LookupStats(total_rows=len(rows), total_fields=len(self.fields))
        self.derived_names: set[str] = set()
        self.attempts = 0
        self.started = time.perf_counter()

    def ranges(self) -> list[tuple[int, int]]:
        total = len(self.rows)
        size = chunk_size_for(total)
        return [(start, min(start + size, total)) for start in range(0, total, size)]

    def fail(
        self,
        error_type: LookupErrorType,
        message: str,
        *,
        row_index: int,
        row: dict[str, Any] | None = None,
        lookup_field: LookupField | None = None,
        value: Any = None,
    ) -> None:
        severity = "error"
        if lookup_field is not None:
            self.stats.failed_matches += 1
            if lookup_field.on_mismatch in ("warning", "null"):
                severity = "warning"
            if lookup_field.on_mismatch == "null" and row is not None:
                row[lookup_field.name] = None
        entry = LookupErrorEntry(
            type=error_type,
            field_name=lookup_field.name if lookup_field else "",
            input_value=value,
            message=message,
            severity=severity,
            row_index=row_index,
            row_id=row_id(row) if row is not None else None,
        )
        self.errors.append(entry)
        logger.debug("Lookup failed at row %d: %s", row_index, message)
        if not self.options.continue_on_error:
            raise LookupProcessingError(message, entry.to_dict())

    def process_row(self, index: int, row: Any) -> None:
        if not isinstance(row, dict):
            self.data.append(row)
            self.fail(LookupErrorType.INVALID_ROW, f"Row {index} is not an object", row_index=index)
            return

        updated = dict(row)
        self.data.append(updated)
        for lookup_field in self.fields:
            value = updated.get(lookup_field.name)
            if is_blank(value):
                continue
            self.attempts += 1
            self._resolve(index, updated, lookup_field, value)

    def _resolve(self, index: int, row: dict[str, Any], lookup_field: LookupField, value: Any) -> None:
        name = lookup_field.name
        reference_rows = self.references[name]
        if reference_rows is None:
            self.fail(
                LookupErrorType.REFERENCE_UNAVAILABLE,
                f"Reference data not found for {lookup_field.reference_file}",
                row_index=index, row=row, lookup_field=lookup_field, value=value,
            )
            return

        result = perform_lookup(value, reference_rows, self.configs[name])
        if not result.matched:
            self.fail(
                LookupErrorType.NO_MATCH,
                _no_match_message(value, lookup_field),
                row_index=index, row=row, lookup_field=lookup_field, value=value,
            )
            return
        if result.confidence < self.options.min_confidence:
            self.fail(
                LookupErrorType.LOW_CONFIDENCE,
                f'Match for "{value}" has confidence {result.confidence:.2f}, '
                f"below the minimum {self.options.min_confidence:.2f}",
                row_index=index, row=row, lookup_field=lookup_field, value=value,
            )
            return
        if result.match_type is MatchType.FUZZY:
            limit = self.options.max_fuzzy_matches
            if limit is not None and self.fuzzy_counts[name] >= limit:
                self.fail(
                    LookupErrorType.FUZZY_LIMIT,
                    f'Fuzzy match for "{value}" skipped: limit of {limit} fuzzy matches reached for {name}',
                    row_index=index, row=row, lookup_field=lookup_field, value=value,
                )
                return
            self.fuzzy_counts[name] += 1
            self.stats.fuzzy_matches += 1
        elif result.match_type is MatchType.NORMALIZED:
            self.stats.normalized_matches += 1
        else:
            self.stats.exact_matches += 1

        row[name] = result.matched_value
        if self.options.process_derived_fields:
            row.update(result.derived_values)
            self.derived_names.update(result.derived_values)

    def progress(self, processed: int) -> None:
        notify_sync(self.options.on_progress, processed, len(self.rows))

    def finish(self) -> ProcessedLookupResult:
        successes = self.stats.exact_matches + self.stats.normalized_matches + self.stats.fuzzy_matches
        self.stats.success_rate = successes / self.attempts if self.attempts else 1.0
        self.stats.derived_columns = len(self.derived_names)
        elapsed = time.perf_counter() - self.started
        performance = LookupPerformance(
            total_time=elapsed * 1000,
            throughput=self.attempts / elapsed if elapsed > 0 else 0.0,
        )
        logger.info(
            "Lookups over %d rows and %d fields: %d exact, %d normalized, %d fuzzy, %d failed",
            self.stats.total_rows,
            self.stats.total_fields,
            self.stats.exact_matches,
            self.stats.normalized_matches,
            self.stats.fuzzy_matches,
            self.stats.failed_matches,
        )
        return ProcessedLookupResult(data=self.data, errors=self.errors, stats=self.stats, performance=performance)


class LookupProcessor:
    def __init__(self, provider: ReferenceDataProvider) -> None:
        self.provider = provider

    def load_reference_rows(self, lookup_field: LookupField) -> list[dict[str, Any]] | None:
        rows = self.provider.get_reference_data_rows(lookup_field.reference_file)
        return rows or None

    def process_data_with_lookups(
        self,
        rows: list[dict[str, Any]],
        shape: TargetShape,
        options: LookupProcessingOptions | None = None,
    ) -> ProcessedLookupResult:
        options = options or LookupProcessingOptions()
        reject_async_callback(options.on_progress, "process_data_with_lookups_async")
        run = _BulkRun(self, rows, shape, options)
        if not run.fields:
            run.data = [dict(row) if isinstance(row, dict) else row for row in rows]
            return run.finish()
        for start, stop in run.ranges():
            for index in range(start, stop):
                run.process_row(index, rows[index])
            run.progress(stop)
        return run.finish()

    async def process_data_with_lookups_async(
        self,
        rows: list[dict[str, Any]],
        shape: TargetShape,
        options: LookupProcessingOptions | None = None,
    ) -> ProcessedLookupResult:
        run = _BulkRun(self, rows, shape, options or LookupProcessingOptions())
        if not run.fields:
            run.data = [dict(row) if isinstance(row, dict) else row for row in rows]
            return run.finish()
        for start, stop in run.ranges():
            for index in range(start, stop):
                run.process_row(index, rows[index])
            await notify(run.options.on_progress, stop, len(rows))
            await asyncio.sleep(0)
        return run.finish()

    def process_single_lookup(self, value: Any, lookup_field: LookupField, row_id: str | None = None) -> LookupResult:
        reference_rows = self.load_reference_rows(lookup_field)
        if reference_rows is None:
            logger.warning(
                "Reference data %s unavailable for row %s", lookup_field.reference_file, row_id or "unknown"
            )
            raise ReferenceDataNotFoundError(lookup_field.reference_file)
        return perform_lookup(value, reference_rows, LookupConfig.from_field(lookup_field))

    def process_lookup_update(
        self,
        value: Any,
        lookup_field: LookupField,
        row_data: dict[str, Any],
    ) -> LookupUpdateResult:
        """Resolve one edited cell.

        On success the returned ``updated_row`` is a new dict; on failure it
        is ``row_data`` itself, untouched.
        """
        try:
            result = self.process_single_lookup(value, lookup_field, row_id(row_data))
        except ReferenceDataNotFoundError as exc:
            return LookupUpdateResult(success=False, updated_row=row_data, error=str(exc))

        if not result.matched:
            return LookupUpdateResult(
                success=False,
                updated_row=row_data,
                confidence=0.0,
                match_type=MatchType.NONE,
                error=_no_match_message(value, lookup_field),
            )

        updated = dict(row_data)
        updated[lookup_field.name] = result.matched_value
        updated.update(result.derived_values)
        return LookupUpdateResult(
            success=True,
            updated_row=updated,
            confidence=result.confidence,
            match_type=result.match_type,
        )

    def batch_process_lookups(
        self,
        updates: list[LookupUpdateRequest],
        on_progress: LookupProgressCallback | None = None,
    ) -> list[LookupUpdateResult]:
        reject_async_callback(on_progress)
        results: list[LookupUpdateResult] = []
        for processed, request in enumerate(updates, start=1):
            results.append(self.process_lookup_update(request.value, request.field, request.row_data))
            notify_sync(on_progress, processed, len(updates))
        return results

    def get_lookup_field_stats(self, shape: TargetShape) -> dict[str, Any]:
        return lookup_field_stats(shape)
