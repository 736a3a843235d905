"""Result vocabulary produced by the validation engine.

Row and table rollups are never stored as independent counters:
``RowValidationMetadata`` derives its flags from ``cell_validations`` and
``build_validation_state`` recomputes the table rollup from row metadata.
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable

from import_doctor.contracts import VALIDATION_VERSION, utc_now_iso

TOP_ERROR_TYPES_LIMIT = 5
PROBLEMATIC_FIELDS_LIMIT = 10
FIX_ACTIONS = ("replace", "convert", "format", "add_option", "mark_exception")


class ValidationRuleType(str, Enum):
    REQUIRED = "required"
    TYPE = "type"
    ENUM = "enum"
    LOOKUP = "lookup"
    FORMAT = "format"
    RANGE = "range"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class RowStatus(str, Enum):
    VALID = "valid"
    ERRORS = "errors"
    WARNINGS = "warnings"
    NOT_VALIDATED = "not_validated"


def json_safe(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return None if math.isnan(value) or math.isinf(value) else value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(key): json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [json_safe(item) for item in value]
    if hasattr(value, "item"):
        return json_safe(value.item())
    return str(value)


@dataclass
class SuggestedFix:
    action: str
    description: str
    new_value: Any = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.action not in FIX_ACTIONS:
            raise ValueError(f"Unknown fix action '{self.action}'")

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "action": self.action,
            "description": self.description,
            "new_value": json_safe(self.new_value),
        }
        if self.metadata:
            payload["metadata"] = json_safe(self.metadata)
        return payload


@dataclass
class ValidationIssue:
    rule_id: str
    rule_type: ValidationRuleType
    severity: Severity
    message: str
    field_name: str
    current_value: Any = None
    suggested_fixes: list[SuggestedFix] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.rule_type = ValidationRuleType(self.rule_type)
        self.severity = Severity(self.severity)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_type": self.rule_type.value,
            "severity": self.severity.value,
            "message": self.message,
            "field_name": self.field_name,
            "current_value": json_safe(self.current_value),
            "suggested_fixes": [fix.to_dict() for fix in self.suggested_fixes],
            "metadata": json_safe(self.metadata),
        }


@dataclass
class TypeConversion:
    original_value: Any
    converted_value: Any
    method: str
    performed: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "performed": self.performed,
            "original_value": json_safe(self.original_value),
            "converted_value": json_safe(self.converted_value),
            "method": self.method,
        }


@dataclass
class ValidationResult:
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    validated_at: str = field(default_factory=utc_now_iso)
    duration: float = 0.0
    rules_applied: list[str] = field(default_factory=list)
    type_conversion: TypeConversion | None = None

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add_issue(self, issue: ValidationIssue) -> None:
        if issue.severity is Severity.ERROR:
            self.errors.append(issue)
        else:
            self.warnings.append(issue)

    def merge(self, other: ValidationResult) -> None:
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        for rule_id in other.rules_applied:
            if rule_id not in self.rules_applied:
                self.rules_applied.append(rule_id)
        if other.type_conversion is not None and self.type_conversion is None:
            self.type_conversion = other.type_conversion

    def to_dict(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "validated_at": self.validated_at,
            "duration": self.duration,
            "rules_applied": list(self.rules_applied),
            "validation_version": VALIDATION_VERSION,
        }
        if self.type_conversion is not None:
            metadata["type_conversion"] = self.type_conversion.to_dict()
        return {
            "is_valid": self.is_valid,
            "errors": [issue.to_dict() for issue in self.errors],
            "warnings": [issue.to_dict() for issue in self.warnings],
            "metadata": metadata,
        }


@dataclass
class RowValidationMetadata:
    row_id: str
    cell_validations: dict[str, ValidationResult] = field(default_factory=dict)
    last_validated: str = field(default_factory=utc_now_iso)

    @property
    def error_count(self) -> int:
        return sum(len(result.errors) for result in self.cell_validations.values())

    @property
    def warning_count(self) -> int:
        return sum(len(result.warnings) for result in self.cell_validations.values())

    @property
    def has_errors(self) -> bool:
        return self.error_count > 0

    @property
    def has_warnings(self) -> bool:
        return self.warning_count > 0

    @property
    def status(self) -> RowStatus:
        if self.has_errors:
            return RowStatus.ERRORS
        if self.has_warnings:
            return RowStatus.WARNINGS
        return RowStatus.VALID

    def with_cell(self, field_name: str, result: ValidationResult) -> RowValidationMetadata:
        cells = dict(self.cell_validations)
        cells[field_name] = result
        return RowValidationMetadata(row_id=self.row_id, cell_validations=cells)

    def without_cell(self, field_name: str) -> RowValidationMetadata:
        cells = {name: result for name, result in self.cell_validations.items() if name != field_name}
        return RowValidationMetadata(row_id=self.row_id, cell_validations=cells)

    def to_dict(self) -> dict[str, Any]:
        return {
            "row_id": self.row_id,
            "status": self.status.value,
            "has_errors": self.has_errors,
            "has_warnings": self.has_warnings,
            "error_count": self.error_count,
            "warning_count": self.warning_count,
            "last_validated": self.last_validated,
            "cell_validations": {name: result.to_dict() for name, result in self.cell_validations.items()},
        }


def _empty_type_counts() -> dict[str, int]:
    return {rule_type.value: 0 for rule_type in ValidationRuleType}


@dataclass
class ValidationSummary:
    score: float
    valid_row_percentage: float
    top_error_types: list[dict[str, Any]] = field(default_factory=list)
    problematic_fields: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "valid_row_percentage": self.valid_row_percentage,
            "top_error_types": [dict(item) for item in self.top_error_types],
            "problematic_fields": [dict(item) for item in self.problematic_fields],
        }


@dataclass
class ValidationState:
    is_validating: bool = False
    progress: float = 0.0
    total_rows: int = 0
    validated_rows: int = 0
    total_errors: int = 0
    total_warnings: int = 0
    errors_by_type: dict[str, int] = field(default_factory=_empty_type_counts)
    errors_by_field: dict[str, int] = field(default_factory=dict)
    warnings_by_type: dict[str, int] = field(default_factory=_empty_type_counts)
    warnings_by_field: dict[str, int] = field(default_factory=dict)
    last_validated: str | None = None
    summary: ValidationSummary | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_validating": self.is_validating,
            "progress": self.progress,
            "total_rows": self.total_rows,
            "validated_rows": self.validated_rows,
            "total_errors": self.total_errors,
            "total_warnings": self.total_warnings,
            "errors_by_type": dict(self.errors_by_type),
            "errors_by_field": dict(self.errors_by_field),
            "warnings_by_type": dict(self.warnings_by_type),
            "warnings_by_field": dict(self.warnings_by_field),
            "last_validated": self.last_validated,
            "summary": self.summary.to_dict() if self.summary else None,
        }


def build_summary(state: ValidationState, valid_rows: int) -> ValidationSummary:
    """Derive the summary block from the counters already on ``state``.

    An empty table scores 1.0: there is nothing wrong with zero rows.
    """
    if state.total_rows:
        score = valid_rows / state.total_rows
    else:
        score = 1.0

    ranked_types = sorted(
        ((name, count) for name, count in state.errors_by_type.items() if count > 0),
        key=lambda item: item[1],
        reverse=True,
    )
    top_error_types = [
        {
            "type": name,
            "count": count,
            "percentage": count / state.total_errors * 100 if state.total_errors else 0.0,
        }
        for name, count in ranked_types[:TOP_ERROR_TYPES_LIMIT]
    ]

    field_names = list(state.errors_by_field)
    field_names.extend(name for name in state.warnings_by_field if name not in state.errors_by_field)
    ranked_fields = sorted(
        field_names,
        key=lambda name: state.errors_by_field.get(name, 0) * 2 + state.warnings_by_field.get(name, 0),
        reverse=True,
    )
    problematic_fields = [
        {
            "field_name": name,
            "error_count": state.errors_by_field.get(name, 0),
            "warning_count": state.warnings_by_field.get(name, 0),
        }
        for name in ranked_fields[:PROBLEMATIC_FIELDS_LIMIT]
    ]

    return ValidationSummary(
        score=score,
        valid_row_percentage=score * 100,
        top_error_types=top_error_types,
        problematic_fields=problematic_fields,
    )


def build_validation_state(
    row_metadata: Iterable[RowValidationMetadata | None],
    *,
    is_validating: bool = False,
) -> ValidationState:
    """Recompute the table rollup from per-row metadata.

    ``None`` entries stand for rows that have not been validated; they count
    towards ``total_rows`` but never towards the valid rows.
    """
    state = ValidationState(is_validating=is_validating)
    errors_by_type: Counter[str] = Counter()
    warnings_by_type: Counter[str] = Counter()
    errors_by_field: Counter[str] = Counter()
    warnings_by_field: Counter[str] = Counter()
    valid_rows = 0

    for metadata in row_metadata:
        state.total_rows += 1
        if metadata is None:
            continue
        state.validated_rows += 1
        if metadata.status is RowStatus.VALID:
            valid_rows += 1
        for field_name, result in metadata.cell_validations.items():
            for issue in result.errors:
                errors_by_type[issue.rule_type.value] += 1
                errors_by_field[field_name] += 1
            for issue in result.warnings:
                warnings_by_type[issue.rule_type.value] += 1
                warnings_by_field[field_name] += 1

    state.total_errors = sum(errors_by_field.values())
    state.total_warnings = sum(warnings_by_field.values())
    state.errors_by_type.update(errors_by_type)
    state.warnings_by_type.update(warnings_by_type)
    state.errors_by_field = dict(errors_by_field)
    state.warnings_by_field = dict(warnings_by_field)
    state.progress = state.validated_rows / state.total_rows if state.total_rows else 1.0
    state.last_validated = utc_now_iso()
    state.summary = build_summary(state, valid_rows)
    return state
