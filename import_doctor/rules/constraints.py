from __future__ import annotations

import re
from typing import Any

from import_doctor.coercion import coerce_number, is_blank
from import_doctor.fields import FieldType, FieldValidationRule, TargetField
from import_doctor.results import Severity, SuggestedFix, ValidationResult, ValidationRuleType
from import_doctor.rules.base import BaseValidationRule, ValidationContext

NUMERIC_TYPES = {FieldType.NUMBER, FieldType.INTEGER, FieldType.CURRENCY}


def _severity(rule: FieldValidationRule) -> Severity:
    return Severity.ERROR if rule.severity == "error" else Severity.WARNING


def _measure(value: Any, field: TargetField) -> float | None:
    """Number for numeric fields, length for text; None when not measurable."""
    if field.type in NUMERIC_TYPES:
        outcome = coerce_number(value)
        return float(outcome.value) if outcome.ok else None
    if isinstance(value, str):
        return float(len(value.strip()))
    return None


class RangeRule(BaseValidationRule):
    """Enforces declarative ``min``/``max`` rules.

    Numeric fields compare the value; other fields compare the text length.
    """

    def __init__(self, enabled: bool = True) -> None:
        super().__init__(
            "value-range",
            ValidationRuleType.RANGE,
            "Checks min/max bounds",
            enabled,
        )

    def should_apply_to_field(self, field: TargetField) -> bool:
        return self.enabled and bool(field.rules_of_type("min") or field.rules_of_type("max"))

    def validate(self, value: Any, field: TargetField, context: ValidationContext) -> ValidationResult:
        if is_blank(value):
            return self.result()
        measured = _measure(value, field)
        if measured is None:
            return self.result()

        numeric = field.type in NUMERIC_TYPES
        unit = "" if numeric else " characters"
        issues = []
        for rule in field.rules_of_type("min"):
            bound = float(rule.value)
            if measured < bound:
                message = rule.message or f"{field.label} must be at least {rule.value}{unit}"
                fix = SuggestedFix("replace", f"Use the minimum {rule.value}", rule.value) if numeric else None
                issues.append(self.build_issue(field, value, message, severity=_severity(rule), fix=fix))
        for rule in field.rules_of_type("max"):
            bound = float(rule.value)
            if measured > bound:
                message = rule.message or f"{field.label} must be at most {rule.value}{unit}"
                fix = SuggestedFix("replace", f"Use the maximum {rule.value}", rule.value) if numeric else None
                issues.append(self.build_issue(field, value, message, severity=_severity(rule), fix=fix))
        return self.result(*issues)


class PatternRule(BaseValidationRule):
    def __init__(self, enabled: bool = True) -> None:
        super().__init__(
            "pattern",
            ValidationRuleType.FORMAT,
            "Checks values against declared regular expressions",
            enabled,
        )

    def should_apply_to_field(self, field: TargetField) -> bool:
        return self.enabled and bool(field.rules_of_type("pattern"))

    def validate(self, value: Any, field: TargetField, context: ValidationContext) -> ValidationResult:
        if is_blank(value):
            return self.result()
        text = str(value)
        issues = []
        for rule in field.rules_of_type("pattern"):
            if re.search(str(rule.value), text) is None:
                message = rule.message or f"{field.label} does not match the expected format"
                issues.append(
                    self.build_issue(
                        field, value, message, severity=_severity(rule), metadata={"pattern": str(rule.value)}
                    )
                )
        return self.result(*issues)
