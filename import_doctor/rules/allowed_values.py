from __future__ import annotations

import difflib
from typing import Any

from import_doctor.coercion import is_blank
from import_doctor.fields import FieldType, TargetField
from import_doctor.results import Severity, SuggestedFix, ValidationResult, ValidationRuleType
from import_doctor.rules.base import BaseValidationRule, ValidationContext

CLOSE_MATCH_CUTOFF = 0.6


def _severity_for(field: TargetField) -> Severity:
    for rule in field.rules_of_type("enum"):
        if rule.severity == "warning" or rule.severity == "info":
            return Severity.WARNING
    return Severity.ERROR


def _message_for(field: TargetField) -> str | None:
    for rule in field.rules_of_type("enum"):
        if rule.message:
            return rule.message
    return None


class EnumRule(BaseValidationRule):
    def __init__(self, enabled: bool = True) -> None:
        super().__init__(
            "enum-values",
            ValidationRuleType.ENUM,
            "Checks that a value is one of the field's allowed values",
            enabled,
        )

    def should_apply_to_field(self, field: TargetField) -> bool:
        if not self.enabled or field.type is FieldType.LOOKUP:
            return False
        return bool(field.allowed_values())

    def validate(self, value: Any, field: TargetField, context: ValidationContext) -> ValidationResult:
        if is_blank(value):
            return self.result()
        allowed = [str(item) for item in field.allowed_values()]
        text = str(value).strip()
        if text in allowed:
            return self.result()

        message = _message_for(field) or f'{field.label} must be one of {", ".join(allowed)}, got "{value}"'
        issue = self.build_issue(
            field,
            value,
            message,
            severity=_severity_for(field),
            fix=self.create_suggested_fix(value, field, context),
            metadata={"allowed_values": allowed},
        )
        return self.result(issue)

    def create_suggested_fix(
        self,
        value: Any,
        field: TargetField,
        context: ValidationContext | None = None,
    ) -> SuggestedFix | None:
        allowed = [str(item) for item in field.allowed_values()]
        text = str(value).strip()
        for option in allowed:
            if option.casefold() == text.casefold():
                return SuggestedFix("replace", f"Use '{option}'", option)
        close = difflib.get_close_matches(text, allowed, n=1, cutoff=CLOSE_MATCH_CUTOFF)
        if close:
            return SuggestedFix("replace", f"Did you mean '{close[0]}'?", close[0])
        return SuggestedFix("add_option", f"Add '{text}' as an allowed value", text)
