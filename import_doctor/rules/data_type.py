from __future__ import annotations

from typing import Any

from import_doctor.coercion import TYPE_NOUNS, coerce, describe_type, is_blank
from import_doctor.fields import TargetField
from import_doctor.results import SuggestedFix, TypeConversion, ValidationResult, ValidationRuleType
from import_doctor.rules.base import BaseValidationRule, ValidationContext


def _differs(original: Any, converted: Any) -> bool:
    if type(original) is not type(converted):
        return True
    return original != converted


class DataTypeRule(BaseValidationRule):
    """Coerces a cell to its field type and fails only when coercion cannot succeed.

    Blank cells are left to the required rule.
    """

    def __init__(self, enabled: bool = True) -> None:
        super().__init__(
            "data-type",
            ValidationRuleType.TYPE,
            "Checks that a value can be read as the field's type",
            enabled,
        )

    def validate(self, value: Any, field: TargetField, context: ValidationContext) -> ValidationResult:
        if is_blank(value):
            return self.result()

        outcome = coerce(value, field.type)
        if outcome.ok:
            result = self.result()
            if _differs(value, outcome.value):
                result.type_conversion = TypeConversion(
                    original_value=value,
                    converted_value=outcome.value,
                    method=f"{field.type.value}-coercion",
                )
            return result

        actual = describe_type(value)
        message = f'{field.label} must be a valid {TYPE_NOUNS[field.type]}, got {actual}: "{value}"'
        issue = self.build_issue(
            field,
            value,
            message,
            fix=outcome.fix,
            metadata={"expected_type": field.type.value, "actual_type": actual},
        )
        return self.result(issue)

    def create_suggested_fix(
        self,
        value: Any,
        field: TargetField,
        context: ValidationContext | None = None,
    ) -> SuggestedFix | None:
        if is_blank(value):
            return None
        outcome = coerce(value, field.type)
        if outcome.ok:
            return None
        return outcome.fix
