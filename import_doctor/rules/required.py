from __future__ import annotations

from datetime import date
from typing import Any

from import_doctor.coercion import is_missing
from import_doctor.fields import FieldType, TargetField
from import_doctor.results import SuggestedFix, ValidationResult, ValidationRuleType
from import_doctor.rules.base import BaseValidationRule, ValidationContext

REQUIRED_MESSAGES = {
    FieldType.EMAIL: "Email address is required for {label}",
    FieldType.PHONE: "Phone number is required for {label}",
    FieldType.URL: "URL is required for {label}",
    FieldType.DATE: "Date is required for {label}",
    FieldType.NUMBER: "Number is required for {label}",
    FieldType.CURRENCY: "Number is required for {label}",
    FieldType.ENUM: "Selection is required for {label}",
    FieldType.BOOLEAN: "Value is required for {label}",
}
DEFAULT_REQUIRED_MESSAGE = "{label} is required but is empty"


def is_empty_value(value: Any) -> bool:
    if is_missing(value):
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set)):
        return len(value) == 0
    return False


def _minimum(field: TargetField) -> Any:
    for rule in field.rules_of_type("min"):
        if rule.value is not None:
            return rule.value
    return 0


class RequiredFieldRule(BaseValidationRule):
    def __init__(self, enabled: bool = True) -> None:
        super().__init__(
            "required-field",
            ValidationRuleType.REQUIRED,
            "Fails when a required field is empty",
            enabled,
        )

    def should_apply_to_field(self, field: TargetField) -> bool:
        return self.enabled and field.required is True

    def validate(self, value: Any, field: TargetField, context: ValidationContext) -> ValidationResult:
        if not is_empty_value(value):
            return self.result()
        template = REQUIRED_MESSAGES.get(field.type, DEFAULT_REQUIRED_MESSAGE)
        issue = self.build_issue(
            field,
            value,
            template.format(label=field.label),
            fix=self.create_suggested_fix(value, field, context),
        )
        return self.result(issue)

    def create_suggested_fix(
        self,
        value: Any,
        field: TargetField,
        context: ValidationContext | None = None,
    ) -> SuggestedFix | None:
        if field.default_value is not None:
            return SuggestedFix("replace", "Use the field default", field.default_value)

        field_type = field.type
        if field_type is FieldType.EMAIL:
            return SuggestedFix("replace", "Add an email address", "user@example.com")
        if field_type is FieldType.PHONE:
            return SuggestedFix("replace", "Add a phone number", "(555) 123-4567")
        if field_type is FieldType.URL:
            return SuggestedFix("replace", "Add a URL", "https://example.com")
        if field_type is FieldType.DATE:
            return SuggestedFix("replace", "Use today's date", date.today().isoformat())
        if field_type is FieldType.NUMBER:
            return SuggestedFix("replace", "Add a number", _minimum(field))
        if field_type is FieldType.CURRENCY:
            return SuggestedFix("replace", "Add an amount", 0.0)
        if field_type is FieldType.ENUM:
            allowed = field.allowed_values()
            if allowed:
                return SuggestedFix("replace", f"Select '{allowed[0]}'", allowed[0])
            return SuggestedFix("replace", "Select an option", None)
        if field_type is FieldType.BOOLEAN:
            return SuggestedFix("replace", "Set to false", False)
        return SuggestedFix("replace", f"Enter a value for {field.label}", "")
