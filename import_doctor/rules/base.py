from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from import_doctor.fields import TargetField, TargetShape
from import_doctor.results import (
    Severity,
    SuggestedFix,
    ValidationIssue,
    ValidationResult,
    ValidationRuleType,
)


@dataclass
class ValidationContext:
    row_data: dict[str, Any]
    shape: TargetShape | None = None
    row_index: int | None = None


class BaseValidationRule(ABC):
    """A stateless check applied to one cell.

    Subclasses narrow ``should_apply_to_field`` when they only make sense for
    some fields, and override ``create_suggested_fix`` when a safe fix exists.
    """

    def __init__(
        self,
        id: str,
        type: ValidationRuleType,
        description: str,
        enabled: bool = True,
    ) -> None:
        self.id = id
        self.type = ValidationRuleType(type)
        self.description = description
        self.enabled = enabled

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, enabled={self.enabled})"

    @abstractmethod
    def validate(self, value: Any, field: TargetField, context: ValidationContext) -> ValidationResult:
        raise NotImplementedError

    def should_apply_to_field(self, field: TargetField) -> bool:
        return self.enabled

    def create_suggested_fix(
        self,
        value: Any,
        field: TargetField,
        context: ValidationContext | None = None,
    ) -> SuggestedFix | None:
        return None

    def build_issue(
        self,
        field: TargetField,
        value: Any,
        message: str,
        *,
        severity: Severity = Severity.ERROR,
        fix: SuggestedFix | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ValidationIssue:
        return ValidationIssue(
            rule_id=self.id,
            rule_type=self.type,
            severity=severity,
            message=message,
            field_name=field.name,
            current_value=value,
            suggested_fixes=[fix] if fix else [],
            metadata=metadata or {},
        )

    def result(self, *issues: ValidationIssue) -> ValidationResult:
        result = ValidationResult(rules_applied=[self.id])
        for issue in issues:
            result.add_issue(issue)
        return result


class ValidationRuleRegistry:
    def __init__(self) -> None:
        self._rules: dict[str, BaseValidationRule] = {}
        self._by_type: dict[ValidationRuleType, list[str]] = {}

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._rules

    def register_rule(self, rule: BaseValidationRule) -> None:
        previous = self._rules.get(rule.id)
        if previous is not None:
            self._by_type[previous.type].remove(rule.id)
        self._rules[rule.id] = rule
        self._by_type.setdefault(rule.type, []).append(rule.id)

    def unregister_rule(self, rule_id: str) -> bool:
        rule = self._rules.pop(rule_id, None)
        if rule is None:
            return False
        self._by_type[rule.type].remove(rule_id)
        return True

    def get_rule(self, rule_id: str) -> BaseValidationRule | None:
        return self._rules.get(rule_id)

    def get_rules_by_type(self, rule_type: ValidationRuleType | str) -> list[BaseValidationRule]:
        ids = self._by_type.get(ValidationRuleType(rule_type), [])
        return [self._rules[rule_id] for rule_id in ids]

    def get_rules_for_field(self, field: TargetField) -> list[BaseValidationRule]:
        return [rule for rule in self._rules.values() if rule.should_apply_to_field(field)]

    def get_all_rules(self) -> list[BaseValidationRule]:
        return list(self._rules.values())

    def clear(self) -> None:
        self._rules.clear()
        self._by_type.clear()
