from import_doctor.rules.allowed_values import EnumRule
from import_doctor.rules.base import BaseValidationRule, ValidationContext, ValidationRuleRegistry
from import_doctor.rules.constraints import PatternRule, RangeRule
from import_doctor.rules.data_type import DataTypeRule
from import_doctor.rules.required import RequiredFieldRule


def build_default_registry() -> ValidationRuleRegistry:
    registry = ValidationRuleRegistry()
    registry.register_rule(RequiredFieldRule())
    registry.register_rule(DataTypeRule())
    registry.register_rule(EnumRule())
    registry.register_rule(RangeRule())
    registry.register_rule(PatternRule())
    return registry


__all__ = [
    "BaseValidationRule",
    "DataTypeRule",
    "EnumRule",
    "PatternRule",
    "RangeRule",
    "RequiredFieldRule",
    "ValidationContext",
    "ValidationRuleRegistry",
    "build_default_registry",
]
