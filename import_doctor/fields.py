"""Field and target-shape model shared by the validation and lookup engines.

Shapes usually arrive as JSON from a schema store, so every type here can be
built with ``from_dict``. Both the camelCase keys the store emits
(``displayName``, ``referenceFile``, ``alsoGet`` ...) and snake_case keys are
accepted. ``to_dict`` always writes snake_case.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from import_doctor.errors import SchemaError

ROW_ID_KEYS = ("id", "_rowId")
METADATA_KEY = "_validationMetadata"
RESERVED_KEYS = frozenset({*ROW_ID_KEYS, METADATA_KEY})

DEFAULT_FUZZY_CONFIDENCE = 0.8
MISMATCH_POLICIES = ("error", "warning", "null")


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    DATE = "date"
    EMAIL = "email"
    PHONE = "phone"
    URL = "url"
    CURRENCY = "currency"
    ENUM = "enum"
    LOOKUP = "lookup"
    OBJECT = "object"


def _pick(payload: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return default


@dataclass
class FieldValidationRule:
    type: str
    value: Any = None
    message: str | None = None
    severity: str = "error"
    reference_file: str | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> FieldValidationRule:
        return cls(
            type=str(payload["type"]),
            value=payload.get("value"),
            message=payload.get("message"),
            severity=str(payload.get("severity") or "error"),
            reference_file=_pick(payload, "referenceFile", "reference_file"),
        )

    def to_dict(self) -> dict[str, Any]:
        payload = {"type": self.type, "value": self.value, "severity": self.severity}
        if self.message:
            payload["message"] = self.message
        if self.reference_file:
            payload["reference_file"] = self.reference_file
        return payload


@dataclass
class TransformationRule:
    type: str
    parameters: dict[str, Any] = field(default_factory=dict)
    order: int = 0

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> TransformationRule:
        return cls(
            type=str(payload["type"]),
            parameters=dict(payload.get("parameters") or {}),
            order=int(payload.get("order") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "parameters": dict(self.parameters), "order": self.order}


@dataclass
class EnumOption:
    value: str
    label: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "label": self.label or self.value}


@dataclass
class LookupMatch:
    on: str = ""
    get: str = ""
    show: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = {"on": self.on, "get": self.get}
        if self.show:
            payload["show"] = self.show
        return payload


@dataclass
class DerivedField:
    name: str
    source: str
    type: FieldType = FieldType.STRING

    def __post_init__(self) -> None:
        self.type = FieldType(self.type)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "source": self.source, "type": self.type.value}


@dataclass
class SmartMatching:
    enabled: bool = True
    confidence: float = DEFAULT_FUZZY_CONFIDENCE

    def to_dict(self) -> dict[str, Any]:
        return {"enabled": self.enabled, "confidence": self.confidence}


@dataclass
class TargetField:
    name: str
    type: FieldType = FieldType.STRING
    id: str = ""
    display_name: str | None = None
    required: bool = False
    validation_rules: list[FieldValidationRule] = field(default_factory=list)
    transformation_rules: list[TransformationRule] = field(default_factory=list)
    description: str | None = None
    default_value: Any = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.type = FieldType(self.type)
        if not self.id:
            self.id = self.name

    @property
    def label(self) -> str:
        return self.display_name or self.name

    def rules_of_type(self, rule_type: str) -> list[FieldValidationRule]:
        return [rule for rule in self.validation_rules if rule.type == rule_type]

    def allowed_values(self) -> list[Any]:
        for rule in self.rules_of_type("enum"):
            if isinstance(rule.value, (list, tuple)):
                return list(rule.value)
        return []

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "type": self.type.value,
            "required": self.required,
            "validation_rules": [rule.to_dict() for rule in self.validation_rules],
            "transformation_rules": [rule.to_dict() for rule in self.transformation_rules],
        }
        if self.description:
            payload["description"] = self.description
        if self.default_value is not None:
            payload["default_value"] = self.default_value
        if self.metadata:
            payload["metadata"] = dict(self.metadata)
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> TargetField:
        if not isinstance(payload, dict):
            raise SchemaError(f"Field definition must be an object, got {type(payload).__name__}")
        if not payload.get("name"):
            raise SchemaError("Field definition is missing 'name'")
        try:
            field_type = FieldType(payload.get("type") or "string")
        except ValueError as exc:
            raise SchemaError(f"Unknown field type '{payload.get('type')}' for field '{payload['name']}'") from exc

        kwargs = _base_field_kwargs(payload, field_type)
        if field_type is FieldType.ENUM:
            return EnumField(options=_parse_options(payload.get("options")), **kwargs)
        if field_type is FieldType.LOOKUP:
            return LookupField(**kwargs, **_lookup_kwargs(payload))
        return TargetField(**kwargs)


@dataclass
class EnumField(TargetField):
    options: list[EnumOption] = field(default_factory=list)

    def __post_init__(self) -> None:
        super().__post_init__()
        self.type = FieldType.ENUM

    def allowed_values(self) -> list[Any]:
        if self.options:
            return [option.value for option in self.options]
        return super().allowed_values()

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["options"] = [option.to_dict() for option in self.options]
        return payload


@dataclass
class LookupField(TargetField):
    reference_file: str = ""
    match: LookupMatch = field(default_factory=LookupMatch)
    also_get: list[DerivedField] = field(default_factory=list)
    smart_matching: SmartMatching = field(default_factory=SmartMatching)
    on_mismatch: str = "error"

    def __post_init__(self) -> None:
        super().__post_init__()
        self.type = FieldType.LOOKUP
        if self.on_mismatch not in MISMATCH_POLICIES:
            raise SchemaError(
                f"on_mismatch must be one of {', '.join(MISMATCH_POLICIES)}, got '{self.on_mismatch}'"
            )

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload.update(
            {
                "reference_file": self.reference_file,
                "match": self.match.to_dict(),
                "also_get": [derived.to_dict() for derived in self.also_get],
                "smart_matching": self.smart_matching.to_dict(),
                "on_mismatch": self.on_mismatch,
            }
        )
        return payload


def _base_field_kwargs(payload: dict[str, Any], field_type: FieldType) -> dict[str, Any]:
    validation = _pick(payload, "validation", "validationRules", "validation_rules", default=None) or []
    transformation = _pick(payload, "transformation", "transformationRules", "transformation_rules", default=None) or []
    return {
        "id": str(payload.get("id") or payload["name"]),
        "name": str(payload["name"]),
        "type": field_type,
        "display_name": _pick(payload, "displayName", "display_name"),
        "required": bool(payload.get("required", False)),
        "validation_rules": [FieldValidationRule.from_dict(item) for item in validation],
        "transformation_rules": [TransformationRule.from_dict(item) for item in transformation],
        "description": payload.get("description"),
        "default_value": _pick(payload, "defaultValue", "default_value"),
        "metadata": dict(payload.get("metadata") or {}),
    }


def _parse_options(raw: Any) -> list[EnumOption]:
    options: list[EnumOption] = []
    for item in raw or []:
        if isinstance(item, dict):
            options.append(EnumOption(value=str(item["value"]), label=item.get("label")))
        else:
            options.append(EnumOption(value=str(item)))
    return options


def _lookup_kwargs(payload: dict[str, Any]) -> dict[str, Any]:
    reference_file = _pick(payload, "referenceFile", "reference_file")
    if not reference_file:
        raise SchemaError(f"Lookup field '{payload['name']}' is missing a reference file")
    raw_match = payload.get("match") or {}
    if not raw_match.get("on") or not raw_match.get("get"):
        raise SchemaError(f"Lookup field '{payload['name']}' needs match.on and match.get")
    raw_smart = _pick(payload, "smartMatching", "smart_matching", default=None) or {}
    also_get = _pick(payload, "alsoGet", "also_get", default=None) or []
    return {
        "reference_file": str(reference_file),
        "match": LookupMatch(on=str(raw_match["on"]), get=str(raw_match["get"]), show=raw_match.get("show")),
        "also_get": [
            DerivedField(name=str(item["name"]), source=str(item["source"]), type=item.get("type") or "string")
            for item in also_get
        ],
        "smart_matching": SmartMatching(
            enabled=bool(raw_smart.get("enabled", True)),
            confidence=float(raw_smart.get("confidence", DEFAULT_FUZZY_CONFIDENCE)),
        ),
        "on_mismatch": str(_pick(payload, "onMismatch", "on_mismatch", default="error")),
    }


@dataclass
class TargetShape:
    name: str
    fields: list[TargetField] = field(default_factory=list)
    id: str = ""
    version: str = "1.0.0"
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.id:
            self.id = self.name

    def get_field(self, name: str) -> TargetField | None:
        for item in self.fields:
            if item.name == name:
                return item
        return None

    def get_field_by_id(self, field_id: str) -> TargetField | None:
        for item in self.fields:
            if item.id == field_id:
                return item
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "fields": [item.to_dict() for item in self.fields],
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> TargetShape:
        if not isinstance(payload, dict):
            raise SchemaError("Target shape must be a JSON object")
        raw_fields = payload.get("fields")
        if not isinstance(raw_fields, list):
            raise SchemaError("Target shape must contain a 'fields' array")
        return cls(
            id=str(payload.get("id") or ""),
            name=str(payload.get("name") or payload.get("id") or "untitled"),
            version=str(payload.get("version") or "1.0.0"),
            description=payload.get("description"),
            fields=[TargetField.from_dict(item) for item in raw_fields],
            metadata=dict(payload.get("metadata") or {}),
        )


def row_id(row: dict[str, Any]) -> str:
    for key in ROW_ID_KEYS:
        value = row.get(key)
        if value is not None and value != "":
            return str(value)
    return "unknown"


def user_columns(row: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in row.items() if key not in RESERVED_KEYS}
