"""Permissive-parse-then-strict-check coercion, one function per field type.

``COERCERS`` is the single dispatch table used by the type rule. It must cover
every ``FieldType``; the module refuses to import otherwise.
"""

from __future__ import annotations

import json
import math
import numbers
import re
import warnings
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Callable
from urllib.parse import urlsplit

import pandas as pd

from import_doctor.fields import FieldType
from import_doctor.results import SuggestedFix

DATE_FORMAT_PATTERNS = [
    ("%Y-%m-%d", re.compile(r"^\d{4}-\d{2}-\d{2}$")),
    ("%Y/%m/%d", re.compile(r"^\d{4}/\d{2}/\d{2}$")),
    ("%m/%d/%Y", re.compile(r"^\d{1,2}/\d{1,2}/\d{4}$")),
    ("%d/%m/%Y", re.compile(r"^\d{1,2}/\d{1,2}/\d{4}$")),
    ("%d-%m-%Y", re.compile(r"^\d{1,2}-\d{1,2}-\d{4}$")),
    ("%d.%m.%Y", re.compile(r"^\d{1,2}\.\d{1,2}\.\d{4}$")),
    ("%B %d %Y", re.compile(r"^[A-Za-z]+\s+\d{1,2}\s+\d{4}$")),
    ("%b %d %Y", re.compile(r"^[A-Za-z]{3}\s+\d{1,2}\s+\d{4}$")),
    ("%d %B %Y", re.compile(r"^\d{1,2}\s+[A-Za-z]+\s+\d{4}$")),
    ("%d %b %Y", re.compile(r"^\d{1,2}\s+[A-Za-z]{3}\s+\d{4}$")),
    ("%B %d, %Y", re.compile(r"^[A-Za-z]+\s+\d{1,2},\s+\d{4}$")),
    ("%b %d, %Y", re.compile(r"^[A-Za-z]{3}\s+\d{1,2},\s+\d{4}$")),
]
EXCEL_SERIAL_RANGE = (25000, 60000)

BOOLEAN_TRUE = {"true", "yes", "y", "1", "on"}
BOOLEAN_FALSE = {"false", "no", "n", "0", "off"}
BOOLEAN_FIX_TRUE = {"approved", "approve", "t", "checked"}
BOOLEAN_FIX_FALSE = {"rejected", "reject", "f", "unchecked"}

CURRENCY_SYMBOLS = "$£€¥₹"
NUMERIC_LITERAL_RE = re.compile(
    r"(?P<sign>[+-]?)\s*[$£€¥₹]?\s*(?P<inner_sign>[+-]?)"
    r"(?P<digits>\d{1,3}(?:,\d{3})+(?:\.\d*)?|\d+(?:\.\d*)?|\.\d+)"
    r"(?P<exponent>[eE][+-]?\d+)?"
)
EMAIL_RE = re.compile(r"^[A-Z0-9._%+\-]+@[A-Z0-9.\-]+\.[A-Z]{2,}$", re.IGNORECASE)
PHONE_SEPARATORS_RE = re.compile(r"[\s\-()+.]")
PHONE_DIGITS_RE = re.compile(r"^\d{7,15}$")
WHITESPACE_RE = re.compile(r"\s+")
SENTINEL_NULLS = {"", "na", "n/a", "none", "null", "nil", "nan", "-"}

TYPE_NOUNS = {
    FieldType.STRING: "text value",
    FieldType.NUMBER: "number",
    FieldType.INTEGER: "whole number",
    FieldType.BOOLEAN: "true/false value",
    FieldType.DATE: "date",
    FieldType.EMAIL: "email address",
    FieldType.PHONE: "phone number",
    FieldType.URL: "URL",
    FieldType.CURRENCY: "currency amount",
    FieldType.ENUM: "option",
    FieldType.LOOKUP: "lookup value",
    FieldType.OBJECT: "object",
}


@dataclass
class Coercion:
    ok: bool
    value: Any = None
    fix: SuggestedFix | None = None


def accepted(value: Any) -> Coercion:
    return Coercion(ok=True, value=value)


def rejected(fix: SuggestedFix | None = None) -> Coercion:
    return Coercion(ok=False, fix=fix)


def is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (list, tuple, set, dict)):
        return False
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def is_blank(value: Any) -> bool:
    if is_missing(value):
        return True
    return isinstance(value, str) and not value.strip()


def describe_type(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, numbers.Integral):
        return "integer"
    if isinstance(value, numbers.Real):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (datetime, date)):
        return "date"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, (list, tuple, set)):
        return "array"
    return type(value).__name__


def _is_real_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def parse_numeric_literal(text: str) -> int | float | None:
    """Strict parse: optional sign and currency symbol, grouped thousands, decimals, exponent."""
    match = NUMERIC_LITERAL_RE.fullmatch(text.strip())
    if not match:
        return None
    if match.group("sign") and match.group("inner_sign"):
        return None
    negative = "-" in (match.group("sign") + match.group("inner_sign"))
    digits = match.group("digits").replace(",", "")
    exponent = match.group("exponent") or ""
    if "." in digits or exponent:
        number: int | float = float(digits + exponent)
        if not math.isfinite(number):
            return None
    else:
        try:
            number = int(digits)
        except ValueError:
            # past the int string-conversion digit limit
            number = float(digits)
            if not math.isfinite(number):
                return None
    return -number if negative else number


def maybe_parse_number(value: Any) -> float | None:
    """Lenient parse used for suggested fixes only.

    Understands accounting parentheses, European decimal commas and leading
    or trailing ISO currency codes.
    """
    if isinstance(value, bool):
        return None
    if _is_real_number(value):
        number = float(value)
        return number if math.isfinite(number) else None
    if is_missing(value):
        return None
    text = str(value).strip()
    if text.lower() in SENTINEL_NULLS:
        return None

    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1].strip()

    text = text.replace(" ", "")
    text = re.sub(r"^[A-Z]{3}", "", text)
    text = re.sub(r"(USD|EUR|INR|GBP|JPY|CAD|AUD|AED|CHF)$", "", text, flags=re.I)
    for symbol in CURRENCY_SYMBOLS:
        text = text.replace(symbol, "")

    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif text.count(",") == 1 and text.count(".") == 0:
        left, right = text.split(",", 1)
        if len(right) == 2:
            text = f"{left}.{right}"
        else:
            text = text.replace(",", "")
    else:
        text = text.replace(",", "")

    if not re.fullmatch(r"[+-]?\d+(?:\.\d+)?", text):
        return None
    number = float(text)
    if not math.isfinite(number):
        return None
    return -number if negative else number


def round_half_up(number: float) -> int:
    return int(math.floor(number + 0.5))


def _number_fix(value: Any) -> SuggestedFix | None:
    number = maybe_parse_number(value)
    if number is None:
        return None
    if number.is_integer():
        number = int(number)
    return SuggestedFix(action="convert", description=f"Convert to number {number}", new_value=number)


def coerce_number(value: Any) -> Coercion:
    if _is_real_number(value):
        if isinstance(value, numbers.Integral):
            return accepted(int(value))
        number = float(value)
        return accepted(number) if math.isfinite(number) else rejected()
    if isinstance(value, str):
        number = parse_numeric_literal(value)
        if number is not None:
            return accepted(number)
    return rejected(_number_fix(value))


def coerce_integer(value: Any) -> Coercion:
    outcome = coerce_number(value)
    if outcome.ok:
        number = outcome.value
        if isinstance(number, int):
            return accepted(number)
        if float(number).is_integer():
            return accepted(int(number))
        rounded = round_half_up(number)
        return rejected(
            SuggestedFix(action="convert", description=f"Round to nearest whole number ({rounded})", new_value=rounded)
        )
    lenient = maybe_parse_number(value)
    if lenient is None:
        return rejected()
    rounded = round_half_up(lenient)
    return rejected(SuggestedFix(action="convert", description=f"Convert to whole number {rounded}", new_value=rounded))


def coerce_boolean(value: Any) -> Coercion:
    if isinstance(value, bool):
        return accepted(value)
    if _is_real_number(value):
        if value == 1:
            return accepted(True)
        if value == 0:
            return accepted(False)
        return rejected()
    if isinstance(value, str):
        token = value.strip().lower()
        if token in BOOLEAN_TRUE:
            return accepted(True)
        if token in BOOLEAN_FALSE:
            return accepted(False)
        if token in BOOLEAN_FIX_TRUE:
            return rejected(SuggestedFix(action="convert", description="Convert to true", new_value=True))
        if token in BOOLEAN_FIX_FALSE:
            return rejected(SuggestedFix(action="convert", description="Convert to false", new_value=False))
    return rejected()


def _date_or_datetime(parsed: datetime) -> date | datetime:
    if parsed.tzinfo is None and parsed.time() == time(0):
        return parsed.date()
    return parsed


def maybe_parse_date(text: str) -> date | datetime | None:
    text = text.strip()
    if not text or text.lower() in SENTINEL_NULLS:
        return None
    for fmt, pattern in DATE_FORMAT_PATTERNS:
        if not pattern.fullmatch(text):
            continue
        try:
            return _date_or_datetime(datetime.strptime(text, fmt))
        except ValueError:
            continue
    if re.fullmatch(r"[+-]?\d+(?:\.\d+)?", text):
        return None
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        parsed = pd.to_datetime(text, errors="coerce")
    if pd.isna(parsed) or not isinstance(parsed, pd.Timestamp):
        return None
    return _date_or_datetime(parsed.to_pydatetime())


def coerce_date(value: Any) -> Coercion:
    if isinstance(value, pd.Timestamp):
        return accepted(_date_or_datetime(value.to_pydatetime()))
    if isinstance(value, (datetime, date)):
        return accepted(value)
    if _is_real_number(value):
        low, high = EXCEL_SERIAL_RANGE
        if low <= float(value) <= high:
            parsed = pd.to_datetime(float(value), unit="D", origin="1899-12-30")
            return accepted(_date_or_datetime(parsed.to_pydatetime()))
        return rejected()
    if isinstance(value, str):
        parsed = maybe_parse_date(value)
        if parsed is not None:
            return accepted(parsed)
    return rejected()


def coerce_email(value: Any) -> Coercion:
    if not isinstance(value, str):
        return rejected()
    candidate = value.strip().lower()
    if EMAIL_RE.fullmatch(candidate):
        return accepted(candidate)
    cleaned = WHITESPACE_RE.sub("", candidate)
    if cleaned.startswith("mailto:"):
        cleaned = cleaned[len("mailto:"):]
    cleaned = cleaned.rstrip(".,;:")
    if cleaned != candidate and EMAIL_RE.fullmatch(cleaned):
        return rejected(SuggestedFix(action="format", description=f"Use {cleaned}", new_value=cleaned))
    return rejected()


def coerce_phone(value: Any) -> Coercion:
    if isinstance(value, bool):
        return rejected()
    if isinstance(value, numbers.Integral):
        value = str(int(value))
    if not isinstance(value, str):
        return rejected()
    text = value.strip()
    if PHONE_DIGITS_RE.fullmatch(PHONE_SEPARATORS_RE.sub("", text)):
        return accepted(text)
    digits = re.sub(r"\D", "", text)
    if digits != text and PHONE_DIGITS_RE.fullmatch(digits):
        return rejected(SuggestedFix(action="format", description=f"Keep digits only: {digits}", new_value=digits))
    return rejected()


def _valid_url(text: str) -> bool:
    if not text or WHITESPACE_RE.search(text):
        return False
    try:
        parts = urlsplit(text)
    except ValueError:
        return False
    return bool(parts.scheme) and bool(parts.netloc)


def _with_scheme(text: str) -> str:
    if "://" not in text and "." in text:
        return "https://" + text
    return text


def coerce_url(value: Any) -> Coercion:
    if not isinstance(value, str):
        return rejected()
    candidate = _with_scheme(value.strip())
    if _valid_url(candidate):
        return accepted(candidate)
    cleaned = _with_scheme(WHITESPACE_RE.sub("", value))
    if cleaned != candidate and _valid_url(cleaned):
        return rejected(SuggestedFix(action="format", description=f"Use {cleaned}", new_value=cleaned))
    return rejected()


def coerce_string(value: Any) -> Coercion:
    if isinstance(value, str):
        return accepted(value)
    if isinstance(value, (dict, list, tuple, set)):
        return rejected()
    if isinstance(value, (datetime, date)):
        return accepted(value.isoformat())
    return accepted(str(value))


def coerce_enum(value: Any) -> Coercion:
    if isinstance(value, (dict, list, tuple, set)):
        return rejected()
    if _is_real_number(value) and float(value).is_integer():
        return accepted(str(int(value)))
    return accepted(value if isinstance(value, str) else str(value))


def coerce_lookup(value: Any) -> Coercion:
    return accepted(value)


def coerce_object(value: Any) -> Coercion:
    if isinstance(value, (dict, list)):
        return accepted(value)
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return rejected()
        if isinstance(parsed, (dict, list)):
            return accepted(parsed)
    return rejected()


COERCERS: dict[FieldType, Callable[[Any], Coercion]] = {
    FieldType.STRING: coerce_string,
    FieldType.NUMBER: coerce_number,
    FieldType.INTEGER: coerce_integer,
    FieldType.BOOLEAN: coerce_boolean,
    FieldType.DATE: coerce_date,
    FieldType.EMAIL: coerce_email,
    FieldType.PHONE: coerce_phone,
    FieldType.URL: coerce_url,
    FieldType.CURRENCY: coerce_number,
    FieldType.ENUM: coerce_enum,
    FieldType.LOOKUP: coerce_lookup,
    FieldType.OBJECT: coerce_object,
}

_uncovered = [field_type.value for field_type in FieldType if field_type not in COERCERS]
if _uncovered:
    raise RuntimeError(f"No coercer registered for field types: {', '.join(_uncovered)}")


def coerce(value: Any, field_type: FieldType) -> Coercion:
    return COERCERS[field_type](value)
