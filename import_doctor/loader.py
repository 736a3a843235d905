"""
loader.py: file loader for import-doctor

Supports: .csv .tsv .txt .xlsx .xls .xlsm .ods .json .jsonl

Public API:
    result = load_file("path/to/file.csv")
    rows   = result["rows"]

Result dict keys:
    dataframe         pandas DataFrame, every cell read as text
    rows              list of dicts, missing cells mapped to None
    detected_format   "csv", "xlsx", "json", etc.
    detected_encoding encoding name for text files; None for workbooks
    encoding_info     full dict: detected, confidence, is_utf8
    delimiter         delimiter char for text files; None otherwise
    sheet_name        active sheet name for workbooks; None otherwise
    sheet_names       all available sheet names for workbooks; None otherwise
    warnings          list of warning strings
"""

from __future__ import annotations

import csv
import importlib.util
import io
import json
import logging
from collections import Counter
from pathlib import Path
from typing import Any

import chardet
import pandas as pd

logger = logging.getLogger(__name__)

TEXT_FORMATS = {".csv", ".tsv", ".txt"}
EXCEL_FORMATS = {".xlsx", ".xls", ".xlsm"}
ODS_FORMATS = {".ods"}
JSON_FORMATS = {".json"}
JSONL_FORMATS = {".jsonl"}
ALL_FORMATS = TEXT_FORMATS | EXCEL_FORMATS | ODS_FORMATS | JSON_FORMATS | JSONL_FORMATS


def _detect_encoding_info(raw: bytes) -> dict[str, Any]:
    result = chardet.detect(raw)
    detected = result.get("encoding") or "unknown"
    confidence = round(result.get("confidence") or 0.0, 2)
    return {
        "detected": detected,
        "confidence": confidence,
        "is_utf8": detected.upper().replace("-", "") in ("UTF8", "ASCII"),
    }


def _read_text_safely(raw: bytes, preferred_encoding: str) -> str:
    """Decode line by line: UTF-8, then the detected encoding, then latin-1.

    Embedded null bytes are dropped so the CSV parser does not choke.
    """
    decoded_lines: list[str] = []
    for raw_line in raw.split(b"\n"):
        decoded: str | None = None
        for enc in ("utf-8", preferred_encoding, "latin-1"):
            if not enc or enc == "unknown":
                continue
            try:
                decoded = raw_line.decode(enc)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
        decoded_lines.append(decoded.replace("\x00", ""))
    return "\n".join(decoded_lines)


def _detect_delimiter(text: str) -> str:
    sample_lines = [line for line in text.splitlines() if line.strip()][:50]
    sample = "\n".join(sample_lines[:25])

    if sample:
        try:
            return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
        except csv.Error:
            pass

    best_delim = ","
    best_score = float("-inf")
    for delim in (",", ";", "\t", "|"):
        rows = [
            row
            for row in csv.reader(io.StringIO("\n".join(sample_lines)), delimiter=delim)
            if any(cell.strip() for cell in row)
        ]
        if len(rows) < 2:
            continue
        widths = Counter(len(row) for row in rows)
        mode_width, mode_count = widths.most_common(1)[0]
        score = mode_width * 2.0 + (mode_count / len(rows)) * mode_width
        if mode_width == 1:
            score -= 10.0
        if score > best_score:
            best_score = score
            best_delim = delim
    return best_delim


def _result(df: pd.DataFrame, detected_format: str, **extra: Any) -> dict[str, Any]:
    payload = {
        "dataframe": df,
        "rows": extra.pop("rows") if "rows" in extra else dataframe_to_rows(df),
        "detected_format": detected_format,
        "detected_encoding": None,
        "encoding_info": None,
        "delimiter": None,
        "sheet_name": None,
        "sheet_names": None,
        "warnings": [],
    }
    payload.update(extra)
    return payload


def _decode(path: Path) -> tuple[str, dict[str, Any]]:
    raw = path.read_bytes()
    enc_info = _detect_encoding_info(raw)
    enc = enc_info["detected"] if enc_info["detected"] != "unknown" else "utf-8"
    return _read_text_safely(raw, enc), enc_info


def _load_text(path: Path, suffix: str) -> dict[str, Any]:
    text, enc_info = _decode(path)
    delimiter = "\t" if suffix == ".tsv" else _detect_delimiter(text)
    sep = r"\|" if delimiter == "|" else delimiter
    try:
        df = pd.read_csv(
            io.StringIO(text),
            dtype=str,
            keep_default_na=False,
            na_values=[""],
            on_bad_lines="skip",
            sep=sep,
            engine="python",
        )
    except Exception as exc:
        raise ValueError(f"Could not parse {suffix} file: {exc}") from exc
    if suffix == ".txt" and len(df.columns) < 2:
        raise ValueError(".txt file does not appear to contain delimited/tabular data")
    return _result(
        df,
        suffix.lstrip("."),
        detected_encoding=enc_info["detected"],
        encoding_info=enc_info,
        delimiter=delimiter,
    )


def _load_workbook(path: Path, suffix: str, sheet_name: str | None) -> dict[str, Any]:
    engine = None
    if suffix == ".xls" and importlib.util.find_spec("xlrd") is None:
        raise ImportError(".xls files require xlrd: pip install 'import-doctor[excel-legacy]'")
    if suffix == ".ods":
        if importlib.util.find_spec("odf") is None:
            raise ImportError(".ods files require odfpy: pip install 'import-doctor[ods]'")
        engine = "odf"

    try:
        with pd.ExcelFile(path, engine=engine) as workbook:
            all_sheets = list(workbook.sheet_names)
    except Exception as exc:
        raise ValueError(f"Could not read workbook: {exc}") from exc

    warnings: list[str] = []
    if sheet_name is not None:
        if sheet_name not in all_sheets:
            raise ValueError(f"Sheet '{sheet_name}' not found. Available: {all_sheets}")
        chosen = sheet_name
    else:
        chosen = all_sheets[0]
        if len(all_sheets) > 1:
            warnings.append(
                f"Multiple sheets found ({len(all_sheets)} total); used '{chosen}'. "
                "Pass --sheet to pick another."
            )

    try:
        df = pd.read_excel(path, sheet_name=chosen, dtype=str, engine=engine)
    except Exception as exc:
        raise ValueError(f"Could not load sheet '{chosen}': {exc}") from exc
    return _result(df, suffix.lstrip("."), sheet_name=chosen, sheet_names=all_sheets, warnings=warnings)


def _load_json(path: Path) -> dict[str, Any]:
    text, enc_info = _decode(path)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON: {exc}") from exc

    warnings: list[str] = []
    if isinstance(data, list):
        records = data
    elif isinstance(data, dict):
        list_keys = [key for key, value in data.items() if isinstance(value, list)]
        if list_keys:
            records = data[list_keys[0]]
            warnings.append(f"Nested JSON: used array at top-level key '{list_keys[0]}'")
        else:
            records = [data]
            warnings.append("JSON is a single object; treated as a one-row table")
    else:
        raise ValueError(f"JSON root must be an array or object, got {type(data).__name__}")

    if not all(isinstance(record, dict) for record in records):
        raise ValueError("JSON records must be objects")
    df = pd.DataFrame.from_records(records).astype(object) if records else pd.DataFrame()
    return _result(
        df,
        "json",
        rows=records_to_rows(records),
        detected_encoding=enc_info["detected"],
        encoding_info=enc_info,
        warnings=warnings,
    )


def _load_jsonl(path: Path) -> dict[str, Any]:
    text, enc_info = _decode(path)
    records: list[dict[str, Any]] = []
    parse_errors: list[str] = []
    for line_num, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as exc:
            parse_errors.append(f"line {line_num}: {exc}")
            continue
        if isinstance(record, dict):
            records.append(record)
        else:
            parse_errors.append(f"line {line_num}: not a JSON object")

    warnings: list[str] = []
    if parse_errors:
        extra = f" (+{len(parse_errors) - 3} more)" if len(parse_errors) > 3 else ""
        warnings.append(f"{len(parse_errors)} lines could not be parsed: {'; '.join(parse_errors[:3])}{extra}")
    df = pd.DataFrame.from_records(records).astype(object) if records else pd.DataFrame()
    return _result(
        df,
        "jsonl",
        rows=records_to_rows(records),
        detected_encoding=enc_info["detected"],
        encoding_info=enc_info,
        warnings=warnings,
    )


def records_to_rows(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Rows from parsed JSON objects, keeping native value types.

    Every row carries the union of keys in first-seen order; absent keys become None.
    """
    columns: dict[str, None] = {}
    for record in records:
        for key in record:
            columns.setdefault(str(key), None)
    rows: list[dict[str, Any]] = []
    for record in records:
        row = {}
        for key in columns:
            value = record.get(key)
            if isinstance(value, float) and value != value:
                value = None
            row[key] = value
        rows.append(row)
    return rows


def dataframe_to_rows(df: pd.DataFrame) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for record in df.to_dict(orient="records"):
        row = {}
        for key, value in record.items():
            if not isinstance(value, (dict, list)) and pd.isna(value):
                value = None
            elif hasattr(value, "item"):
                value = value.item()
            row[str(key)] = value
        rows.append(row)
    return rows


def load_file(path: str | Path, sheet_name: str | None = None) -> dict[str, Any]:
    """Load any supported file.

    Raises:
        FileNotFoundError  if the file does not exist.
        ValueError         if the format is unsupported or unreadable.
        ImportError        if a required optional dependency is missing.
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    if suffix not in ALL_FORMATS:
        raise ValueError(f"Unsupported format '{suffix}'. Supported: {', '.join(sorted(ALL_FORMATS))}")

    if suffix in TEXT_FORMATS:
        result = _load_text(path, suffix)
    elif suffix in EXCEL_FORMATS or suffix in ODS_FORMATS:
        result = _load_workbook(path, suffix, sheet_name)
    elif suffix in JSON_FORMATS:
        result = _load_json(path)
    else:
        result = _load_jsonl(path)

    logger.debug("Loaded %s: %d rows, %d columns", path, len(result["rows"]), len(result["dataframe"].columns))
    return result
