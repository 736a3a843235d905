"""Versioned envelopes shared by every import-doctor JSON output.

Each report starts with the same header (contract name and version plus the
tool version) and ends with a ``run_summary`` block describing the command
that produced it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from import_doctor import __version__ as TOOL_VERSION

TOOL_NAME = "import-doctor"

# Stamped into every cell validation result.
VALIDATION_VERSION = "1.0.0"

CONTRACT_VERSIONS = {
    "import_doctor.validation_report": "1.0.0",
    "import_doctor.lookup_report": "1.0.0",
    "import_doctor.lookup_stats": "1.0.0",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_contract(name: str) -> dict[str, str]:
    return {"name": name, "version": CONTRACT_VERSIONS[name]}


def report_header(name: str) -> dict[str, Any]:
    contract = build_contract(name)
    return {
        "contract": contract,
        "schema_version": contract["version"],
        "tool_version": TOOL_VERSION,
    }


def _path_or_none(path: Path | None) -> str | None:
    return str(path) if path else None


def build_run_summary(
    *,
    command: str,
    input_path: Path | None,
    shape_path: Path | None = None,
    status: str = "ok",
    output_path: Path | None = None,
    metrics: dict[str, Any] | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    collected = list(warnings or [])
    return {
        "tool": TOOL_NAME,
        "command": command,
        "status": status,
        "generated_at": utc_now_iso(),
        "input_file": _path_or_none(input_path),
        "shape_file": _path_or_none(shape_path),
        "output_file": _path_or_none(output_path),
        "warnings_count": len(collected),
        "warnings": collected,
        "metrics": dict(metrics or {}),
    }
