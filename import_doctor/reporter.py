"""Builds the JSON and plain-text reports for an import run."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from import_doctor.contracts import build_run_summary, report_header
from import_doctor.fields import METADATA_KEY, TargetShape, row_id
from import_doctor.lookups import ProcessedLookupResult, get_lookup_fields, lookup_field_stats
from import_doctor.pipeline import ImportRun
from import_doctor.results import RowStatus, RowValidationMetadata

MAX_REPORTED_ROWS = 50


def build_row_issues(run: ImportRun, limit: int = MAX_REPORTED_ROWS) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    for index, row in enumerate(run.rows):
        if not isinstance(row, dict):
            continue
        metadata = row.get(METADATA_KEY)
        if not isinstance(metadata, RowValidationMetadata) or metadata.status is RowStatus.VALID:
            continue
        issues = []
        for result in metadata.cell_validations.values():
            issues.extend(issue.to_dict() for issue in [*result.errors, *result.warnings])
        items.append(
            {
                "row_index": index,
                "row_id": row_id(row),
                "status": metadata.status.value,
                "issues": issues,
            }
        )
        if len(items) >= limit:
            break
    return items


def format_issue(issue: dict[str, Any]) -> str:
    line = f"  - [{issue['severity']}] {issue['field_name']}: {issue['message']}"
    fixes = issue.get("suggested_fixes") or []
    if fixes:
        line += f" (fix: {fixes[0]['description']})"
    return line


def render_text_report(report: dict[str, Any]) -> str:
    validation = report["validation"]
    summary = validation.get("summary") or {}
    lines = [
        "import-doctor validate",
        f"Input: {report['run_summary']['input_file']}",
        f"Shape: {report['shape']['name']} ({report['shape']['field_count']} fields)",
        f"Rows: {validation['total_rows']}",
        f"Valid rows: {summary.get('valid_row_percentage', 0.0):.1f}%",
        f"Errors: {validation['total_errors']}",
        f"Warnings: {validation['total_warnings']}",
    ]

    lookup = report.get("lookup")
    if lookup:
        stats = lookup["stats"]
        lines.extend(
            [
                f"Lookup fields: {stats['total_fields']}",
                f"Lookups: {stats['exact_matches']} exact, {stats['normalized_matches']} normalized, "
                f"{stats['fuzzy_matches']} fuzzy, {stats['failed_matches']} failed",
                f"Lookup success rate: {stats['success_rate'] * 100:.1f}%",
            ]
        )

    top_types = summary.get("top_error_types") or []
    if top_types:
        lines.append("Top error types:")
        lines.extend(f"- {item['type']}: {item['count']} ({item['percentage']:.1f}%)" for item in top_types)

    fields = summary.get("problematic_fields") or []
    if fields:
        lines.append("Problematic fields:")
        lines.extend(
            f"- {item['field_name']}: {item['error_count']} errors, {item['warning_count']} warnings" for item in fields
        )

    rows = report.get("rows_with_issues") or []
    if rows:
        lines.append("Rows with issues:")
        for item in rows:
            lines.append(f"- row {item['row_id']} ({item['status']})")
            lines.extend(format_issue(issue) for issue in item["issues"])

    if report["run_summary"]["warnings"]:
        lines.append("Warnings:")
        lines.extend(f"- {warning}" for warning in report["run_summary"]["warnings"])
    return "\n".join(lines) + "\n"


def build_report(
    run: ImportRun,
    shape: TargetShape,
    *,
    input_path: Path | None = None,
    shape_path: Path | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    validation = run.validation.to_dict()
    report: dict[str, Any] = {
        **report_header("import_doctor.validation_report"),
        "shape": {
            "id": shape.id,
            "name": shape.name,
            "version": shape.version,
            "field_count": len(shape.fields),
            "lookup_field_count": len(get_lookup_fields(shape)),
        },
        "validation": validation,
        "lookup": run.lookup.to_dict() if run.lookup else None,
        "rows_with_issues": build_row_issues(run),
    }
    status = "ok"
    if run.has_errors:
        status = "failed"
    elif run.lookup_failures:
        status = "partial"
    report["run_summary"] = build_run_summary(
        command="validate",
        input_path=input_path,
        shape_path=shape_path,
        status=status,
        warnings=warnings,
        metrics={
            "total_rows": validation["total_rows"],
            "total_errors": validation["total_errors"],
            "total_warnings": validation["total_warnings"],
            "valid_row_percentage": (validation.get("summary") or {}).get("valid_row_percentage", 0.0),
            "lookup_failures": run.lookup_failures,
        },
    )
    report["text_report"] = render_text_report(report)
    return report


def build_lookup_stats_report(shape: TargetShape, shape_path: Path | None = None) -> dict[str, Any]:
    stats = lookup_field_stats(shape)
    return {
        **report_header("import_doctor.lookup_stats"),
        "shape": {"id": shape.id, "name": shape.name},
        "stats": stats,
        "run_summary": build_run_summary(
            command="lookup-stats",
            input_path=None,
            shape_path=shape_path,
            metrics={"total_lookup_fields": stats["total_lookup_fields"]},
        ),
    }


def render_lookup_stats_text(report: dict[str, Any]) -> str:
    stats = report["stats"]
    lines = [
        "import-doctor lookup-stats",
        f"Shape: {report['shape']['name']}",
        f"Lookup fields: {stats['total_lookup_fields']}",
        f"Derived fields: {stats['total_derived_fields']}",
    ]
    lines.extend(f"- {item['name']}: {item['derived_field_count']} derived" for item in stats["lookup_fields"])
    return "\n".join(lines) + "\n"


def build_lookup_report(
    result: ProcessedLookupResult,
    shape: TargetShape,
    *,
    input_path: Path | None = None,
    shape_path: Path | None = None,
    output_path: Path | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    payload = result.to_dict()
    failures = [entry for entry in result.errors if entry.severity == "error"]
    status = "ok"
    if failures:
        status = "failed"
    elif result.errors:
        status = "partial"
    report: dict[str, Any] = {
        **report_header("import_doctor.lookup_report"),
        "shape": {"id": shape.id, "name": shape.name},
        **payload,
    }
    report["run_summary"] = build_run_summary(
        command="lookup",
        input_path=input_path,
        shape_path=shape_path,
        status=status,
        output_path=output_path,
        warnings=warnings,
        metrics={
            "total_rows": result.stats.total_rows,
            "failed_matches": result.stats.failed_matches,
            "success_rate": result.stats.success_rate,
            "derived_columns": result.stats.derived_columns,
        },
    )
    return report


def render_lookup_text(report: dict[str, Any]) -> str:
    stats = report["stats"]
    lines = [
        "import-doctor lookup",
        f"Input: {report['run_summary']['input_file']}",
        f"Rows: {stats['total_rows']}",
        f"Lookup fields: {stats['total_fields']}",
        f"Matches: {stats['exact_matches']} exact, {stats['normalized_matches']} normalized, "
        f"{stats['fuzzy_matches']} fuzzy, {stats['failed_matches']} failed",
        f"Success rate: {stats['success_rate'] * 100:.1f}%",
        f"Derived columns: {stats['derived_columns']}",
    ]
    errors = report.get("errors") or []
    if errors:
        lines.append("Lookup failures:")
        for entry in errors[:MAX_REPORTED_ROWS]:
            lines.append(f"- row {entry['row_index']} [{entry['severity']}] {entry['field_name']}: {entry['message']}")
    if report["run_summary"]["warnings"]:
        lines.append("Warnings:")
        lines.extend(f"- {warning}" for warning in report["run_summary"]["warnings"])
    return "\n".join(lines) + "\n"
