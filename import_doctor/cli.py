from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from import_doctor import __version__ as TOOL_VERSION
from import_doctor.errors import LookupProcessingError, SchemaError
from import_doctor.fields import TargetShape
from import_doctor.loader import load_file
from import_doctor.lookups import LookupProcessingOptions, LookupProcessor, has_lookup_fields
from import_doctor.pipeline import run_import
from import_doctor.reference import DirectoryReferenceProvider
from import_doctor.reporter import (
    build_lookup_report,
    build_lookup_stats_report,
    build_report,
    render_lookup_stats_text,
    render_lookup_text,
)
from import_doctor.results import json_safe
from import_doctor.rules import build_default_registry
from import_doctor.transforms import transform_rows

SUPPORTED_SHAPE_SUFFIXES = {".json", ".yml", ".yaml"}

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_VALIDATE_FAILED = 5
EXIT_PARTIAL = 6

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class ImportDoctorArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def timestamp_token() -> str:
    override = os.environ.get("IMPORT_DOCTOR_OUTPUT_STAMP")
    if override:
        return override
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def default_output_dir(input_path: Path) -> Path:
    return Path.cwd() / "import-doctor-output" / f"{input_path.stem}-{timestamp_token()}"


def report_output_path(args: argparse.Namespace) -> Path | None:
    if args.output:
        return safe_output_path(Path(args.output))
    if args.out_dir:
        return safe_output_path(Path(args.out_dir) / "validation.json")
    return None


def write_text(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(payload, encoding="utf-8")


def write_json(path: Path, payload: Any) -> None:
    write_text(path, json_dumps(payload))


def safe_output_path(path: Path) -> Path:
    if path.exists():
        raise CliError(f"Refusing to overwrite existing output: {path}", EXIT_COMMAND_ERROR)
    return path


def require_distinct_outputs(*paths: Path | None) -> None:
    chosen = [path.resolve() for path in paths if path is not None]
    if len(set(chosen)) != len(chosen):
        raise CliError("Output paths must be distinct", EXIT_COMMAND_ERROR)


def configure_logging(args: argparse.Namespace) -> None:
    level = logging.WARNING
    if getattr(args, "verbose", False):
        level = logging.DEBUG
    elif getattr(args, "quiet", False):
        level = logging.ERROR
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


def classify_backend_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, LookupProcessingError):
        return EXIT_VALIDATE_FAILED
    if isinstance(exc, (ImportError, UnicodeDecodeError)):
        return EXIT_PARSE_FAILED
    if isinstance(exc, FileNotFoundError):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, ValueError):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


def load_shape(shape_path: Path) -> TargetShape:
    if not shape_path.exists():
        raise CliError(f"Shape not found: {shape_path}", EXIT_COMMAND_ERROR)
    suffix = shape_path.suffix.lower()
    if suffix not in SUPPORTED_SHAPE_SUFFIXES:
        raise CliError("Shape must be .json, .yml, or .yaml", EXIT_COMMAND_ERROR)
    if suffix in {".yml", ".yaml"}:
        raise CliError("YAML shapes are not supported yet. Use JSON for now.", EXIT_COMMAND_ERROR)
    try:
        payload = json.loads(shape_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise CliError(f"Could not read shape: {exc}", EXIT_PARSE_FAILED) from exc
    try:
        return TargetShape.from_dict(payload)
    except SchemaError as exc:
        raise CliError(f"Invalid shape: {exc}", EXIT_PARSE_FAILED) from exc


def reference_provider(args: argparse.Namespace, input_path: Path) -> DirectoryReferenceProvider:
    directory = Path(args.reference_dir) if args.reference_dir else input_path.parent
    if not directory.is_dir():
        raise CliError(f"Reference directory not found: {directory}", EXIT_COMMAND_ERROR)
    return DirectoryReferenceProvider(directory)


def lookup_options(args: argparse.Namespace) -> LookupProcessingOptions:
    if not 0.0 <= args.min_confidence <= 1.0:
        raise CliError("--min-confidence must be between 0 and 1", EXIT_COMMAND_ERROR)
    if args.max_fuzzy is not None and args.max_fuzzy < 0:
        raise CliError("--max-fuzzy must not be negative", EXIT_COMMAND_ERROR)
    return LookupProcessingOptions(
        min_confidence=args.min_confidence,
        max_fuzzy_matches=args.max_fuzzy,
        process_derived_fields=not args.no_derived,
        continue_on_error=not args.strict_lookups,
    )


def add_lookup_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--reference-dir", dest="reference_dir", help="Directory holding reference datasets (defaults to the input's directory)")
    parser.add_argument("--min-confidence", dest="min_confidence", type=float, default=0.0, help="Reject matches below this confidence")
    parser.add_argument("--max-fuzzy", dest="max_fuzzy", type=int, default=None, help="Cap fuzzy matches per lookup field")
    parser.add_argument("--no-derived", dest="no_derived", action="store_true", help="Do not fill derived columns")
    parser.add_argument("--strict-lookups", dest="strict_lookups", action="store_true", help="Stop at the first failed lookup")


def build_parser() -> argparse.ArgumentParser:
    parser = ImportDoctorArgumentParser(prog="import-doctor", description="Validate and enrich tabular imports against a target shape.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Run lookups and validation against a target shape.")
    validate.add_argument("input", help="Input file path")
    validate.add_argument("--shape", required=True, help="Target shape path (.json)")
    validate.add_argument("--sheet", dest="sheet_name", help="Workbook sheet name")
    validate.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    validate.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    validate.add_argument("--output", help="Explicit validation report path")
    validate.add_argument("--rows-output", dest="rows_output", help="Also write the validated rows with their metadata")
    add_lookup_arguments(validate)
    validate.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    validate.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    lookup = subparsers.add_parser("lookup", help="Resolve lookup fields and write the rewritten rows.")
    lookup.add_argument("input", help="Input file path")
    lookup.add_argument("--shape", required=True, help="Target shape path (.json)")
    lookup.add_argument("--sheet", dest="sheet_name", help="Workbook sheet name")
    lookup.add_argument("--json", action="store_true", help="Write the machine report to stdout")
    lookup.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    lookup.add_argument("--output", help="Explicit path for the rewritten rows (.json)")
    lookup.add_argument("--report", help="Explicit lookup report path")
    add_lookup_arguments(lookup)
    lookup.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    lookup.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    stats = subparsers.add_parser("lookup-stats", help="Summarize the lookup fields of a target shape.")
    stats.add_argument("--shape", required=True, help="Target shape path (.json)")
    stats.add_argument("--json", action="store_true", help="Write machine JSON to stdout")

    rules = subparsers.add_parser("rules", help="List the built-in validation rules.")
    rules.add_argument("--json", action="store_true", help="Write machine JSON to stdout")

    subparsers.add_parser("version", help="Print version")
    return parser


def run_validate(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    if not input_path.exists():
        eprint(f"File not found: {input_path}")
        return EXIT_COMMAND_ERROR

    try:
        shape_path = Path(args.shape)
        shape = load_shape(shape_path)
        provider = reference_provider(args, input_path) if has_lookup_fields(shape) else None
        options = lookup_options(args)
        report_path = report_output_path(args)
        rows_path = safe_output_path(Path(args.rows_output)) if args.rows_output else None
        require_distinct_outputs(report_path, rows_path)
        loaded = load_file(input_path, sheet_name=args.sheet_name)
        run = run_import(loaded["rows"], shape, provider=provider, options=options)
        report = build_report(
            run,
            shape,
            input_path=input_path,
            shape_path=shape_path,
            warnings=loaded["warnings"],
        )
        if report_path is not None:
            report["run_summary"]["output_file"] = str(report_path)
            write_json(report_path, report)
            emit_human(f"Validation report: {report_path}", quiet=args.quiet)
        if rows_path is not None:
            write_json(rows_path, run.row_payloads(include_metadata=True))
            emit_human(f"Validated rows: {rows_path}", quiet=args.quiet)
        if args.json:
            print(json_dumps(report))
        else:
            emit_human(report["text_report"].rstrip(), quiet=args.quiet)
        if run.has_errors:
            return EXIT_VALIDATE_FAILED
        if run.lookup_failures:
            return EXIT_PARTIAL
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_lookup(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    if not input_path.exists():
        eprint(f"File not found: {input_path}")
        return EXIT_COMMAND_ERROR

    try:
        shape_path = Path(args.shape)
        shape = load_shape(shape_path)
        if not has_lookup_fields(shape):
            raise CliError(f"Shape '{shape.name}' has no lookup fields", EXIT_COMMAND_ERROR)
        processor = LookupProcessor(reference_provider(args, input_path))
        options = lookup_options(args)
        if args.output:
            output_path = safe_output_path(Path(args.output))
        else:
            out_dir = Path(args.out_dir) if args.out_dir else default_output_dir(input_path)
            output_path = safe_output_path(out_dir / f"{input_path.stem}_lookups.json")
        report_path = safe_output_path(Path(args.report)) if args.report else None
        require_distinct_outputs(output_path, report_path)
        loaded = load_file(input_path, sheet_name=args.sheet_name)
        result = processor.process_data_with_lookups(transform_rows(loaded["rows"], shape), shape, options)
        write_json(output_path, json_safe(result.data))
        emit_human(f"Rewritten rows: {output_path}", quiet=args.quiet)

        report = build_lookup_report(
            result,
            shape,
            input_path=input_path,
            shape_path=shape_path,
            output_path=output_path,
            warnings=loaded["warnings"],
        )
        if report_path is not None:
            write_json(report_path, report)
            emit_human(f"Lookup report: {report_path}", quiet=args.quiet)
        if args.json:
            print(json_dumps(report))
        else:
            emit_human(render_lookup_text(report).rstrip(), quiet=args.quiet)

        status = report["run_summary"]["status"]
        if status == "failed":
            return EXIT_VALIDATE_FAILED
        if status == "partial":
            return EXIT_PARTIAL
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_lookup_stats(args: argparse.Namespace) -> int:
    shape_path = Path(args.shape)
    shape = load_shape(shape_path)
    report = build_lookup_stats_report(shape, shape_path)
    if args.json:
        print(json_dumps(report))
    else:
        print(render_lookup_stats_text(report).rstrip())
    return EXIT_SUCCESS


def run_rules(args: argparse.Namespace) -> int:
    payload = [
        {"id": rule.id, "type": rule.type.value, "description": rule.description, "enabled": rule.enabled}
        for rule in build_default_registry().get_all_rules()
    ]
    if args.json:
        print(json_dumps(payload))
    else:
        print("\n".join(f"{item['id']} ({item['type']}): {item['description']}" for item in payload))
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        configure_logging(args)
        if args.command == "validate":
            return run_validate(args)
        if args.command == "lookup":
            return run_lookup(args)
        if args.command == "lookup-stats":
            return run_lookup_stats(args)
        if args.command == "rules":
            return run_rules(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
