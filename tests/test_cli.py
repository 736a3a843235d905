import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SAMPLE_DIR = ROOT / "sample-data"
SAMPLE_INPUT = SAMPLE_DIR / "employees.csv"
SAMPLE_SHAPE = SAMPLE_DIR / "employee_shape.json"

DEPARTMENTS_CSV = "dept_id,dept_name,manager\nENG001,Engineering,Sarah Johnson\nFIN001,Finance,David Kim\n"


def run_cli(*args: str) -> subprocess.CompletedProcess:
    env = os.environ.copy()
    env["IMPORT_DOCTOR_OUTPUT_STAMP"] = "20260101T000000Z"
    return subprocess.run(
        [sys.executable, "-m", "import_doctor.cli", *args],
        cwd=ROOT,
        capture_output=True,
        text=True,
        env=env,
    )


def write_workspace(tmpdir: str, departments: list[str], on_mismatch: str = "error") -> tuple[Path, Path]:
    directory = Path(tmpdir)
    (directory / "departments.csv").write_text(DEPARTMENTS_CSV, encoding="utf-8")
    input_path = directory / "staff.csv"
    lines = ["name,department"]
    lines.extend(f"Person {index},{department}" for index, department in enumerate(departments, start=1))
    input_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    shape_path = directory / "staff_shape.json"
    shape_path.write_text(
        json.dumps(
            {
                "name": "staff",
                "fields": [
                    {"name": "name", "required": True},
                    {
                        "name": "department",
                        "type": "lookup",
                        "referenceFile": "departments.csv",
                        "match": {"on": "dept_name", "get": "dept_id"},
                        "alsoGet": [{"name": "manager", "source": "manager"}],
                        "onMismatch": on_mismatch,
                    },
                ],
            }
        ),
        encoding="utf-8",
    )
    return input_path, shape_path


class CliBasicsTests(unittest.TestCase):
    def test_version(self):
        proc = run_cli("version")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(proc.stdout.strip(), "0.1.0")

    def test_unknown_command_is_a_command_error(self):
        proc = run_cli("diagnose")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("invalid choice", proc.stderr)

    def test_rules_json(self):
        proc = run_cli("rules", "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(
            [item["id"] for item in payload],
            ["required-field", "data-type", "enum-values", "value-range", "pattern"],
        )
        self.assertTrue(all(item["enabled"] for item in payload))

    def test_rules_text(self):
        proc = run_cli("rules")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertTrue(proc.stdout.startswith("required-field (required): "))

    def test_lookup_stats(self):
        proc = run_cli("lookup-stats", "--shape", str(SAMPLE_SHAPE), "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["contract"]["name"], "import_doctor.lookup_stats")
        self.assertEqual(payload["stats"]["total_lookup_fields"], 2)
        self.assertEqual(payload["stats"]["total_derived_fields"], 3)

        text = run_cli("lookup-stats", "--shape", str(SAMPLE_SHAPE))
        self.assertIn("- department: 2 derived", text.stdout)
        self.assertIn("- product: 1 derived", text.stdout)


class ShapeLoadingTests(unittest.TestCase):
    def test_missing_shape(self):
        proc = run_cli("validate", str(SAMPLE_INPUT), "--shape", "missing.json")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Shape not found", proc.stderr)

    def test_unreadable_and_invalid_shapes(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            broken = Path(tmpdir) / "broken.json"
            broken.write_text("{oops", encoding="utf-8")
            no_fields = Path(tmpdir) / "no_fields.json"
            no_fields.write_text('{"name": "empty"}', encoding="utf-8")

            broken_proc = run_cli("validate", str(SAMPLE_INPUT), "--shape", str(broken))
            invalid_proc = run_cli("validate", str(SAMPLE_INPUT), "--shape", str(no_fields))

        self.assertEqual(broken_proc.returncode, 2)
        self.assertIn("Could not read shape", broken_proc.stderr)
        self.assertEqual(invalid_proc.returncode, 2)
        self.assertIn("Invalid shape: Target shape must contain a 'fields' array", invalid_proc.stderr)

    def test_yaml_shape_is_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            shape = Path(tmpdir) / "shape.yaml"
            shape.write_text("name: staff\n", encoding="utf-8")
            proc = run_cli("validate", str(SAMPLE_INPUT), "--shape", str(shape))
        self.assertEqual(proc.returncode, 1)
        self.assertIn("YAML shapes are not supported yet", proc.stderr)


class ValidateCommandTests(unittest.TestCase):
    def test_sample_data_fails_validation(self):
        proc = run_cli("validate", str(SAMPLE_INPUT), "--shape", str(SAMPLE_SHAPE), "--json")
        self.assertEqual(proc.returncode, 5, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["contract"]["name"], "import_doctor.validation_report")
        self.assertEqual(payload["run_summary"]["status"], "failed")
        self.assertEqual(payload["run_summary"]["metrics"]["total_rows"], 6)
        self.assertGreater(payload["validation"]["total_errors"], 0)
        self.assertEqual(payload["lookup"]["stats"]["total_fields"], 2)

    def test_text_report_goes_to_stderr(self):
        proc = run_cli("validate", str(SAMPLE_INPUT), "--shape", str(SAMPLE_SHAPE))
        self.assertEqual(proc.returncode, 5)
        self.assertEqual(proc.stdout, "")
        self.assertIn("import-doctor validate", proc.stderr)
        self.assertIn("Rows with issues:", proc.stderr)

    def test_clean_import_succeeds_and_writes_outputs(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            input_path, shape_path = write_workspace(tmpdir, ["Engineering", "finance"])
            report_path = Path(tmpdir) / "report.json"
            rows_path = Path(tmpdir) / "rows.json"
            proc = run_cli(
                "validate",
                str(input_path),
                "--shape",
                str(shape_path),
                "--output",
                str(report_path),
                "--rows-output",
                str(rows_path),
                "-q",
            )
            report = json.loads(report_path.read_text(encoding="utf-8"))
            rows = json.loads(rows_path.read_text(encoding="utf-8"))
            again = run_cli(
                "validate", str(input_path), "--shape", str(shape_path), "--rows-output", str(rows_path)
            )

        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(report["run_summary"]["status"], "ok")
        self.assertEqual(report["run_summary"]["output_file"], str(report_path))
        self.assertEqual(rows[1]["department"], "FIN001")
        self.assertEqual(rows[1]["manager"], "David Kim")
        self.assertEqual(rows[0]["_validationMetadata"]["status"], "valid")
        self.assertEqual(again.returncode, 1)
        self.assertIn("Refusing to overwrite existing output", again.stderr)

    def test_warning_only_lookup_failure_is_partial(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            input_path, shape_path = write_workspace(tmpdir, ["Engineering", "Sales"], on_mismatch="warning")
            proc = run_cli("validate", str(input_path), "--shape", str(shape_path), "--json")
        self.assertEqual(proc.returncode, 6, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["run_summary"]["status"], "partial")
        self.assertEqual(payload["validation"]["total_warnings"], 1)

    def test_error_policy_fails_and_strict_mode_stops(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            input_path, shape_path = write_workspace(tmpdir, ["Engineering", "Sales"])
            failed = run_cli("validate", str(input_path), "--shape", str(shape_path), "--json")
            strict = run_cli("validate", str(input_path), "--shape", str(shape_path), "--strict-lookups")
        self.assertEqual(failed.returncode, 5)
        self.assertEqual(json.loads(failed.stdout)["validation"]["errors_by_type"]["lookup"], 1)
        self.assertEqual(strict.returncode, 5)
        self.assertIn('No match found for "Sales"', strict.stderr)

    def test_reference_dir_option(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            input_path, shape_path = write_workspace(tmpdir, ["Marketing"])
            default_dir = run_cli("validate", str(input_path), "--shape", str(shape_path))
            sample_dir = run_cli(
                "validate", str(input_path), "--shape", str(shape_path), "--reference-dir", str(SAMPLE_DIR)
            )
            missing_dir = run_cli(
                "validate", str(input_path), "--shape", str(shape_path), "--reference-dir", str(Path(tmpdir) / "nope")
            )
        self.assertEqual(default_dir.returncode, 5)
        self.assertEqual(sample_dir.returncode, 0, sample_dir.stderr)
        self.assertEqual(missing_dir.returncode, 1)
        self.assertIn("Reference directory not found", missing_dir.stderr)

    def test_existing_report_is_not_overwritten(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            input_path, shape_path = write_workspace(tmpdir, ["Engineering"])
            report_path = Path(tmpdir) / "report.json"
            report_path.write_text("PRECIOUS", encoding="utf-8")
            rows_path = Path(tmpdir) / "rows.json"
            proc = run_cli(
                "validate",
                str(input_path),
                "--shape",
                str(shape_path),
                "--output",
                str(report_path),
                "--rows-output",
                str(rows_path),
                "-q",
            )
            kept = report_path.read_text(encoding="utf-8")
            rows_written = rows_path.exists()

            out_dir = Path(tmpdir) / "out"
            out_dir.mkdir()
            (out_dir / "validation.json").write_text("PRECIOUS", encoding="utf-8")
            by_dir = run_cli("validate", str(input_path), "--shape", str(shape_path), "-o", str(out_dir))
            kept_in_dir = (out_dir / "validation.json").read_text(encoding="utf-8")

        self.assertEqual(proc.returncode, 1)
        self.assertIn("Refusing to overwrite existing output", proc.stderr)
        self.assertEqual(kept, "PRECIOUS")
        self.assertFalse(rows_written)
        self.assertEqual(by_dir.returncode, 1)
        self.assertEqual(kept_in_dir, "PRECIOUS")

    def test_refused_rows_output_writes_nothing(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            input_path, shape_path = write_workspace(tmpdir, ["Engineering"])
            report_path = Path(tmpdir) / "report.json"
            rows_path = Path(tmpdir) / "rows.json"
            rows_path.write_text("[]", encoding="utf-8")
            proc = run_cli(
                "validate",
                str(input_path),
                "--shape",
                str(shape_path),
                "--output",
                str(report_path),
                "--rows-output",
                str(rows_path),
            )
            report_written = report_path.exists()
        self.assertEqual(proc.returncode, 1)
        self.assertFalse(report_written)

    def test_report_and_rows_cannot_share_a_path(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            input_path, shape_path = write_workspace(tmpdir, ["Engineering"])
            target = Path(tmpdir) / "both.json"
            proc = run_cli(
                "validate",
                str(input_path),
                "--shape",
                str(shape_path),
                "--output",
                str(target),
                "--rows-output",
                str(target),
            )
            written = target.exists()
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Output paths must be distinct", proc.stderr)
        self.assertFalse(written)

    def test_bad_lookup_options(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            input_path, shape_path = write_workspace(tmpdir, ["Engineering"])
            proc = run_cli("validate", str(input_path), "--shape", str(shape_path), "--min-confidence", "2")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("--min-confidence must be between 0 and 1", proc.stderr)

    def test_missing_input(self):
        proc = run_cli("validate", "missing.csv", "--shape", str(SAMPLE_SHAPE))
        self.assertEqual(proc.returncode, 1)
        self.assertIn("File not found", proc.stderr)


class LookupCommandTests(unittest.TestCase):
    def test_lookup_writes_rows_and_refuses_overwrite(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            input_path, shape_path = write_workspace(tmpdir, ["Engineering", "Enginering"])
            output_path = Path(tmpdir) / "resolved.json"
            report_path = Path(tmpdir) / "lookup_report.json"
            proc = run_cli(
                "lookup",
                str(input_path),
                "--shape",
                str(shape_path),
                "--output",
                str(output_path),
                "--report",
                str(report_path),
                "--json",
            )
            rows = json.loads(output_path.read_text(encoding="utf-8"))
            saved_report = json.loads(report_path.read_text(encoding="utf-8"))
            again = run_cli("lookup", str(input_path), "--shape", str(shape_path), "--output", str(output_path))

        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["stats"]["exact_matches"], 1)
        self.assertEqual(payload["stats"]["fuzzy_matches"], 1)
        self.assertEqual(saved_report["run_summary"]["output_file"], str(output_path))
        self.assertEqual([row["department"] for row in rows], ["ENG001", "ENG001"])
        self.assertEqual(rows[1]["manager"], "Sarah Johnson")
        self.assertEqual(again.returncode, 1)
        self.assertIn("Refusing to overwrite existing output", again.stderr)

    def test_sample_lookup_is_partial(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            proc = run_cli("lookup", str(SAMPLE_INPUT), "--shape", str(SAMPLE_SHAPE), "-o", tmpdir)
            output_path = Path(tmpdir) / "employees_lookups.json"
            rows = json.loads(output_path.read_text(encoding="utf-8"))
        self.assertEqual(proc.returncode, 6, proc.stderr)
        self.assertIn("import-doctor lookup", proc.stderr)
        self.assertEqual(rows[1]["department"], "MKT001")
        self.assertIsNone(rows[3]["product"])

    def test_no_derived_and_strict_modes(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            input_path, shape_path = write_workspace(tmpdir, ["Engineering", "Sales"], on_mismatch="warning")
            plain = Path(tmpdir) / "plain.json"
            no_derived = run_cli(
                "lookup", str(input_path), "--shape", str(shape_path), "--output", str(plain), "--no-derived", "-q"
            )
            rows = json.loads(plain.read_text(encoding="utf-8"))
            strict = run_cli(
                "lookup",
                str(input_path),
                "--shape",
                str(shape_path),
                "--output",
                str(Path(tmpdir) / "strict.json"),
                "--strict-lookups",
            )
        self.assertEqual(no_derived.returncode, 6)
        self.assertNotIn("manager", rows[0])
        self.assertEqual(strict.returncode, 5)

    def test_existing_lookup_report_is_not_overwritten(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            input_path, shape_path = write_workspace(tmpdir, ["Engineering"])
            output_path = Path(tmpdir) / "resolved.json"
            report_path = Path(tmpdir) / "lookup_report.json"
            report_path.write_text("PRECIOUS", encoding="utf-8")
            proc = run_cli(
                "lookup",
                str(input_path),
                "--shape",
                str(shape_path),
                "--output",
                str(output_path),
                "--report",
                str(report_path),
            )
            kept = report_path.read_text(encoding="utf-8")
            rows_written = output_path.exists()
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Refusing to overwrite existing output", proc.stderr)
        self.assertEqual(kept, "PRECIOUS")
        self.assertFalse(rows_written)

    def test_shape_without_lookups(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            shape = Path(tmpdir) / "plain.json"
            shape.write_text('{"name": "plain", "fields": [{"name": "name"}]}', encoding="utf-8")
            proc = run_cli("lookup", str(SAMPLE_INPUT), "--shape", str(shape), "-o", tmpdir)
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Shape 'plain' has no lookup fields", proc.stderr)


if __name__ == "__main__":
    unittest.main()
