from __future__ import annotations

import unittest

from import_doctor.errors import ImportDoctorError, LookupProcessingError
from import_doctor.fields import METADATA_KEY, FieldType, TargetField, TargetShape
from import_doctor.lookups import LookupProcessingOptions
from import_doctor.pipeline import run_import, run_import_async
from import_doctor.reference import InMemoryReferenceProvider

DEPARTMENTS = [
    {"dept_id": "ENG001", "dept_name": "Engineering", "manager": "Sarah Johnson"},
    {"dept_id": "FIN001", "dept_name": "Finance", "manager": "David Kim"},
]


def import_shape(on_mismatch: str = "error") -> TargetShape:
    return TargetShape.from_dict(
        {
            "name": "employees",
            "fields": [
                {"name": "name", "required": True, "transformation": [{"type": "trim"}]},
                {"name": "email", "type": "email", "transformation": [{"type": "lowercase"}]},
                {
                    "name": "department",
                    "type": "lookup",
                    "required": True,
                    "referenceFile": "departments.csv",
                    "match": {"on": "dept_name", "get": "dept_id"},
                    "alsoGet": [{"name": "manager", "source": "manager"}],
                    "onMismatch": on_mismatch,
                },
                {"name": "manager", "required": True},
            ],
        }
    )


def import_rows():
    return [
        {"name": " Ada ", "email": "ADA@EXAMPLE.COM", "department": "Engineering"},
        {"name": "Grace", "email": "grace@example.com", "department": "Sales"},
    ]


def provider() -> InMemoryReferenceProvider:
    return InMemoryReferenceProvider({"departments.csv": DEPARTMENTS})


class RunImportTests(unittest.TestCase):
    def test_transform_lookup_then_validate(self):
        rows = import_rows()
        run = run_import(rows, import_shape(), provider=provider())

        first, second = run.rows
        self.assertEqual(first["name"], "Ada")
        self.assertEqual(first["email"], "ada@example.com")
        self.assertEqual(first["department"], "ENG001")
        self.assertEqual(first["manager"], "Sarah Johnson")
        self.assertEqual(rows[0]["name"], " Ada ")

        self.assertEqual(run.lookup_failures, 1)
        self.assertTrue(run.has_errors)
        self.assertEqual(run.validation.errors_by_field, {"department": 1, "manager": 1})
        self.assertEqual(run.validation.errors_by_type["lookup"], 1)
        self.assertEqual(run.validation.errors_by_type["required"], 1)
        lookup_issue = second[METADATA_KEY].cell_validations["department"].errors[0]
        self.assertEqual(lookup_issue.rule_id, "lookup-match")

    def test_warning_policy_does_not_fail_the_import(self):
        shape = import_shape(on_mismatch="warning")
        rows = import_rows()
        rows[1]["manager"] = "Someone"
        run = run_import(rows, shape, provider=provider())
        self.assertFalse(run.has_errors)
        self.assertEqual(run.validation.total_warnings, 1)
        self.assertEqual(run.lookup_failures, 1)

    def test_lookup_fields_need_a_provider(self):
        with self.assertRaisesRegex(ImportDoctorError, "no reference data was provided"):
            run_import(import_rows(), import_shape())

    def test_shape_without_lookups(self):
        shape = TargetShape(name="plain", fields=[TargetField(name="age", type=FieldType.INTEGER)])
        run = run_import([{"age": "4"}, {"age": "four"}], shape)
        self.assertIsNone(run.lookup)
        self.assertEqual(run.lookup_failures, 0)
        self.assertEqual(run.validation.total_errors, 1)

    def test_strict_lookups_raise(self):
        options = LookupProcessingOptions(continue_on_error=False)
        with self.assertRaises(LookupProcessingError):
            run_import(import_rows(), import_shape(), provider=provider(), options=options)

    def test_row_payloads(self):
        run = run_import(import_rows(), import_shape(), provider=provider())
        plain = run.row_payloads()
        self.assertNotIn(METADATA_KEY, plain[0])
        with_metadata = run.row_payloads(include_metadata=True)
        self.assertEqual(with_metadata[1][METADATA_KEY]["status"], "errors")
        self.assertEqual(with_metadata[0][METADATA_KEY]["status"], "valid")


class RunImportAsyncTests(unittest.IsolatedAsyncioTestCase):
    async def test_async_matches_sync(self):
        sync_run = run_import(import_rows(), import_shape(), provider=provider())
        progress = []
        async_run = await run_import_async(
            import_rows(),
            import_shape(),
            provider=provider(),
            on_progress=lambda fraction, done, total, message: progress.append(message),
        )
        self.assertEqual(async_run.row_payloads(), sync_run.row_payloads())
        self.assertEqual(async_run.validation.errors_by_field, sync_run.validation.errors_by_field)
        self.assertEqual(progress[-1], "Validation complete")


if __name__ == "__main__":
    unittest.main()
