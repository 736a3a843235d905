from __future__ import annotations

import unittest

from import_doctor.errors import ReferenceColumnError, SchemaError
from import_doctor.fields import FieldType, LookupField, TargetField, TargetShape
from import_doctor.reference import InMemoryReferenceProvider
from import_doctor.schema import (
    LOOKUP_OPTIONS_RULE,
    add_lookup_field,
    build_derived_fields,
    build_lookup_options,
    is_derived_from,
    refresh_lookup_validation,
    remove_lookup_field,
    update_derived_fields,
    update_lookup_field,
    with_lookup_options,
)

DEPARTMENTS = [
    {"dept_id": "ENG001", "dept_name": "Engineering", "manager": "Sarah Johnson"},
    {"dept_id": "MKT001", "dept_name": "Marketing", "manager": "Mike Chen"},
    {"dept_id": "ENG002", "dept_name": "Engineering ", "manager": "Raj Patel"},
    {"dept_id": "X", "dept_name": "", "manager": "Nobody"},
]


def department_lookup(**overrides) -> LookupField:
    payload = {
        "id": "dept",
        "name": "department",
        "type": "lookup",
        "referenceFile": "departments.csv",
        "match": {"on": "dept_name", "get": "dept_id"},
        "alsoGet": [{"name": "department_manager", "source": "manager"}],
    }
    payload.update(overrides)
    return TargetField.from_dict(payload)


def base_shape() -> TargetShape:
    return TargetShape(name="employees", fields=[TargetField(name="name", required=True), TargetField(name="email")])


class LookupOptionsTests(unittest.TestCase):
    def test_options_are_distinct_trimmed_source_values(self):
        provider = InMemoryReferenceProvider({"departments.csv": DEPARTMENTS})
        rule = build_lookup_options(department_lookup(), provider)
        self.assertEqual(rule.type, LOOKUP_OPTIONS_RULE)
        self.assertEqual(rule.value, ["Engineering", "Marketing"])
        self.assertEqual(rule.reference_file, "departments.csv")

    def test_no_reference_data_yet(self):
        self.assertIsNone(build_lookup_options(department_lookup(), InMemoryReferenceProvider()))
        unchanged = department_lookup()
        with self.assertLogs("import_doctor.schema", level="INFO"):
            self.assertIs(with_lookup_options(unchanged, InMemoryReferenceProvider()), unchanged)

    def test_missing_source_column(self):
        provider = InMemoryReferenceProvider({"departments.csv": [{"name": "Engineering"}]})
        with self.assertRaisesRegex(ReferenceColumnError, "dept_name"):
            build_lookup_options(department_lookup(), provider)

    def test_options_replace_previous_ones(self):
        provider = InMemoryReferenceProvider({"departments.csv": DEPARTMENTS})
        once = with_lookup_options(department_lookup(), provider)
        twice = with_lookup_options(once, provider)
        self.assertEqual(len(twice.rules_of_type(LOOKUP_OPTIONS_RULE)), 1)

    def test_refresh_only_targets_requested_lookup(self):
        provider = InMemoryReferenceProvider({"departments.csv": DEPARTMENTS})
        shape = TargetShape(name="s", fields=[department_lookup(), TargetField(name="other")])
        refreshed = refresh_lookup_validation(shape, provider, "dept")
        self.assertEqual(len(refreshed.fields[0].rules_of_type(LOOKUP_OPTIONS_RULE)), 1)
        self.assertEqual(shape.fields[0].rules_of_type(LOOKUP_OPTIONS_RULE), [])

        with self.assertRaisesRegex(SchemaError, "not a lookup field"):
            refresh_lookup_validation(shape, provider, "other")


class DerivedFieldTests(unittest.TestCase):
    def test_build_derived_fields(self):
        derived = build_derived_fields(department_lookup())
        self.assertEqual(len(derived), 1)
        item = derived[0]
        self.assertEqual(item.id, "dept__department_manager")
        self.assertEqual(item.name, "department_manager")
        self.assertIs(item.type, FieldType.STRING)
        self.assertEqual(item.display_name, "Department Manager")
        self.assertTrue(item.metadata["is_derived"])
        self.assertEqual(item.metadata["derived_from"], "manager")
        self.assertTrue(is_derived_from(item, "dept"))

    def test_update_places_derived_fields_after_lookup(self):
        shape = TargetShape(name="s", fields=[TargetField(name="name"), department_lookup(), TargetField(name="email")])
        updated = update_derived_fields(shape, "dept")
        self.assertEqual(
            [item.name for item in updated.fields],
            ["name", "department", "department_manager", "email"],
        )
        again = update_derived_fields(updated, "dept")
        self.assertEqual([item.name for item in again.fields], [item.name for item in updated.fields])

    def test_collision_with_existing_field(self):
        shape = TargetShape(name="s", fields=[department_lookup(), TargetField(name="department_manager")])
        with self.assertRaisesRegex(SchemaError, "collides"):
            update_derived_fields(shape, "dept")


class LookupFieldLifecycleTests(unittest.TestCase):
    def setUp(self):
        self.provider = InMemoryReferenceProvider({"departments.csv": DEPARTMENTS})

    def test_add_lookup_field(self):
        shape = base_shape()
        updated = add_lookup_field(shape, department_lookup(), self.provider)
        self.assertEqual([item.name for item in shape.fields], ["name", "email"])
        self.assertEqual(
            [item.name for item in updated.fields],
            ["name", "email", "department", "department_manager"],
        )
        self.assertEqual(updated.get_field("department").rules_of_type(LOOKUP_OPTIONS_RULE)[0].value, ["Engineering", "Marketing"])

    def test_add_duplicate_is_rejected(self):
        shape = add_lookup_field(base_shape(), department_lookup(), self.provider)
        with self.assertRaisesRegex(SchemaError, "already exists"):
            add_lookup_field(shape, department_lookup(), self.provider)

    def test_update_lookup_field_rebuilds_derived_fields(self):
        shape = add_lookup_field(base_shape(), department_lookup(), self.provider)
        updated = update_lookup_field(
            shape,
            "dept",
            {"alsoGet": [{"name": "department_head", "source": "manager"}], "onMismatch": "null"},
            self.provider,
        )
        names = [item.name for item in updated.fields]
        self.assertEqual(names, ["name", "email", "department", "department_head"])
        self.assertEqual(updated.get_field("department").on_mismatch, "null")
        self.assertEqual(updated.get_field("department").id, "dept")

    def test_update_cannot_change_type(self):
        shape = add_lookup_field(base_shape(), department_lookup(), self.provider)
        with self.assertRaisesRegex(SchemaError, "must stay a lookup field"):
            update_lookup_field(shape, "dept", {"type": "string"}, self.provider)

    def test_update_unknown_field(self):
        with self.assertRaisesRegex(SchemaError, "Field with ID 'missing' not found"):
            update_lookup_field(base_shape(), "missing", {}, self.provider)

    def test_remove_lookup_field_drops_its_derived_fields(self):
        shape = add_lookup_field(base_shape(), department_lookup(), self.provider)
        removed = remove_lookup_field(shape, "dept")
        self.assertEqual([item.name for item in removed.fields], ["name", "email"])
        self.assertEqual(len(shape.fields), 4)


if __name__ == "__main__":
    unittest.main()
