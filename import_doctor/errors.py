"""Exceptions raised by the lookup and schema paths.

Per-cell validation problems are never raised; they are reported as
``ValidationIssue`` entries instead.
"""

from __future__ import annotations

from typing import Any


class ImportDoctorError(ValueError):
    pass


class ReferenceDataNotFoundError(ImportDoctorError):
    def __init__(self, reference_file: str) -> None:
        super().__init__(f"Reference data not found for {reference_file}")
        self.reference_file = reference_file


class ReferenceColumnError(ImportDoctorError):
    def __init__(self, reference_file: str, column: str) -> None:
        super().__init__(f"Column '{column}' not found in reference data {reference_file}")
        self.reference_file = reference_file
        self.column = column


class LookupProcessingError(ImportDoctorError):
    def __init__(self, message: str, entry: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.entry = entry


class SchemaError(ImportDoctorError):
    pass
