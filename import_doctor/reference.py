"""Reference-dataset providers consumed by the lookup processor.

A provider answers ``get_reference_data_rows(reference_file)`` with a list of
row dicts, or ``None`` when the dataset is not available.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol

from import_doctor.loader import ALL_FORMATS, load_file

logger = logging.getLogger(__name__)


class ReferenceDataProvider(Protocol):
    def get_reference_data_rows(self, reference_file: str) -> list[dict[str, Any]] | None:
        ...


class InMemoryReferenceProvider:
    def __init__(self, datasets: dict[str, list[dict[str, Any]]] | None = None) -> None:
        self._datasets: dict[str, list[dict[str, Any]]] = dict(datasets or {})

    def add_dataset(self, reference_file: str, rows: list[dict[str, Any]]) -> None:
        self._datasets[reference_file] = list(rows)

    def remove_dataset(self, reference_file: str) -> bool:
        return self._datasets.pop(reference_file, None) is not None

    def dataset_names(self) -> list[str]:
        return sorted(self._datasets)

    def get_reference_data_rows(self, reference_file: str) -> list[dict[str, Any]] | None:
        rows = self._datasets.get(reference_file)
        if rows is None:
            return None
        return list(rows)


class DirectoryReferenceProvider:
    """Serves reference datasets from files in one directory.

    ``departments.csv`` resolves to that file; a bare ``departments`` resolves
    to the first supported file with that stem. Loaded rows are cached.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self._cache: dict[str, list[dict[str, Any]] | None] = {}

    def resolve_path(self, reference_file: str) -> Path | None:
        exact = self.directory / reference_file
        if exact.is_file() and exact.suffix.lower() in ALL_FORMATS:
            return exact
        stem = Path(reference_file).stem
        if not self.directory.is_dir():
            return None
        for candidate in sorted(self.directory.iterdir()):
            if candidate.is_file() and candidate.stem == stem and candidate.suffix.lower() in ALL_FORMATS:
                return candidate
        return None

    def get_reference_data_rows(self, reference_file: str) -> list[dict[str, Any]] | None:
        if reference_file in self._cache:
            return self._cache[reference_file]

        path = self.resolve_path(reference_file)
        rows: list[dict[str, Any]] | None = None
        if path is None:
            logger.warning("No reference file for '%s' in %s", reference_file, self.directory)
        else:
            try:
                rows = load_file(path)["rows"]
            except (ValueError, ImportError) as exc:
                logger.warning("Could not load reference data %s: %s", path, exc)
            else:
                logger.info("Loaded %d reference rows from %s", len(rows), path)

        self._cache[reference_file] = rows
        return rows
