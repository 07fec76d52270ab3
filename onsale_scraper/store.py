from __future__ import annotations

import csv
import io
import json
import logging
from pathlib import Path
from typing import Any

from .models import RECORD_FIELDS, CanonicalRecord

logger = logging.getLogger(__name__)


def _csv_text(records: list[CanonicalRecord]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=RECORD_FIELDS, lineterminator="\n")
    writer.writeheader()
    for record in records:
        row = record.to_dict()
        writer.writerow({key: "" if row[key] is None else row[key] for key in RECORD_FIELDS})
    return buffer.getvalue()


class HistoricalStore:
    """Published dataset files: ``data.json``, ``data.csv`` and ``metadata.json``."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    @property
    def data_path(self) -> Path:
        return self.directory / "data.json"

    @property
    def csv_path(self) -> Path:
        return self.directory / "data.csv"

    @property
    def metadata_path(self) -> Path:
        return self.directory / "metadata.json"

    def _read_json(self, path: Path) -> Any:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable %s: %s", path, exc)
            return None

    def read_metadata(self) -> dict[str, Any] | None:
        data = self._read_json(self.metadata_path)
        return data if isinstance(data, dict) else None

    def read_data(self) -> list[dict[str, Any]] | None:
        data = self._read_json(self.data_path)
        return data if isinstance(data, list) else None

    def write_dataset(self, records: list[CanonicalRecord]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self.data_path.write_text(
            json.dumps([record.to_dict() for record in records], indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )
        self.csv_path.write_text(_csv_text(records), encoding="utf-8")

    def write_metadata(self, metadata: dict[str, Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self.metadata_path.write_text(json.dumps(metadata, indent=2) + "\n", encoding="utf-8")
