from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .surface import RenderingSurface

logger = logging.getLogger(__name__)


def _stamp() -> str:
    return re.sub(r"[:.]", "-", datetime.now(timezone.utc).isoformat())


class DebugSink:
    """Anomaly artifacts on disk. Write failures are logged, never raised."""

    def __init__(self, directory: Path, prefix: str = "onsale") -> None:
        self.directory = directory
        self.prefix = prefix

    def _path(self, label: str, suffix: str) -> Path:
        safe_label = re.sub(r"[^A-Za-z0-9_-]+", "-", label).strip("-") or "run"
        return self.directory / f"{self.prefix}-{safe_label}-{_stamp()}{suffix}"

    def _write(self, path: Path, data: str | bytes) -> Path | None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(data, bytes):
                path.write_bytes(data)
            else:
                path.write_text(data, encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not write debug artifact %s: %s", path, exc)
            return None
        return path

    def write_json(self, label: str, data: dict[str, Any]) -> Path | None:
        return self._write(self._path(label, ".json"), json.dumps(data, indent=2, default=str) + "\n")

    def write_error(self, label: str, message: str) -> Path | None:
        return self._write(self._path(label, ".error.txt"), message.rstrip("\n") + "\n")

    async def capture_page(self, surface: RenderingSurface, label: str, details: dict[str, Any]) -> None:
        try:
            html = await surface.content()
        except Exception as exc:
            logger.warning("Could not capture markup for %s: %s", label, exc)
        else:
            self._write(self._path(label, ".html"), html)
        try:
            image = await surface.screenshot()
        except Exception as exc:
            logger.warning("Could not capture screenshot for %s: %s", label, exc)
        else:
            self._write(self._path(label, ".png"), image)
        self.write_json(f"{label}-empty", details)
