"""File-backed key-value store: one JSON file per document path."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class FileKeyValueStore:
    """Persist documents as JSON files below a root directory.

    Keys are document paths (``/artifacts/{app}/...``); each maps to
    ``<root>/<path>.json``. Writes go through a temporary file and an
    atomic rename so readers never see a partial document.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _file_for(self, key: str) -> Path:
        relative = key.strip("/")
        if not relative or ".." in Path(relative).parts:
            msg = f"invalid document key: {key!r}"
            raise ValueError(msg)
        return self.root / f"{relative}.json"

    def get(self, key: str) -> Any | None:
        path = self._file_for(key)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Corrupt document file %s, treating as absent", path)
            return None

    def set(self, key: str, value: Any) -> None:
        path = self._file_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(value, ensure_ascii=False, sort_keys=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            Path(tmp_name).replace(path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def keys(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(
            "/" + str(p.relative_to(self.root).with_suffix("")).replace(os.sep, "/")
            for p in self.root.rglob("*.json")
        )
