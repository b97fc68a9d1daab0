"""Atomic persistence of content indexes.

Layout under ``out_dir``::

    pipelines.json        [{"type": "Doc", "count": 12}, ...]
    Doc/index.json        [FileContent, ...] in comparator order

Every file is written to a temp file in the same directory, fsynced, and
moved into place with ``os.replace``. Readers see either the previous
complete document or the new one, never a partial write.
"""

from __future__ import annotations

import datetime as dt
import json
import os
import tempfile
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from contented.core.logging import get_logger
from contented.framework.models import FileContent

logger = get_logger(__name__)

INDEX_FILE = "index.json"
MANIFEST_FILE = "pipelines.json"


def _json_default(value: Any) -> Any:
    if isinstance(value, (dt.date, dt.time)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


def dumps(data: Any) -> str:
    """Stable JSON encoding used for every persisted document."""
    return json.dumps(data, indent=2, ensure_ascii=False, default=_json_default) + "\n"


def atomic_write_text(path: Path, text: str) -> None:
    """Write ``text`` to ``path`` via temp file + fsync + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


class IndexStore:
    """Reads and atomically replaces persisted indexes in ``out_dir``."""

    def __init__(self, out_dir: str | Path):
        self.out_dir = Path(out_dir)

    def index_path(self, type: str) -> Path:
        return self.out_dir / type / INDEX_FILE

    @property
    def manifest_path(self) -> Path:
        return self.out_dir / MANIFEST_FILE

    def write(self, type: str, records: Sequence[FileContent]) -> Path:
        """Replace the persisted index of ``type`` with ``records`` (in order)."""
        path = self.index_path(type)
        atomic_write_text(path, dumps([record.to_dict() for record in records]))
        logger.debug("index_store.written", pipeline=type, records=len(records), path=str(path))
        return path

    def read(self, type: str) -> list[FileContent]:
        """Load a persisted index; missing index reads as empty."""
        path = self.index_path(type)
        if not path.exists():
            return []
        with open(path, encoding="utf-8") as f:
            return [FileContent.from_dict(item) for item in json.load(f)]

    def write_manifest(self, counts: Mapping[str, int]) -> Path:
        path = self.manifest_path
        atomic_write_text(path, dumps([{"type": t, "count": c} for t, c in counts.items()]))
        return path
