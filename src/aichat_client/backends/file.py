"""File-system storage backend.

Each key is stored as ``<root>/<key>.json``. Writes go to a temporary file
that is then renamed over the target, so a reader never sees half a blob.
"""

import contextlib
import os
from pathlib import Path

from ..storage import StorageError, StoragePort


class FileStorage(StoragePort):
    """Blob storage backed by one file per key."""

    name = "file"

    def __init__(self, root: Path):
        self.root = Path(root)

    def get(self, key: str) -> str | None:
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    def set(self, key: str, value: str) -> None:
        path = self._path_for(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(value, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            with contextlib.suppress(OSError):
                tmp_path.unlink(missing_ok=True)
            raise StorageError(f"Failed to write {path}: {e}") from e

    def remove(self, key: str) -> None:
        path = self._path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to remove {path}: {e}") from e

    # ── Private helpers ──────────────────────────────────────────────

    def _path_for(self, key: str) -> Path:
        safe_key = "".join(c if c.isalnum() or c in "-_." else "_" for c in key)
        return self.root / f"{safe_key}.json"
