"""Storage backends and the default wiring for this device."""

from pathlib import Path

from ..config import get_data_dir
from ..storage import StoragePort
from .file import FileStorage
from .memory import MemoryStorage

__all__ = ["FileStorage", "MemoryStorage", "get_storage"]


def get_storage(path: Path | None = None) -> StoragePort:
    """Return the durable storage backend rooted at ``path`` (or the data dir)."""
    return FileStorage(path or get_data_dir())
