"""In-process storage backend, used by tests and ephemeral sessions."""

from ..storage import StoragePort


class MemoryStorage(StoragePort):
    """Keeps blobs in a dict for the lifetime of the object."""

    name = "memory"

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)
