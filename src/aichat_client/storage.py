"""Abstract storage port for locally persisted blobs."""

from abc import ABC, abstractmethod


class StorageError(Exception):
    """Raised by a storage backend when the underlying medium fails."""


class StoragePort(ABC):
    """Base class for string-keyed blob storage.

    The conversation and preference stores talk only to this interface, so
    each backend (in-memory, file system) can be swapped without touching
    them. A missing key is a normal, empty state.
    """

    name: str  # "memory", "file"

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the blob stored under ``key``, or None if absent."""
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Replace the blob stored under ``key``."""
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete ``key``; removing a missing key is not an error."""
        ...
