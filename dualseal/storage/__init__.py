"""
Key-value storage backends: off-ledger payload blobs, ledger state snapshots
and the local homomorphic capability's ciphertexts all live behind this interface.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List


class StorageBackend(ABC):
    """
    Namespaced blob store. Read-your-writes within one process is the only
    consistency guarantee callers may rely on.
    """

    @abstractmethod
    def put(self, namespace: str, key: str, blob: bytes) -> None:
        pass

    @abstractmethod
    def get(self, namespace: str, key: str) -> bytes:
        """Raises BlobNotFound when nothing is stored at (namespace, key)."""
        pass

    @abstractmethod
    def keys(self, namespace: str) -> List[str]:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def create_storage(uri: str) -> StorageBackend:
    if uri.startswith("memory://"):
        from .memory import MemoryStorage
        return MemoryStorage()

    elif uri.startswith("sqlite://"):
        from .sqlite import SQLiteStorage
        # sqlite:///abs/path.db is absolute, sqlite://rel.db is relative to cwd
        raw_path = uri[len("sqlite://"):]
        if raw_path.startswith("//"):
            raw_path = raw_path[1:]

        absolute_path = Path(raw_path).resolve()
        return SQLiteStorage(absolute_path)

    else:
        raise ValueError(f"Unsupported storage URI: {uri}")


def payload_namespace(ledger_address: str) -> str:
    """Namespace of off-ledger payload blobs for one record store."""
    return f"payload:{ledger_address}"


from .memory import MemoryStorage
from .sqlite import SQLiteStorage

__all__ = ["StorageBackend", "create_storage", "payload_namespace", "MemoryStorage", "SQLiteStorage"]
