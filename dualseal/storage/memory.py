import threading
from typing import Dict, List, Tuple

from dualseal.core.errors import BlobNotFound
from . import StorageBackend


class MemoryStorage(StorageBackend):
    """In-process store; contents vanish with the object."""

    def __init__(self):
        self._blobs: Dict[Tuple[str, str], bytes] = {}
        self._lock = threading.Lock()

    def put(self, namespace: str, key: str, blob: bytes) -> None:
        with self._lock:
            self._blobs[(namespace, key)] = bytes(blob)

    def get(self, namespace: str, key: str) -> bytes:
        with self._lock:
            try:
                return self._blobs[(namespace, key)]
            except KeyError:
                raise BlobNotFound(namespace, key) from None

    def keys(self, namespace: str) -> List[str]:
        with self._lock:
            return sorted(k for ns, k in self._blobs if ns == namespace)

    def close(self) -> None:
        pass
