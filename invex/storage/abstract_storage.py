from abc import ABC, abstractmethod
from typing import BinaryIO, Optional

from invex.models.invoice import StoredFile


class BlobStore(ABC):
    """
    Storage backend for uploaded invoice files

    Implementations decide where bytes live; callers only see storage keys
    and public URLs.
    """

    @abstractmethod
    def store(self, stream: BinaryIO, file_name: str, file_type: str) -> StoredFile:
        """
        Store an uploaded file under a generated key

        Args:
            stream: File content
            file_name: Original file name (used for the extension only)
            file_type: Normalised extension, e.g. ``.pdf``

        Returns:
            Descriptor with storage key, public URL and size
        """
        pass

    @abstractmethod
    def load(self, key: str) -> Optional[bytes]:
        """Return stored bytes, or None when nothing is stored under ``key``"""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        pass
