import logging
import os
from pathlib import Path
from typing import Any, BinaryIO, Dict, Optional
from uuid import uuid4

from invex.models.invoice import StoredFile
from invex.storage.abstract_storage import BlobStore

logger = logging.getLogger(__name__)


class FileSystemStorage(BlobStore):
    """
    Local file system blob store

    Files land under ``<path>/<folder>/<uuid><ext>``; the public URL is the
    configured ``public_base_url`` joined with the storage key.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Args:
            config: ``storage`` configuration section with at least ``path``
        """
        self.config = config
        self.base_path = Path(config.get('path', 'storage'))
        self.folder = config.get('folder', 'uploads/invoices').strip('/')
        self.public_base_url = config.get('public_base_url', '/files').rstrip('/')
        self.base_path.mkdir(parents=True, exist_ok=True)

    def get_path(self, key: str) -> Path:
        """
        Resolve a storage key to a path inside the storage directory

        Raises:
            ValueError: If the key is empty or escapes the storage directory
        """
        if not key:
            raise ValueError("Storage key cannot be empty")

        if '..' in key or os.path.isabs(key):
            raise ValueError(f"Invalid storage key: {key} - path traversal detected")

        normalized_key = os.path.normpath(key)
        full_path = (self.base_path / normalized_key).resolve()
        try:
            full_path.relative_to(self.base_path.resolve())
        except ValueError:
            raise ValueError(f"Invalid storage key: {key} - path outside storage directory")

        return full_path

    def store(self, stream: BinaryIO, file_name: str, file_type: str) -> StoredFile:
        key = f"{self.folder}/{uuid4()}{file_type}"
        path = self.get_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)

        if path.is_symlink():
            raise ValueError(f"Invalid storage key: {key} - symlinks not allowed")

        # Write to a temp file and move into place
        temp_path = path.with_suffix(path.suffix + '.tmp')
        try:
            with temp_path.open('wb') as f:
                size = f.write(stream.read())
            temp_path.replace(path)
        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise

        logger.info(f"Stored {file_name} as {key} ({size} bytes)")
        return StoredFile(
            storage_path=key,
            public_url=f"{self.public_base_url}/{key}",
            file_name=file_name,
            file_type=file_type,
            size=size
        )

    def load(self, key: str) -> Optional[bytes]:
        path = self.get_path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def delete(self, key: str) -> bool:
        path = self.get_path(key)
        if path.exists():
            path.unlink()
            return True
        return False

    def exists(self, key: str) -> bool:
        return self.get_path(key).exists()
