from invex.storage.abstract_storage import BlobStore
from invex.storage.filesystem_storage import FileSystemStorage

__all__ = ['BlobStore', 'FileSystemStorage']
