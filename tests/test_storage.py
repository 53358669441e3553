"""
Tests for file system storage and text extraction from stored files
"""

import asyncio
import io

import pytest

from invex.processors.text_extraction import NO_TEXT_MESSAGE, default_extractor
from invex.storage.filesystem_storage import FileSystemStorage


class TestFileSystemStorage:

    @pytest.fixture(autouse=True)
    def _storage(self, tmp_path):
        self.storage = FileSystemStorage({'path': str(tmp_path), 'public_base_url': '/files/'})

    def test_store_and_load(self):
        """Stored files get a unique key under the upload folder"""
        first = self.storage.store(io.BytesIO(b'hello'), 'bill.txt', '.txt')
        second = self.storage.store(io.BytesIO(b'hello'), 'bill.txt', '.txt')

        assert first.storage_path.startswith('uploads/invoices/')
        assert first.storage_path.endswith('.txt')
        assert first.storage_path != second.storage_path
        assert first.public_url == f'/files/{first.storage_path}'
        assert first.size == 5
        assert self.storage.load(first.storage_path) == b'hello'

    def test_delete(self):
        """Deleted files are gone; deleting twice reports False"""
        stored = self.storage.store(io.BytesIO(b'x'), 'a.pdf', '.pdf')

        assert self.storage.delete(stored.storage_path) is True
        assert self.storage.exists(stored.storage_path) is False
        assert self.storage.delete(stored.storage_path) is False
        assert self.storage.load(stored.storage_path) is None

    def test_path_traversal_refused(self):
        """Keys cannot leave the storage directory"""
        for key in ['../outside.txt', '/etc/passwd', '']:
            with pytest.raises(ValueError):
                self.storage.get_path(key)


class TestTextExtraction:

    @pytest.fixture(autouse=True)
    def _storage(self, tmp_path):
        self.storage = FileSystemStorage({'path': str(tmp_path)})
        self.extractor = default_extractor(self.storage)

    def test_plain_text(self):
        """Text files are read as they are"""
        stored = self.storage.store(io.BytesIO('Invoice Number: 42\n'.encode('utf-8')), 'a.txt', '.txt')

        result = asyncio.run(self.extractor.extract(stored.storage_path, '.txt'))

        assert result.success is True
        assert result.content == 'Invoice Number: 42\n'
        assert result.metadata['file_type'] == '.txt'

    def test_blank_text_fails(self):
        """Whitespace-only files yield no text"""
        stored = self.storage.store(io.BytesIO(b'  \n'), 'a.txt', '.txt')

        result = asyncio.run(self.extractor.extract(stored.storage_path, '.txt'))

        assert result.success is False
        assert result.error == NO_TEXT_MESSAGE

    def test_unsupported_type_fails(self):
        """Types without an extractor are reported, not raised"""
        stored = self.storage.store(io.BytesIO(b'\x89PNG'), 'a.png', '.png')

        result = asyncio.run(self.extractor.extract(stored.storage_path, '.png'))

        assert result.success is False
        assert "No text extractor available for file type '.png'" in result.error
        assert self.extractor.can_extract('.PDF') is True

    def test_missing_file_fails(self):
        """A missing stored file is an extraction failure"""
        result = asyncio.run(self.extractor.extract('uploads/invoices/missing.txt', '.txt'))

        assert result.success is False
        assert 'Stored file not found' in result.error
