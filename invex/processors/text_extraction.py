"""
Text extraction from stored invoice files

The image-to-text algorithm is outside invex; only PDF text layers and plain
text are read here. Deployments plug an OCR engine in by implementing
``TextExtractor`` for image types.
"""

import asyncio
import io
import logging
from abc import ABC, abstractmethod
from typing import Iterable, List

from pdfminer.high_level import extract_text as pdf_extract_text

from invex.errors import ExternalServiceError
from invex.processors.base import ProcessingResult
from invex.storage.abstract_storage import BlobStore

logger = logging.getLogger(__name__)

NO_TEXT_MESSAGE = "No text could be extracted from the file"


class TextExtractor(ABC):
    """Turns a stored file into raw text"""

    file_types: Iterable[str] = ()

    def can_extract(self, file_type: str) -> bool:
        return (file_type or '').lower() in self.file_types

    @abstractmethod
    async def extract_text(self, storage_path: str, file_type: str) -> str:
        """
        Extract raw text from the stored file

        Returns:
            Extracted text; empty when the file has no readable text

        Raises:
            ExternalServiceError: extraction could not be performed
        """
        pass

    async def extract(self, storage_path: str, file_type: str) -> ProcessingResult:
        """Extract text and report empty output or failures as a failed result"""
        try:
            text = await self.extract_text(storage_path, file_type)
        except Exception as e:
            logger.exception(f"Text extraction failed for {storage_path}")
            return ProcessingResult.failed(str(e), storage_path=storage_path)

        if not text or not text.strip():
            return ProcessingResult.failed(NO_TEXT_MESSAGE, storage_path=storage_path)

        return ProcessingResult(
            success=True,
            content=text,
            metadata={'storage_path': storage_path, 'file_type': file_type, 'length': len(text)}
        )


class _StoredFileExtractor(TextExtractor):

    def __init__(self, storage: BlobStore):
        self.storage = storage

    def _read(self, storage_path: str) -> bytes:
        data = self.storage.load(storage_path)
        if data is None:
            raise ExternalServiceError(f"Stored file not found: {storage_path}")
        return data


class PdfTextExtractor(_StoredFileExtractor):
    """Reads the embedded text layer of a PDF with pdfminer"""

    file_types = ('.pdf',)

    async def extract_text(self, storage_path: str, file_type: str) -> str:
        data = self._read(storage_path)
        try:
            return await asyncio.to_thread(pdf_extract_text, io.BytesIO(data))
        except Exception as e:
            raise ExternalServiceError(f"PDF text extraction failed: {str(e)}") from e


class PlainTextExtractor(_StoredFileExtractor):
    file_types = ('.txt',)

    async def extract_text(self, storage_path: str, file_type: str) -> str:
        return self._read(storage_path).decode('utf-8', errors='replace')


class CompositeTextExtractor(TextExtractor):
    """Dispatches to the first extractor that handles the file type"""

    def __init__(self, extractors: List[TextExtractor]):
        self.extractors = list(extractors)

    def can_extract(self, file_type: str) -> bool:
        return any(e.can_extract(file_type) for e in self.extractors)

    async def extract_text(self, storage_path: str, file_type: str) -> str:
        for extractor in self.extractors:
            if extractor.can_extract(file_type):
                return await extractor.extract_text(storage_path, file_type)
        raise ExternalServiceError(f"No text extractor available for file type '{file_type}'")


def default_extractor(storage: BlobStore) -> CompositeTextExtractor:
    return CompositeTextExtractor([PdfTextExtractor(storage), PlainTextExtractor(storage)])
