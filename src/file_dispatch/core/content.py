"""Text and OCR capabilities used by contents conditions and PDF actions."""

import logging
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from pathlib import Path
from typing import Optional, Tuple

from ..models.conditions import ContentSource, FileKind
from ..models.config import Settings
from ..models.file_info import FileInfo

logger = logging.getLogger(__name__)

TEXT_KINDS = {FileKind.DOCUMENT, FileKind.CODE}

# Documents that are not plain text even though they classify as documents
BINARY_DOCUMENT_EXTENSIONS = {
    "pdf", "doc", "docx", "odt", "xls", "xlsx", "ods", "ppt", "pptx", "odp",
    "epub", "pages", "numbers", "key", "rtf",
}


class OcrProvider(ABC):
    """OCR engine. Its internals live outside the rule engine."""

    @abstractmethod
    def extract_text(self, path: Path) -> Optional[str]:
        """Recognize text in an image or PDF, or None if there is none."""
        pass

    @abstractmethod
    def make_searchable(self, path: Path, destination: Optional[Path] = None) -> Path:
        """Add a text layer to a PDF and return the path of the result."""
        pass

    def has_text_layer(self, path: Path) -> bool:
        return False


class ContentProvider(ABC):
    """Supplies the text that contents conditions are matched against."""

    @abstractmethod
    def extract_text(self, file_info: FileInfo, source: ContentSource) -> Optional[str]:
        pass


class TextContentProvider(ContentProvider):
    """Reads UTF-8 text files, falling back to OCR when one is configured.

    ``text`` reads the file, ``ocr`` only asks the OCR provider, and ``auto``
    tries text first and OCR second.
    """

    def __init__(self, settings: Optional[Settings] = None, ocr: Optional[OcrProvider] = None):
        self.settings = settings or Settings()
        self.ocr = ocr

    def extract_text(self, file_info: FileInfo, source: ContentSource) -> Optional[str]:
        if file_info.is_dir:
            return None

        if source in (ContentSource.TEXT, ContentSource.AUTO):
            text = self._read_text(file_info)
            if text or source == ContentSource.TEXT:
                return text

        return self._read_ocr(file_info)

    def _read_text(self, file_info: FileInfo) -> Optional[str]:
        if file_info.kind not in TEXT_KINDS or file_info.extension in BINARY_DOCUMENT_EXTENSIONS:
            return None

        max_bytes = self.settings.content_max_text_bytes
        if max_bytes > 0 and file_info.size is not None and file_info.size > max_bytes:
            logger.debug(f"Skipping content of {file_info.path}: larger than {max_bytes} bytes")
            return None

        try:
            data = file_info.path.read_bytes()
        except OSError as e:
            logger.warning(f"Cannot read content of {file_info.path}: {e}")
            return None

        try:
            return data.decode("utf-8")
        except UnicodeDecodeError:
            return None

    def _read_ocr(self, file_info: FileInfo) -> Optional[str]:
        if self.ocr is None or not self.settings.content_enable_ocr:
            return None
        if file_info.kind != FileKind.IMAGE and file_info.extension != "pdf":
            return None
        try:
            return self.ocr.extract_text(file_info.path)
        except Exception as e:
            logger.warning(f"OCR failed for {file_info.path}: {e}")
            return None


class ContentCache:
    """Bounded LRU cache of extracted text.

    Entries are keyed by path, size, modification time and source, so a file
    that changes on disk is extracted again.
    """

    def __init__(self, max_entries: int = 256):
        self.max_entries = max_entries
        self._entries: "OrderedDict[Tuple, Optional[str]]" = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def key_for(file_info: FileInfo, source: ContentSource) -> Tuple:
        return (str(file_info.path), file_info.size, file_info.modified, source.value)

    def get_or_extract(self, file_info: FileInfo, source: ContentSource,
                       provider: ContentProvider) -> Optional[str]:
        key = self.key_for(file_info, source)
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                return self._entries[key]

        text = provider.extract_text(file_info, source)

        with self._lock:
            self._entries[key] = text
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        return text

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
