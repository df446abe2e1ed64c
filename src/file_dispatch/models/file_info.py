"""File metadata access for rule evaluation."""

import mimetypes
import os
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..exceptions import MetadataError
from .conditions import FileKind

CODE_EXTENSIONS = {
    "rs", "js", "ts", "tsx", "jsx", "py", "go", "java", "kt", "swift", "cpp", "c", "h", "hpp",
    "cs", "rb", "php", "html", "css", "scss", "json", "yaml", "yml", "toml", "sh",
}

ARCHIVE_EXTENSIONS = {"zip", "tar", "gz", "tgz", "bz2", "xz", "7z", "rar"}

DOCUMENT_EXTENSIONS = {
    "pdf", "txt", "md", "rtf", "doc", "docx", "odt", "xls", "xlsx", "ods", "ppt", "pptx", "odp",
    "csv", "epub", "pages", "numbers", "key",
}


@dataclass(frozen=True)
class FileInfo:
    """Snapshot of the metadata conditions and tokens are evaluated against.

    Timestamps are timezone-aware UTC. A field that could not be read is None,
    and any condition that needs it fails closed.
    """
    path: Path
    name: str
    extension: str
    full_name: str
    size: Optional[int]
    created: Optional[datetime]
    modified: Optional[datetime]
    added: Optional[datetime]
    kind: Optional[FileKind]
    parent: Optional[str] = None
    is_dir: bool = False
    last_matched: Optional[datetime] = None

    @classmethod
    def from_path(cls, path: Path) -> "FileInfo":
        """Read metadata for ``path``.

        Raises:
            MetadataError: If the path cannot be stat'ed at all.
        """
        path = Path(path)
        try:
            stat = path.stat()
        except OSError as e:
            raise MetadataError(f"Cannot read metadata for {path}: {e}")

        is_dir = path.is_dir()
        modified = _from_timestamp(stat.st_mtime)
        birth = getattr(stat, "st_birthtime", None)
        created = _from_timestamp(birth) if birth is not None else modified
        extension = path.suffix[1:].lower() if path.suffix else ""

        return cls(
            path=path,
            name=path.stem if not is_dir else path.name,
            extension=extension if not is_dir else "",
            full_name=path.name,
            size=0 if is_dir else stat.st_size,
            created=created,
            modified=modified,
            added=created,
            kind=detect_kind(path, is_dir, extension),
            parent=path.parent.name or None,
            is_dir=is_dir,
        )

    def with_last_matched(self, last_matched: Optional[datetime]) -> "FileInfo":
        return replace(self, last_matched=last_matched)

    def moved_to(self, new_path: Path) -> "FileInfo":
        """Same metadata, re-pointed at a path the file was moved or renamed to."""
        new_path = Path(new_path)
        extension = new_path.suffix[1:].lower() if new_path.suffix else ""
        return replace(
            self,
            path=new_path,
            name=new_path.stem,
            extension=extension,
            full_name=new_path.name,
            parent=new_path.parent.name or None,
        )


def _from_timestamp(value: float) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def detect_kind(path: Path, is_dir: bool, extension: str) -> FileKind:
    """Classify a path by its extension and guessed MIME type."""
    if is_dir:
        return FileKind.FOLDER

    if extension in ARCHIVE_EXTENSIONS:
        return FileKind.ARCHIVE

    mime, _ = mimetypes.guess_type(os.fspath(path), strict=False)
    if mime:
        if mime.startswith("image/"):
            return FileKind.IMAGE
        if mime.startswith("video/"):
            return FileKind.VIDEO
        if mime.startswith("audio/"):
            return FileKind.AUDIO
        if "zip" in mime or "tar" in mime or "archive" in mime:
            return FileKind.ARCHIVE

    if extension in CODE_EXTENSIONS:
        return FileKind.CODE

    if extension in DOCUMENT_EXTENSIONS or (mime and mime.startswith("text/")):
        return FileKind.DOCUMENT

    if not extension:
        return FileKind.FILE

    return FileKind.OTHER
