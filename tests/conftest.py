"""Shared fixtures for file dispatch tests."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from file_dispatch.models.conditions import FileKind
from file_dispatch.models.config import Settings
from file_dispatch.models.file_info import FileInfo


def make_info(path="/data/inbox/report.pdf", size=1536, created=None, modified=None,
              kind=FileKind.DOCUMENT, last_matched=None) -> FileInfo:
    """Build a FileInfo without touching the disk."""
    path = Path(path)
    created = created or datetime(2024, 3, 5, 14, 7, 9, tzinfo=timezone.utc)
    return FileInfo(
        path=path,
        name=path.stem,
        extension=path.suffix[1:].lower(),
        full_name=path.name,
        size=size,
        created=created,
        modified=modified or created,
        added=created,
        kind=kind,
        parent=path.parent.name or None,
        last_matched=last_matched,
    )


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def inbox(tmp_path):
    """A folder with a few sample files."""
    folder = tmp_path / "inbox"
    folder.mkdir()
    (folder / "invoice-march.pdf").write_bytes(b"%PDF-1.4 fake")
    (folder / "notes.txt").write_text("Invoice number 42\n")
    (folder / "photo.jpg").write_bytes(b"\xff\xd8\xff")
    return folder
