"""Archive creation and extraction for the archive and unarchive actions."""

import logging
import tarfile
import zipfile
from pathlib import Path

from ..exceptions import FileOperationError
from ..models.actions import ArchiveFormat

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIXES = (".tar.gz", ".tgz", ".tar", ".zip")


def create_archive(source: Path, target: Path, fmt: ArchiveFormat) -> Path:
    """Pack ``source`` (a file or a folder) into ``target``."""
    target.parent.mkdir(parents=True, exist_ok=True)

    if fmt == ArchiveFormat.ZIP:
        with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            if source.is_dir():
                for path in sorted(source.rglob("*")):
                    zf.write(path, Path(source.name) / path.relative_to(source))
            else:
                zf.write(source, source.name)
    else:
        mode = "w:gz" if fmt == ArchiveFormat.TAR_GZ else "w"
        with tarfile.open(target, mode) as tf:
            tf.add(source, arcname=source.name)

    logger.debug(f"Archived {source} -> {target}")
    return target


def archive_stem(path: Path) -> str:
    """File name without any archive suffix, used as the extraction folder."""
    name = path.name
    lower = name.lower()
    for suffix in ARCHIVE_SUFFIXES:
        if lower.endswith(suffix) and len(name) > len(suffix):
            return name[:-len(suffix)]
    return path.stem


def extract_archive(archive: Path, destination: Path) -> Path:
    """Extract ``archive`` into ``destination``.

    Raises:
        FileOperationError: If the format is unsupported or a member would be
            written outside ``destination``.
    """
    destination.mkdir(parents=True, exist_ok=True)
    root = destination.resolve()

    if zipfile.is_zipfile(archive):
        with zipfile.ZipFile(archive) as zf:
            for name in zf.namelist():
                _check_member(root, name)
            zf.extractall(destination)
    elif tarfile.is_tarfile(archive):
        with tarfile.open(archive) as tf:
            for member in tf.getmembers():
                _check_member(root, member.name)
                if member.issym() or member.islnk():
                    _check_member(root, member.linkname)
            if hasattr(tarfile, "data_filter"):
                tf.extractall(destination, filter="data")
            else:
                tf.extractall(destination)
    else:
        raise FileOperationError(f"Unsupported archive format: {archive.name}")

    logger.debug(f"Extracted {archive} -> {destination}")
    return destination


def _check_member(root: Path, name: str) -> None:
    target = (root / name).resolve()
    if target != root and root not in target.parents:
        raise FileOperationError(f"Archive member escapes destination: {name}")
