"""Thin I/O capability invoked by the action pipeline.

Every operation returns a Result instead of raising, so the executor can turn
any failure into a reported outcome.
"""

import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Callable, List, Optional

from send2trash import send2trash

from ..domain.result import Failure, Result, Success, try_catch
from ..exceptions import FileOperationError
from ..models.actions import ArchiveFormat
from .archive import create_archive, extract_archive
from .content import OcrProvider

logger = logging.getLogger(__name__)

Notifier = Callable[[str, str], None]


def unique_path(path: Path, exists: Optional[Callable[[Path], bool]] = None) -> Path:
    """First free ``stem (n).ext`` next to ``path``, or ``path`` itself if free."""
    exists = exists or (lambda p: p.exists())
    if not exists(path):
        return path

    base = path.stem
    ext = path.suffix
    parent = path.parent
    counter = 1

    while True:
        new_path = parent / f"{base} ({counter}){ext}"
        if not exists(new_path):
            return new_path
        counter += 1


def _log_notification(title: str, message: str) -> None:
    logger.info(f"{title}: {message}")


class FileOperations:
    """Filesystem, process and desktop operations used by actions."""

    def __init__(self, script_timeout: Optional[float] = 60.0,
                 notifier: Optional[Notifier] = None,
                 ocr: Optional[OcrProvider] = None):
        self.script_timeout = script_timeout
        self.notifier = notifier or _log_notification
        self.ocr = ocr

    def move(self, source: Path, target: Path) -> Result[Path, FileOperationError]:
        def do_move() -> Path:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source), str(target))
            return target

        return self._wrap(do_move, f"Failed to move {source} to {target}")

    def copy(self, source: Path, target: Path) -> Result[Path, FileOperationError]:
        def do_copy() -> Path:
            target.parent.mkdir(parents=True, exist_ok=True)
            if source.is_dir():
                shutil.copytree(source, target)
            else:
                shutil.copy2(source, target)
            return target

        return self._wrap(do_copy, f"Failed to copy {source} to {target}")

    def remove(self, path: Path) -> Result[Path, FileOperationError]:
        """Delete ``path`` for good (files and folders)."""
        def do_remove() -> Path:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()
            return path

        return self._wrap(do_remove, f"Failed to delete {path}")

    def trash(self, path: Path) -> Result[Path, FileOperationError]:
        def do_trash() -> Path:
            send2trash(str(path))
            return path

        return self._wrap(do_trash, f"Failed to move {path} to trash")

    def archive(self, source: Path, target: Path, fmt: ArchiveFormat) -> Result[Path, FileOperationError]:
        return self._wrap(lambda: create_archive(source, target, fmt), f"Failed to archive {source}")

    def unarchive(self, archive: Path, destination: Path) -> Result[Path, FileOperationError]:
        return self._wrap(lambda: extract_archive(archive, destination), f"Failed to extract {archive}")

    def run_script(self, command: str, file_path: Path) -> Result[int, FileOperationError]:
        """Run ``command`` through the shell with ``FILE_PATH`` set.

        Success carries the exit code; launch errors and timeouts are failures.
        The command runs unsandboxed with the user's privileges.
        """
        env = dict(os.environ)
        env["FILE_PATH"] = str(file_path)
        args = ["cmd", "/C", command] if sys.platform == "win32" else ["sh", "-c", command]

        try:
            completed = subprocess.run(
                args,
                env=env,
                capture_output=True,
                timeout=self.script_timeout,
            )
        except subprocess.TimeoutExpired:
            return Failure(FileOperationError(
                f"Script timed out after {self.script_timeout}s: {command}"))
        except OSError as e:
            return Failure(FileOperationError(f"Failed to run script: {e}"))

        if completed.returncode != 0:
            stderr = completed.stderr.decode("utf-8", errors="replace").strip()
            logger.debug(f"Script exited with {completed.returncode}: {stderr}")
        return Success(completed.returncode)

    def open_path(self, path: Path) -> Result[Path, FileOperationError]:
        if sys.platform == "win32":
            return self._wrap(lambda: os.startfile(str(path)) or path, f"Failed to open {path}")
        opener = "open" if sys.platform == "darwin" else "xdg-open"
        return self._launch([opener, str(path)], path)

    def open_with(self, path: Path, app_path: str) -> Result[Path, FileOperationError]:
        if sys.platform == "darwin":
            return self._launch(["open", "-a", app_path, str(path)], path)
        return self._launch([app_path, str(path)], path)

    def reveal(self, path: Path) -> Result[Path, FileOperationError]:
        """Show ``path`` in the platform file manager."""
        if sys.platform == "darwin":
            return self._launch(["open", "-R", str(path)], path)
        if sys.platform == "win32":
            return self._launch(["explorer", f"/select,{path}"], path)
        return self._launch(["xdg-open", str(path.parent)], path)

    def notify(self, title: str, message: str) -> Result[str, FileOperationError]:
        return self._wrap(lambda: self.notifier(title, message) or message, "Failed to show notification")

    def make_searchable(self, path: Path, destination: Optional[Path] = None) -> Result[Path, FileOperationError]:
        if self.ocr is None:
            return Failure(FileOperationError("No OCR provider configured"))
        return self._wrap(lambda: self.ocr.make_searchable(path, destination),
                          f"Failed to make {path.name} searchable")

    def has_text_layer(self, path: Path) -> bool:
        return self.ocr is not None and self.ocr.has_text_layer(path)

    def _launch(self, args: List[str], path: Path) -> Result[Path, FileOperationError]:
        def do_launch() -> Path:
            subprocess.Popen(
                args,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
            return path

        return self._wrap(do_launch, f"Failed to launch {args[0]}")

    @staticmethod
    def _wrap(fn: Callable, message: str) -> Result:
        result = try_catch(fn, Exception)
        if result.is_failure():
            error = result.error()
            if isinstance(error, FileOperationError):
                return result
            return Failure(FileOperationError(f"{message}: {error}"))
        return result
