"""Action model: the steps run on a file once its rule matches."""

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Optional, Union


class ActionType(Enum):
    """Tag of every action variant, as used in serialized rules and logs."""
    MOVE = "move"
    COPY = "copy"
    RENAME = "rename"
    SORT_INTO_SUBFOLDER = "sortIntoSubfolder"
    ARCHIVE = "archive"
    UNARCHIVE = "unarchive"
    DELETE = "delete"
    DELETE_PERMANENTLY = "deletePermanently"
    RUN_SCRIPT = "runScript"
    NOTIFY = "notify"
    OPEN = "open"
    OPEN_WITH = "openWith"
    SHOW_IN_FILE_MANAGER = "showInFileManager"
    MAKE_PDF_SEARCHABLE = "makePdfSearchable"
    PAUSE = "pause"
    CONTINUE = "continue"
    IGNORE = "ignore"


class ConflictResolution(Enum):
    """What to do when an action's destination already exists."""
    RENAME = "rename"
    REPLACE = "replace"
    SKIP = "skip"


class ArchiveFormat(Enum):
    ZIP = "zip"
    TAR = "tar"
    TAR_GZ = "tarGz"

    @property
    def suffix(self) -> str:
        return {
            ArchiveFormat.ZIP: ".zip",
            ArchiveFormat.TAR: ".tar",
            ArchiveFormat.TAR_GZ: ".tar.gz",
        }[self]


@dataclass
class MoveAction:
    action_type: ClassVar[ActionType] = ActionType.MOVE
    destination: str
    on_conflict: ConflictResolution = ConflictResolution.RENAME
    skip_duplicates: bool = False


@dataclass
class CopyAction:
    action_type: ClassVar[ActionType] = ActionType.COPY
    destination: str
    on_conflict: ConflictResolution = ConflictResolution.RENAME
    skip_duplicates: bool = False


@dataclass
class SortIntoSubfolderAction:
    """Move into a folder; the destination is always treated as a directory."""
    action_type: ClassVar[ActionType] = ActionType.SORT_INTO_SUBFOLDER
    destination: str
    on_conflict: ConflictResolution = ConflictResolution.RENAME


@dataclass
class RenameAction:
    action_type: ClassVar[ActionType] = ActionType.RENAME
    pattern: str
    on_conflict: ConflictResolution = ConflictResolution.RENAME


@dataclass
class ArchiveAction:
    action_type: ClassVar[ActionType] = ActionType.ARCHIVE
    destination: str
    format: ArchiveFormat = ArchiveFormat.ZIP
    delete_after: bool = False


@dataclass
class UnarchiveAction:
    action_type: ClassVar[ActionType] = ActionType.UNARCHIVE
    destination: Optional[str] = None
    delete_after: bool = False


@dataclass
class DeleteAction:
    """Move the file to the trash."""
    action_type: ClassVar[ActionType] = ActionType.DELETE


@dataclass
class DeletePermanentlyAction:
    """Remove the file for good; requires ``allow_permanent_delete``."""
    action_type: ClassVar[ActionType] = ActionType.DELETE_PERMANENTLY


@dataclass
class RunScriptAction:
    action_type: ClassVar[ActionType] = ActionType.RUN_SCRIPT
    command: str


@dataclass
class NotifyAction:
    action_type: ClassVar[ActionType] = ActionType.NOTIFY
    message: str


@dataclass
class OpenAction:
    action_type: ClassVar[ActionType] = ActionType.OPEN


@dataclass
class OpenWithAction:
    action_type: ClassVar[ActionType] = ActionType.OPEN_WITH
    app_path: str


@dataclass
class ShowInFileManagerAction:
    action_type: ClassVar[ActionType] = ActionType.SHOW_IN_FILE_MANAGER


@dataclass
class MakePdfSearchableAction:
    """Add an OCR text layer. ``destination`` None means in place."""
    action_type: ClassVar[ActionType] = ActionType.MAKE_PDF_SEARCHABLE
    destination: Optional[str] = None
    skip_if_text: bool = True


@dataclass
class PauseAction:
    action_type: ClassVar[ActionType] = ActionType.PAUSE
    duration_seconds: float


@dataclass
class ContinueAction:
    """Let later rules run even when this rule stops processing."""
    action_type: ClassVar[ActionType] = ActionType.CONTINUE


@dataclass
class IgnoreAction:
    """End the action list for this file."""
    action_type: ClassVar[ActionType] = ActionType.IGNORE


Action = Union[
    MoveAction,
    CopyAction,
    SortIntoSubfolderAction,
    RenameAction,
    ArchiveAction,
    UnarchiveAction,
    DeleteAction,
    DeletePermanentlyAction,
    RunScriptAction,
    NotifyAction,
    OpenAction,
    OpenWithAction,
    ShowInFileManagerAction,
    MakePdfSearchableAction,
    PauseAction,
    ContinueAction,
    IgnoreAction,
]

ACTION_TYPES = (
    MoveAction,
    CopyAction,
    SortIntoSubfolderAction,
    RenameAction,
    ArchiveAction,
    UnarchiveAction,
    DeleteAction,
    DeletePermanentlyAction,
    RunScriptAction,
    NotifyAction,
    OpenAction,
    OpenWithAction,
    ShowInFileManagerAction,
    MakePdfSearchableAction,
    PauseAction,
    ContinueAction,
    IgnoreAction,
)


def continues_after(actions) -> bool:
    """Whether a Continue action is reachable, i.e. not cut off by an Ignore."""
    for action in actions:
        if isinstance(action, IgnoreAction):
            return False
        if isinstance(action, ContinueAction):
            return True
    return False
