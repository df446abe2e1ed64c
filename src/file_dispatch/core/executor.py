"""Action pipeline: runs a matched rule's actions on one file, in order."""

import logging
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from ..exceptions import RejectedOperationError
from ..models.actions import (
    ActionType, ArchiveAction, ConflictResolution, ContinueAction, CopyAction, DeleteAction,
    DeletePermanentlyAction, IgnoreAction, MakePdfSearchableAction, MoveAction, NotifyAction,
    OpenAction, OpenWithAction, PauseAction, RenameAction, RunScriptAction,
    ShowInFileManagerAction, SortIntoSubfolderAction, UnarchiveAction,
)
from ..models.config import Settings
from ..models.file_info import FileInfo
from .archive import archive_stem
from .file_operations import FileOperations, unique_path
from .patterns import TokenContext, TokenResolver

logger = logging.getLogger(__name__)

NOTIFICATION_TITLE = "File Dispatch"


class OutcomeStatus(Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


@dataclass
class ActionOutcome:
    """What happened when one action ran."""
    action_type: ActionType
    status: OutcomeStatus
    source_path: Optional[Path] = None
    destination_path: Optional[Path] = None
    error: Optional[str] = None

    @property
    def stops_pipeline(self) -> bool:
        return self.status in (OutcomeStatus.FAILED, OutcomeStatus.REJECTED)


@dataclass
class ExecutionResult:
    """Outcomes of one pipeline run and where the file ended up."""
    outcomes: List[ActionOutcome] = field(default_factory=list)
    final_path: Optional[Path] = None
    continued: bool = False

    @property
    def failed(self) -> bool:
        return any(o.stops_pipeline for o in self.outcomes)

    @property
    def cancelled(self) -> bool:
        return any(o.status == OutcomeStatus.CANCELLED for o in self.outcomes)


def build_destination(resolved: str, current_path: Path, always_folder: bool = False,
                      is_dir: Optional[Callable[[Path], bool]] = None) -> Path:
    """Turn a resolved destination pattern into a target path.

    ``~`` expands to the home directory and relative paths resolve against the
    file's current folder. Move, copy and sort destinations always name a
    folder and pass ``always_folder``; otherwise the file name is appended
    only when the destination is an existing folder or ends with a separator.
    """
    is_dir = is_dir or (lambda p: p.is_dir())
    ends_with_separator = resolved.endswith("/") or resolved.endswith(os.sep)

    target = Path(resolved).expanduser()
    if not target.is_absolute():
        target = current_path.parent / target

    if always_folder or ends_with_separator or is_dir(target):
        target = target / current_path.name
    return target


@dataclass
class _PipelineState:
    file_info: FileInfo
    current_path: Path
    captures: Dict[str, str]
    continued: bool = False

    @property
    def current_info(self) -> FileInfo:
        if self.current_path == self.file_info.path:
            return self.file_info
        return self.file_info.moved_to(self.current_path)


class ActionExecutor:
    """Executes action lists against files.

    Each action resolves its tokens right before it runs, against the file's
    current path, so a rename after a move sees the moved file. A failed or
    rejected action stops the pipeline for that file.
    """

    def __init__(self, settings: Optional[Settings] = None,
                 operations: Optional[FileOperations] = None,
                 resolver: Optional[TokenResolver] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Optional[Callable[[], datetime]] = None):
        self.settings = settings or Settings()
        self.operations = operations or FileOperations(script_timeout=self.settings.script_timeout_seconds)
        self.resolver = resolver or TokenResolver()
        self.sleep = sleep
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        # Held from picking a free target until the file is in place
        self._target_lock = threading.Lock()

    HANDLERS = {
        MoveAction: lambda self, a, s: self._transfer(a, s, move=True),
        CopyAction: lambda self, a, s: self._transfer(a, s, move=False),
        SortIntoSubfolderAction: lambda self, a, s: self._transfer(a, s, move=True),
        RenameAction: lambda self, a, s: self._rename(a, s),
        ArchiveAction: lambda self, a, s: self._archive(a, s),
        UnarchiveAction: lambda self, a, s: self._unarchive(a, s),
        DeleteAction: lambda self, a, s: self._delete(a, s),
        DeletePermanentlyAction: lambda self, a, s: self._delete_permanently(a, s),
        RunScriptAction: lambda self, a, s: self._run_script(a, s),
        NotifyAction: lambda self, a, s: self._notify(a, s),
        OpenAction: lambda self, a, s: self._simple(a, s, self.operations.open_path(s.current_path)),
        OpenWithAction: lambda self, a, s: self._simple(
            a, s, self.operations.open_with(s.current_path, a.app_path)),
        ShowInFileManagerAction: lambda self, a, s: self._simple(a, s, self.operations.reveal(s.current_path)),
        MakePdfSearchableAction: lambda self, a, s: self._make_searchable(a, s),
        PauseAction: lambda self, a, s: self._pause(a, s),
        ContinueAction: lambda self, a, s: self._continue(a, s),
        IgnoreAction: lambda self, a, s: ActionOutcome(
            ActionType.IGNORE, OutcomeStatus.SKIPPED, s.current_path, error="Ignored by rule"),
    }

    def execute(self, actions, file_info: FileInfo, captures: Optional[Dict[str, str]] = None,
                cancel_token: Optional[threading.Event] = None) -> ExecutionResult:
        """Run ``actions`` in order on ``file_info``.

        Args:
            actions: The matched rule's action list
            file_info: Metadata of the file as it was when the rule matched
            captures: Regex captures from the condition tree
            cancel_token: Checked before every action; once set, the remaining
                actions are reported as cancelled

        Returns:
            ExecutionResult with one outcome per action that was reached
        """
        state = _PipelineState(file_info, file_info.path, dict(captures or {}))
        result = ExecutionResult(final_path=file_info.path)
        actions = list(actions)

        for index, action in enumerate(actions):
            if cancel_token is not None and cancel_token.is_set():
                for remaining in actions[index:]:
                    result.outcomes.append(ActionOutcome(
                        remaining.action_type, OutcomeStatus.CANCELLED, state.current_path,
                        error="Cancelled"))
                logger.info(f"Cancelled remaining actions for {state.current_path}")
                break

            outcome = self._run_action(action, state)
            result.outcomes.append(outcome)

            if isinstance(action, IgnoreAction):
                break
            if outcome.stops_pipeline:
                logger.warning(
                    f"{action.action_type.value} {outcome.status.value} for {outcome.source_path}: "
                    f"{outcome.error}")
                break

        result.final_path = state.current_path
        result.continued = state.continued
        return result

    def _run_action(self, action, state: _PipelineState) -> ActionOutcome:
        handler = self.HANDLERS.get(type(action))
        if handler is None:
            raise TypeError(f"Unsupported action type: {type(action).__name__}")
        try:
            return handler(self, action, state)
        except Exception as e:
            logger.exception(f"Unexpected error in {action.action_type.value} for {state.current_path}")
            return ActionOutcome(action.action_type, OutcomeStatus.FAILED, state.current_path, error=str(e))

    def _context(self, state: _PipelineState) -> TokenContext:
        return TokenContext.from_settings(
            state.current_info, self.settings, captures=state.captures, now=self.clock())

    def _resolve(self, pattern: str, state: _PipelineState) -> str:
        return self.resolver.resolve(pattern, self._context(state))

    def _prepare_target(self, action_type: ActionType, source: Path, target: Path,
                        policy: ConflictResolution,
                        skip_duplicates: bool = False) -> Tuple[Optional[Path], Optional[ActionOutcome]]:
        """Apply the conflict policy. Returns a target, or an outcome that ends the action."""
        if target == source:
            return None, ActionOutcome(action_type, OutcomeStatus.SKIPPED, source, target,
                                       error="Already at destination")
        if not target.exists():
            return target, None

        if skip_duplicates or policy == ConflictResolution.SKIP:
            logger.info(f"Destination exists, skipping {action_type.value}: {target}")
            return None, ActionOutcome(action_type, OutcomeStatus.SKIPPED, source, target,
                                       error="Destination exists; skipped")

        if policy == ConflictResolution.REPLACE:
            removed = self.operations.remove(target)
            if removed.is_failure():
                return None, ActionOutcome(action_type, OutcomeStatus.FAILED, source, target,
                                           error=str(removed.error()))
            return target, None

        return unique_path(target), None

    def _transfer(self, action, state: _PipelineState, move: bool) -> ActionOutcome:
        source = state.current_path
        target = build_destination(self._resolve(action.destination, state), source, always_folder=True)
        skip_duplicates = getattr(action, "skip_duplicates", False)

        with self._target_lock:
            target, early = self._prepare_target(action.action_type, source, target,
                                                 action.on_conflict, skip_duplicates)
            if early is not None:
                return early
            result = self.operations.move(source, target) if move else self.operations.copy(source, target)

        if result.is_failure():
            return ActionOutcome(action.action_type, OutcomeStatus.FAILED, source, target,
                                 error=str(result.error()))

        if move:
            state.current_path = target
        logger.info(f"{action.action_type.value}: {source} -> {target}")
        return ActionOutcome(action.action_type, OutcomeStatus.SUCCESS, source, target)

    def _rename(self, action: RenameAction, state: _PipelineState) -> ActionOutcome:
        source = state.current_path
        new_name = self._resolve(action.pattern, state)
        target = source.parent / new_name

        with self._target_lock:
            target, early = self._prepare_target(ActionType.RENAME, source, target, action.on_conflict)
            if early is not None:
                return early
            result = self.operations.move(source, target)

        if result.is_failure():
            return ActionOutcome(ActionType.RENAME, OutcomeStatus.FAILED, source, target,
                                 error=str(result.error()))

        state.current_path = target
        logger.info(f"Renamed {source.name} -> {target.name}")
        return ActionOutcome(ActionType.RENAME, OutcomeStatus.SUCCESS, source, target)

    def _archive(self, action: ArchiveAction, state: _PipelineState) -> ActionOutcome:
        source = state.current_path
        resolved = self._resolve(action.destination, state)
        target = build_destination(resolved, source)
        if target.name == source.name:
            target = target.with_name(source.name + action.format.suffix)
        with self._target_lock:
            target = unique_path(target)
            result = self.operations.archive(source, target, action.format)
        if result.is_failure():
            return ActionOutcome(ActionType.ARCHIVE, OutcomeStatus.FAILED, source, target,
                                 error=str(result.error()))

        if action.delete_after:
            removed = self.operations.remove(source)
            if removed.is_failure():
                return ActionOutcome(ActionType.ARCHIVE, OutcomeStatus.FAILED, source, target,
                                     error=str(removed.error()))
        logger.info(f"Archived {source} -> {target}")
        return ActionOutcome(ActionType.ARCHIVE, OutcomeStatus.SUCCESS, source, target)

    def _unarchive(self, action: UnarchiveAction, state: _PipelineState) -> ActionOutcome:
        source = state.current_path
        if action.destination:
            target = Path(self._resolve(action.destination, state)).expanduser()
            if not target.is_absolute():
                target = source.parent / target
        else:
            target = source.parent / archive_stem(source)

        result = self.operations.unarchive(source, target)
        if result.is_failure():
            return ActionOutcome(ActionType.UNARCHIVE, OutcomeStatus.FAILED, source, target,
                                 error=str(result.error()))

        if action.delete_after:
            removed = self.operations.remove(source)
            if removed.is_failure():
                return ActionOutcome(ActionType.UNARCHIVE, OutcomeStatus.FAILED, source, target,
                                     error=str(removed.error()))
        logger.info(f"Extracted {source} -> {target}")
        return ActionOutcome(ActionType.UNARCHIVE, OutcomeStatus.SUCCESS, source, target)

    def _delete(self, action: DeleteAction, state: _PipelineState) -> ActionOutcome:
        return self._simple(action, state, self.operations.trash(state.current_path))

    def _delete_permanently(self, action: DeletePermanentlyAction, state: _PipelineState) -> ActionOutcome:
        if not self.settings.allow_permanent_delete:
            error = RejectedOperationError("Permanent delete is disabled in settings")
            return ActionOutcome(ActionType.DELETE_PERMANENTLY, OutcomeStatus.REJECTED,
                                 state.current_path, error=str(error))
        return self._simple(action, state, self.operations.remove(state.current_path))

    def _run_script(self, action: RunScriptAction, state: _PipelineState) -> ActionOutcome:
        command = self._resolve(action.command, state)
        result = self.operations.run_script(command, state.current_path)
        if result.is_failure():
            return ActionOutcome(ActionType.RUN_SCRIPT, OutcomeStatus.FAILED, state.current_path,
                                 error=str(result.error()))
        if result.value() != 0:
            return ActionOutcome(ActionType.RUN_SCRIPT, OutcomeStatus.FAILED, state.current_path,
                                 error=f"Script exited with status {result.value()}")
        return ActionOutcome(ActionType.RUN_SCRIPT, OutcomeStatus.SUCCESS, state.current_path)

    def _notify(self, action: NotifyAction, state: _PipelineState) -> ActionOutcome:
        if not self.settings.show_notifications:
            return ActionOutcome(ActionType.NOTIFY, OutcomeStatus.SKIPPED, state.current_path,
                                 error="Notifications disabled")
        message = self._resolve(action.message, state)
        return self._simple(action, state, self.operations.notify(NOTIFICATION_TITLE, message))

    def _make_searchable(self, action: MakePdfSearchableAction, state: _PipelineState) -> ActionOutcome:
        source = state.current_path
        if source.suffix.lower() != ".pdf":
            return ActionOutcome(ActionType.MAKE_PDF_SEARCHABLE, OutcomeStatus.SKIPPED, source,
                                 error="Not a PDF")
        if not self.settings.content_enable_ocr:
            return ActionOutcome(ActionType.MAKE_PDF_SEARCHABLE, OutcomeStatus.FAILED, source,
                                 error="OCR is disabled in settings")
        if action.skip_if_text and self.operations.has_text_layer(source):
            return ActionOutcome(ActionType.MAKE_PDF_SEARCHABLE, OutcomeStatus.SKIPPED, source,
                                 error="PDF already has a text layer")

        destination = None
        if action.destination:
            destination = build_destination(self._resolve(action.destination, state), source)

        result = self.operations.make_searchable(source, destination)
        if result.is_failure():
            return ActionOutcome(ActionType.MAKE_PDF_SEARCHABLE, OutcomeStatus.FAILED, source, destination,
                                 error=str(result.error()))
        return ActionOutcome(ActionType.MAKE_PDF_SEARCHABLE, OutcomeStatus.SUCCESS, source, result.value())

    def _pause(self, action: PauseAction, state: _PipelineState) -> ActionOutcome:
        if action.duration_seconds > 0:
            self.sleep(action.duration_seconds)
        return ActionOutcome(ActionType.PAUSE, OutcomeStatus.SUCCESS, state.current_path)

    def _continue(self, action: ContinueAction, state: _PipelineState) -> ActionOutcome:
        state.continued = True
        return ActionOutcome(ActionType.CONTINUE, OutcomeStatus.SUCCESS, state.current_path)

    def _simple(self, action, state: _PipelineState, result) -> ActionOutcome:
        if result.is_failure():
            return ActionOutcome(action.action_type, OutcomeStatus.FAILED, state.current_path,
                                 error=str(result.error()))
        logger.info(f"{action.action_type.value}: {state.current_path}")
        return ActionOutcome(action.action_type, OutcomeStatus.SUCCESS, state.current_path)
