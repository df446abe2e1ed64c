"""Preview (dry run) of a rule or rule draft over sample files.

Preview shares the condition evaluator and token resolver with live
processing but never runs actions: it describes them, following the path the
file would take through moves and renames. ``{counter}`` is the file's
position in the sample and ``{random}`` is seeded from the file path, so the
same draft over the same files always previews the same way.
"""

import asyncio
import functools
import logging
import os
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

from ..exceptions import MetadataError, RuleValidationError
from ..models.actions import (
    ArchiveAction, ConflictResolution, ContinueAction, CopyAction, DeleteAction,
    DeletePermanentlyAction, IgnoreAction, MakePdfSearchableAction, MoveAction, NotifyAction,
    OpenAction, OpenWithAction, PauseAction, RenameAction, RunScriptAction,
    ShowInFileManagerAction, SortIntoSubfolderAction, UnarchiveAction,
)
from ..models.config import Settings
from ..models.file_info import FileInfo
from ..models.rule import Rule
from .archive import archive_stem
from .conditions import ConditionEvaluator
from .executor import build_destination
from .file_operations import unique_path
from .patterns import TokenContext, TokenResolver
from .rule_schema import rule_from_draft, validate_rule
from .scheduler import is_ignored

logger = logging.getLogger(__name__)

RuleOrDraft = Union[Rule, Dict]


@dataclass
class PreviewItem:
    """How one sample file fares against the previewed rule."""
    file_path: Path
    matched: bool
    condition_results: List[bool] = field(default_factory=list)
    actions: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class _Simulation:
    """Where the file would be while its actions are described."""
    info: FileInfo
    context: TokenContext
    resolver: TokenResolver

    def resolve(self, pattern: str) -> str:
        self.context.file_info = self.info
        return self.resolver.resolve(pattern, self.context)

    def move_to(self, path: Path) -> None:
        self.info = self.info.moved_to(path)


def _conflict_target(target: Path, source: Path, policy: ConflictResolution,
                     skip_duplicates: bool = False) -> Optional[Path]:
    # Read-only version of the executor's conflict handling; None means skipped
    if target == source or not target.exists():
        return target
    if skip_duplicates or policy == ConflictResolution.SKIP:
        return None
    if policy == ConflictResolution.REPLACE:
        return target
    return unique_path(target)


def _describe_transfer(label: str, action, sim: _Simulation, move: bool) -> str:
    source = sim.info.path
    target = build_destination(sim.resolve(action.destination), source, always_folder=True)
    resolved = _conflict_target(target, source, action.on_conflict,
                                getattr(action, "skip_duplicates", False))
    if resolved is None:
        return f"{label} -> {target} (skipped, destination exists)"

    suffix = " (replaces existing)" if resolved.exists() and resolved != source else ""
    if move:
        sim.move_to(resolved)
    return f"{label} -> {resolved}{suffix}"


def _describe_rename(action: RenameAction, sim: _Simulation) -> str:
    source = sim.info.path
    target = source.parent / sim.resolve(action.pattern)
    resolved = _conflict_target(target, source, action.on_conflict)
    if resolved is None:
        return f"Rename -> {target.name} (skipped, destination exists)"
    sim.move_to(resolved)
    return f"Rename -> {resolved.name}"


def _describe_archive(action: ArchiveAction, sim: _Simulation) -> str:
    source = sim.info.path
    target = build_destination(sim.resolve(action.destination), source)
    if target.name == source.name:
        target = target.with_name(source.name + action.format.suffix)
    description = f"Archive -> {unique_path(target)}"
    if action.delete_after:
        description += " (delete original)"
    return description


def _describe_unarchive(action: UnarchiveAction, sim: _Simulation) -> str:
    source = sim.info.path
    if action.destination:
        target = Path(sim.resolve(action.destination)).expanduser()
        if not target.is_absolute():
            target = source.parent / target
    else:
        target = source.parent / archive_stem(source)
    return f"Unarchive -> {target}"


DESCRIBERS: Dict[type, Callable] = {
    MoveAction: lambda a, sim: _describe_transfer("Move", a, sim, move=True),
    CopyAction: lambda a, sim: _describe_transfer("Copy", a, sim, move=False),
    SortIntoSubfolderAction: lambda a, sim: _describe_transfer("Sort", a, sim, move=True),
    RenameAction: _describe_rename,
    ArchiveAction: _describe_archive,
    UnarchiveAction: _describe_unarchive,
    DeleteAction: lambda a, sim: "Delete (Trash)",
    DeletePermanentlyAction: lambda a, sim: "Delete Permanently",
    RunScriptAction: lambda a, sim: f"Run: {sim.resolve(a.command)}",
    NotifyAction: lambda a, sim: f"Notify: {sim.resolve(a.message)}",
    OpenAction: lambda a, sim: "Open with default app",
    OpenWithAction: lambda a, sim: f"Open with {a.app_path}",
    ShowInFileManagerAction: lambda a, sim: "Show in file manager",
    MakePdfSearchableAction: lambda a, sim: "Make PDF searchable (OCR)",
    PauseAction: lambda a, sim: f"Pause {a.duration_seconds:g}s",
    ContinueAction: lambda a, sim: "Continue matching rules",
    IgnoreAction: lambda a, sim: "Ignore",
}


def describe_actions(actions, sim: _Simulation) -> List[str]:
    descriptions = []
    for action in actions:
        describer = DESCRIBERS.get(type(action))
        if describer is None:
            raise TypeError(f"Unsupported action type: {type(action).__name__}")
        descriptions.append(describer(action, sim))
        if isinstance(action, IgnoreAction):
            break
    return descriptions


class PreviewService:
    """Dry-run evaluation of a rule over sample files. Never touches the disk."""

    def __init__(self, settings: Optional[Settings] = None,
                 evaluator: Optional[ConditionEvaluator] = None,
                 resolver: Optional[TokenResolver] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 activity_log=None):
        self.settings = settings or Settings()
        self.evaluator = evaluator or ConditionEvaluator(self.settings)
        self.resolver = resolver or TokenResolver()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.activity_log = activity_log

    def preview(self, rule_or_draft: RuleOrDraft, sample_files: Iterable[Path],
                limit: Optional[int] = None, skip_content: bool = False) -> List[PreviewItem]:
        """Preview a rule, or a serialized rule draft, over ``sample_files``.

        Raises:
            RuleValidationError: If the rule or draft is invalid.
        """
        rule = self._as_rule(rule_or_draft)
        if limit is None:
            limit = self.settings.preview_max_files
        now = self.clock()
        evaluator = self._evaluator_for(now, skip_content)

        items = []
        for index, path in enumerate(list(sample_files)[:limit], start=1):
            items.append(self._preview_file(rule, Path(path), index, now, evaluator))
        return items

    def _as_rule(self, rule_or_draft: RuleOrDraft) -> Rule:
        if isinstance(rule_or_draft, Rule):
            return validate_rule(rule_or_draft)
        if isinstance(rule_or_draft, dict):
            return rule_from_draft(rule_or_draft)
        raise RuleValidationError([f"Cannot preview a {type(rule_or_draft).__name__}"])

    def _evaluator_for(self, now: datetime, skip_content: bool) -> ConditionEvaluator:
        # Same capabilities, frozen clock for the whole request
        base = self.evaluator
        return ConditionEvaluator(
            settings=base.settings,
            operations=base.operations,
            content_provider=base.content_provider,
            content_cache=base.content_cache,
            clock=lambda: now,
            time_clock=base.time_clock,
            skip_content=skip_content or base.skip_content,
        )

    def _preview_file(self, rule: Rule, path: Path, index: int, now: datetime,
                      evaluator: ConditionEvaluator) -> PreviewItem:
        try:
            info = FileInfo.from_path(path)
        except MetadataError as e:
            logger.warning(f"Cannot preview {path}: {e}")
            return PreviewItem(path, False, error=str(e))

        if self.activity_log is not None:
            info = info.with_last_matched(self.activity_log.last_match_time(path))

        flags, evaluation = evaluator.explain_group(rule.conditions, info)
        actions: List[str] = []
        if evaluation.matched:
            context = TokenContext.from_settings(
                info, self.settings,
                captures=evaluation.captures,
                now=now,
                counter=index,
                rng=random.Random(os.fspath(path)),
            )
            actions = describe_actions(rule.actions, _Simulation(info, context, self.resolver))

        return PreviewItem(path, evaluation.matched, flags, actions)


def collect_sample(folder: Path, limit: int, ignore_patterns: Iterable[str] = (),
                   max_depth: Optional[int] = None) -> List[Path]:
    """Files under ``folder`` in sorted order, up to ``limit``.

    ``max_depth`` 1 means only the folder's direct children.
    """
    folder = Path(folder)
    patterns = list(ignore_patterns)
    files: List[Path] = []

    for root, dirs, names in os.walk(folder):
        root_path = Path(root)
        depth = len(root_path.relative_to(folder).parts) + 1
        dirs[:] = sorted(d for d in dirs if not is_ignored(Path(d), patterns))
        if max_depth is not None and depth >= max_depth:
            dirs[:] = []

        for name in sorted(names):
            path = root_path / name
            if is_ignored(Path(name), patterns):
                continue
            if len(files) >= limit:
                return files
            files.append(path)
    return files


def preview_folder(service: PreviewService, rule_or_draft: RuleOrDraft, folder: Path,
                   limit: Optional[int] = None, max_depth: Optional[int] = None,
                   skip_content: bool = False) -> List[PreviewItem]:
    """Preview a rule over the files of a folder."""
    if limit is None:
        limit = service.settings.preview_max_files
    sample = collect_sample(folder, limit, service.settings.ignore_patterns, max_depth)
    return service.preview(rule_or_draft, sample, limit=limit, skip_content=skip_content)


@dataclass
class PreviewResult:
    generation: int
    items: List[PreviewItem]


class PreviewCoordinator:
    """Debounces preview requests and drops results that have been superseded.

    Every request gets a new generation number. A finished preview is only
    published when its generation is still the newest, so a slow, older
    request can never overwrite a newer result.
    """

    def __init__(self, service: PreviewService, debounce_ms: Optional[int] = None,
                 on_result: Optional[Callable[[PreviewResult], None]] = None,
                 on_error: Optional[Callable[[Exception], None]] = None):
        self.service = service
        self.debounce_ms = service.settings.preview_debounce_ms if debounce_ms is None else debounce_ms
        self.on_result = on_result
        self.on_error = on_error
        self.generation = 0
        self.latest: Optional[PreviewResult] = None
        self._pending: Optional[asyncio.Task] = None

    def submit(self, draft: RuleOrDraft, files: Iterable[Path], limit: Optional[int] = None,
               skip_content: bool = False) -> asyncio.Task:
        """Schedule a preview after the debounce delay, replacing any pending one."""
        self.cancel()
        generation = self.generation
        files = list(files)
        self._pending = asyncio.get_running_loop().create_task(
            self._debounced(generation, draft, files, limit, skip_content))
        return self._pending

    async def request(self, draft: RuleOrDraft, files: Iterable[Path], limit: Optional[int] = None,
                      skip_content: bool = False) -> Optional[List[PreviewItem]]:
        """Run a preview now. Returns None if a newer request superseded it."""
        self.cancel()
        return await self._run(self.generation, draft, list(files), limit, skip_content)

    def cancel(self) -> None:
        """Drop the pending preview; results still in flight become stale."""
        self.generation += 1
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    async def _debounced(self, generation: int, draft, files, limit, skip_content):
        await asyncio.sleep(self.debounce_ms / 1000)
        try:
            return await self._run(generation, draft, files, limit, skip_content)
        except RuleValidationError as e:
            logger.warning(f"Preview rejected: {e}")
            if self.on_error is not None and generation == self.generation:
                self.on_error(e)
            return None

    async def _run(self, generation: int, draft, files, limit, skip_content):
        loop = asyncio.get_running_loop()
        items = await loop.run_in_executor(
            None, functools.partial(self.service.preview, draft, files, limit, skip_content))

        if generation != self.generation:
            logger.debug(f"Discarding stale preview {generation} (current {self.generation})")
            return None

        self.latest = PreviewResult(generation, items)
        if self.on_result is not None:
            self.on_result(self.latest)
        return items
