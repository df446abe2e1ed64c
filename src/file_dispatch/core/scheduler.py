"""Rule scheduler: runs a folder's rules, in order, against one file event.

Per file the flow is PENDING -> EVALUATING (rule i) -> MATCHED | UNMATCHED
-> ... -> DONE. The folder's rules are snapshotted at PENDING, so edits made
while a file is being processed only affect later events.
"""

import asyncio
import copy
import fnmatch
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from ..exceptions import MetadataError
from ..models.config import Settings
from ..models.file_info import FileInfo
from ..models.rule import Rule
from .conditions import ConditionEvaluator
from .executor import ActionExecutor, ActionOutcome

logger = logging.getLogger(__name__)


class ProcessingState(Enum):
    PENDING = "pending"
    EVALUATING = "evaluating"
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    DONE = "done"
    IGNORED = "ignored"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass
class RuleEvaluation:
    """Result of one rule against one file."""
    rule_id: str
    rule_name: str
    matched: bool
    captures: Dict[str, str] = field(default_factory=dict)
    outcomes: List[ActionOutcome] = field(default_factory=list)
    stopped: bool = False


@dataclass
class FileProcessingResult:
    path: Path
    state: ProcessingState
    evaluations: List[RuleEvaluation] = field(default_factory=list)
    final_path: Optional[Path] = None
    error: Optional[str] = None

    @property
    def matched_rules(self) -> List[str]:
        return [e.rule_name for e in self.evaluations if e.matched]

    @property
    def evaluated_rules(self) -> List[str]:
        return [e.rule_name for e in self.evaluations]

    @property
    def outcomes(self) -> List[ActionOutcome]:
        return [o for e in self.evaluations for o in e.outcomes]


def is_ignored(path: Path, patterns: Iterable[str]) -> bool:
    """Whether the file name or any component of ``path`` matches an ignore pattern."""
    parts = Path(path).parts
    return any(fnmatch.fnmatch(part, pattern) for pattern in patterns for part in parts)


class RuleScheduler:
    """Dispatches file events to the rules of their folder.

    Args:
        rules: Anything with ``list_by_folder(folder_id)``, usually a RuleRepository
        settings: Engine settings
        evaluator: Condition evaluator
        executor: Action pipeline
        activity_log: Optional ActivityLog for outcomes and match history
    """

    def __init__(self, rules, settings: Optional[Settings] = None,
                 evaluator: Optional[ConditionEvaluator] = None,
                 executor: Optional[ActionExecutor] = None,
                 activity_log=None):
        self.rules = rules
        self.settings = settings or Settings()
        self.evaluator = evaluator or ConditionEvaluator(self.settings)
        self.executor = executor or ActionExecutor(self.settings)
        self.activity_log = activity_log
        self._cancel_tokens: Dict[str, threading.Event] = {}
        self._tokens_lock = threading.Lock()
        self._pool = ThreadPoolExecutor(max_workers=self.settings.max_concurrent_rules)

    def cancel_token(self, folder_id: str) -> threading.Event:
        with self._tokens_lock:
            return self._cancel_tokens.setdefault(folder_id, threading.Event())

    def cancel_folder(self, folder_id: str) -> None:
        """Stop work for a folder. Running actions finish; the rest are cancelled."""
        logger.info(f"Cancelling processing for folder {folder_id}")
        self.cancel_token(folder_id).set()

    def resume_folder(self, folder_id: str) -> None:
        self.cancel_token(folder_id).clear()

    def snapshot(self, folder_id: str) -> List[Rule]:
        rules = sorted(self.rules.list_by_folder(folder_id), key=lambda r: r.position)
        return copy.deepcopy(rules)

    def dry_run(self, folder_id: str, path: Path) -> FileProcessingResult:
        return self.process_file(folder_id, path, dry_run=True)

    def process_file(self, folder_id: str, path: Path, dry_run: bool = False) -> FileProcessingResult:
        """Evaluate the folder's rules against one file and run matched actions.

        In dry-run mode nothing is executed; the stop decision is taken from the
        rule's action list instead.
        """
        path = Path(path)
        if is_ignored(path, self.settings.ignore_patterns):
            logger.debug(f"Ignoring {path}")
            return FileProcessingResult(path, ProcessingState.IGNORED, final_path=path)

        rules = self.snapshot(folder_id)
        token = self.cancel_token(folder_id)

        try:
            info = self._file_info(path)
        except MetadataError as e:
            logger.warning(f"No rules applied to {path}: {e}")
            return FileProcessingResult(path, ProcessingState.DONE, final_path=path, error=str(e))

        result = FileProcessingResult(path, ProcessingState.PENDING, final_path=path)

        for rule in rules:
            if not rule.enabled:
                continue
            if token.is_set():
                result.state = ProcessingState.CANCELLED
                return result

            result.state = ProcessingState.EVALUATING
            evaluation = self.evaluator.evaluate_group(rule.conditions, info)
            record = RuleEvaluation(rule.id, rule.name, evaluation.matched, evaluation.captures)
            result.evaluations.append(record)

            if not evaluation.matched:
                result.state = ProcessingState.UNMATCHED
                continue

            result.state = ProcessingState.MATCHED
            logger.info(f"Rule '{rule.name}' matched {info.path}")

            if dry_run:
                record.stopped = rule.stop_processing and not rule.continues
            else:
                execution = self.executor.execute(rule.actions, info, evaluation.captures, token)
                record.outcomes = execution.outcomes
                self._record(rule, info, execution.outcomes, execution.final_path)
                record.stopped = rule.stop_processing and not execution.continued

                if execution.cancelled:
                    result.state = ProcessingState.CANCELLED
                    result.final_path = execution.final_path
                    return result

                result.final_path = execution.final_path
                moved = execution.final_path != info.path or not execution.final_path.exists()
                if moved and not record.stopped:
                    info = self._refresh(info, execution.final_path)
                    if info is None:
                        break

            if record.stopped:
                break

        result.state = ProcessingState.DONE
        return result

    async def process_events(self, events: Iterable[Tuple[str, Path]],
                             dry_run: bool = False) -> List[FileProcessingResult]:
        """Process many (folder_id, path) events concurrently.

        At most ``max_concurrent_rules`` files are processed at once. A failure
        in one file is reported in its result and does not affect the others.
        """
        events = list(events)
        semaphore = asyncio.Semaphore(self.settings.max_concurrent_rules)
        loop = asyncio.get_running_loop()

        async def process_with_semaphore(folder_id, path):
            async with semaphore:
                return await loop.run_in_executor(
                    self._pool, self.process_file, folder_id, path, dry_run)

        tasks = [process_with_semaphore(folder_id, path) for folder_id, path in events]
        processed = await asyncio.gather(*tasks, return_exceptions=True)

        results = []
        for (folder_id, path), outcome in zip(events, processed):
            if isinstance(outcome, Exception):
                logger.error(f"Failed to process {path} in folder {folder_id}: {outcome}")
                outcome = FileProcessingResult(Path(path), ProcessingState.ERROR, error=str(outcome))
            results.append(outcome)
        return results

    def close(self) -> None:
        self._pool.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _file_info(self, path: Path) -> FileInfo:
        info = FileInfo.from_path(path)
        if self.activity_log is not None:
            info = info.with_last_matched(self.activity_log.last_match_time(path))
        return info

    def _refresh(self, info: FileInfo, new_path: Path) -> Optional[FileInfo]:
        # Later rules see the file where the previous rule left it
        try:
            return self._file_info(new_path)
        except MetadataError:
            logger.debug(f"{info.path} is gone after its actions; stopping")
            return None

    def _record(self, rule: Rule, info: FileInfo, outcomes: List[ActionOutcome],
                final_path: Optional[Path] = None) -> None:
        if self.activity_log is None:
            return
        self.activity_log.record_match(rule.id, info.path)
        # dateLastMatched is looked up wherever the file is next seen
        if final_path is not None and final_path != info.path:
            self.activity_log.record_match(rule.id, final_path)
        self.activity_log.record_outcomes(rule.id, rule.name, info.path, outcomes)
