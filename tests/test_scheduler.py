"""Tests for the rule scheduler."""

import threading
import time

import pytest

from file_dispatch.core.conditions import EvaluationResult
from file_dispatch.core.executor import ActionExecutor, OutcomeStatus
from file_dispatch.core.file_operations import FileOperations
from file_dispatch.core.scheduler import ProcessingState, RuleScheduler, is_ignored
from file_dispatch.models.actions import ContinueAction, IgnoreAction, MoveAction, RenameAction
from file_dispatch.models.conditions import (
    ConditionGroup, ExtensionCondition, MatchType, NameCondition, StringOperator,
)
from file_dispatch.models.config import Settings
from file_dispatch.models.rule import Rule
from file_dispatch.storage.activity_log import ActivityLog
from file_dispatch.storage.rule_repository import RuleRepository

FOLDER = "inbox"


def txt_rule(name, actions=None, stop_processing=True, enabled=True):
    return Rule(
        id="",
        folder_id=FOLDER,
        name=name,
        conditions=ConditionGroup(MatchType.ALL, [ExtensionCondition(StringOperator.IS, "txt")]),
        actions=actions or [],
        enabled=enabled,
        stop_processing=stop_processing,
    )


@pytest.fixture
def repository():
    return RuleRepository()


@pytest.fixture
def scheduler(repository, settings):
    executor = ActionExecutor(settings, FileOperations())
    with RuleScheduler(repository, settings, executor=executor) as s:
        yield s


@pytest.fixture
def note(tmp_path):
    path = tmp_path / "note.txt"
    path.write_text("hello")
    return path


class TestRuleOrdering:
    """Stop processing, continue and rule order."""

    def test_stop_processing_ends_evaluation(self, scheduler, repository, note):
        repository.create(txt_rule("first"))
        repository.create(txt_rule("second"))

        result = scheduler.process_file(FOLDER, note)

        assert result.state == ProcessingState.DONE
        assert result.evaluated_rules == ["first"]

    def test_without_stop_processing_later_rules_run(self, scheduler, repository, note):
        repository.create(txt_rule("first", stop_processing=False))
        repository.create(txt_rule("second"))

        result = scheduler.process_file(FOLDER, note)

        assert result.matched_rules == ["first", "second"]

    def test_continue_action_overrides_stop(self, scheduler, repository, note):
        repository.create(txt_rule("first", actions=[ContinueAction()]))
        repository.create(txt_rule("second"))

        result = scheduler.process_file(FOLDER, note)

        assert result.matched_rules == ["first", "second"]

    def test_continue_after_ignore_does_not_apply(self, scheduler, repository, note):
        repository.create(txt_rule("first", actions=[IgnoreAction(), ContinueAction()]))
        repository.create(txt_rule("second"))

        result = scheduler.process_file(FOLDER, note)

        assert result.evaluated_rules == ["first"]

    def test_unmatched_rule_does_not_stop(self, scheduler, repository, note):
        pdf_only = Rule(
            id="", folder_id=FOLDER, name="pdfs",
            conditions=ConditionGroup(MatchType.ALL, [ExtensionCondition(StringOperator.IS, "pdf")]),
        )
        repository.create(pdf_only)
        repository.create(txt_rule("texts"))

        result = scheduler.process_file(FOLDER, note)

        assert result.evaluated_rules == ["pdfs", "texts"]
        assert result.matched_rules == ["texts"]

    def test_disabled_rules_are_skipped(self, scheduler, repository, note):
        repository.create(txt_rule("off", enabled=False))
        repository.create(txt_rule("on"))

        result = scheduler.process_file(FOLDER, note)

        assert result.evaluated_rules == ["on"]

    def test_rules_follow_reorder(self, scheduler, repository, note):
        first = repository.create(txt_rule("first"))
        second = repository.create(txt_rule("second"))
        repository.reorder(FOLDER, [second.id, first.id])

        result = scheduler.process_file(FOLDER, note)

        assert result.evaluated_rules == ["second"]

    def test_later_rule_sees_moved_file(self, scheduler, repository, note, tmp_path):
        repository.create(txt_rule("move", [MoveAction(f"{tmp_path}/sorted/")], stop_processing=False))
        renamer = Rule(
            id="", folder_id=FOLDER, name="rename",
            conditions=ConditionGroup(MatchType.ALL, [NameCondition(StringOperator.IS, "note")]),
            actions=[RenameAction("{parent}-{fullname}")],
        )
        repository.create(renamer)

        result = scheduler.process_file(FOLDER, note)

        assert result.final_path == tmp_path / "sorted" / "sorted-note.txt"
        assert result.final_path.exists()


class TestFileStates:
    def test_ignored_file(self, scheduler, repository, tmp_path):
        repository.create(txt_rule("any"))
        partial = tmp_path / "download.part"
        partial.write_text("x")

        result = scheduler.process_file(FOLDER, partial)

        assert result.state == ProcessingState.IGNORED
        assert result.evaluations == []

    def test_missing_file(self, scheduler, repository, tmp_path):
        repository.create(txt_rule("any"))

        result = scheduler.process_file(FOLDER, tmp_path / "gone.txt")

        assert result.state == ProcessingState.DONE
        assert result.error is not None

    def test_cancelled_folder(self, scheduler, repository, note):
        repository.create(txt_rule("any"))
        scheduler.cancel_folder(FOLDER)

        result = scheduler.process_file(FOLDER, note)

        assert result.state == ProcessingState.CANCELLED
        assert result.evaluations == []

        scheduler.resume_folder(FOLDER)
        assert scheduler.process_file(FOLDER, note).state == ProcessingState.DONE

    def test_dry_run_changes_nothing(self, scheduler, repository, note, tmp_path):
        repository.create(txt_rule("move", [MoveAction(f"{tmp_path}/sorted/")]))

        result = scheduler.dry_run(FOLDER, note)

        assert result.matched_rules == ["move"]
        assert result.outcomes == []
        assert note.exists()
        assert result.evaluations[0].stopped is True

    def test_unknown_folder_has_no_rules(self, scheduler, note):
        result = scheduler.process_file("elsewhere", note)
        assert result.state == ProcessingState.DONE
        assert result.evaluations == []


class TestSnapshot:
    def test_snapshot_is_isolated(self, scheduler, repository):
        repository.create(txt_rule("original"))

        snapshot = scheduler.snapshot(FOLDER)
        snapshot[0].name = "edited"

        assert repository.list_by_folder(FOLDER)[0].name == "original"

    def test_snapshot_sorted_by_position(self, scheduler, repository):
        for name in ("a", "b", "c"):
            repository.create(txt_rule(name))
        assert [r.name for r in scheduler.snapshot(FOLDER)] == ["a", "b", "c"]


class TestActivityLogging:
    def test_outcomes_and_matches_are_recorded(self, repository, settings, note, tmp_path):
        log = ActivityLog(tmp_path / "activity.db")
        repository.create(txt_rule("move", [MoveAction(f"{tmp_path}/sorted/")]))

        with RuleScheduler(repository, settings, activity_log=log) as scheduler:
            scheduler.process_file(FOLDER, note)

        entries = log.recent()
        assert [(e.rule_name, e.action_type, e.status) for e in entries] == [("move", "move", "success")]
        assert log.last_match_time(note) is not None

    def test_match_is_found_at_the_new_location(self, repository, settings, note, tmp_path):
        log = ActivityLog(tmp_path / "activity.db")
        repository.create(txt_rule("move", [MoveAction(f"{tmp_path}/sorted/")]))

        with RuleScheduler(repository, settings, activity_log=log) as scheduler:
            result = scheduler.process_file(FOLDER, note)

        moved = tmp_path / "sorted" / "note.txt"
        assert result.final_path == moved
        assert log.last_match_time(moved) is not None


@pytest.mark.asyncio
async def test_process_events_concurrently(repository, settings, tmp_path):
    """Events are processed in parallel and reported in order."""
    repository.create(txt_rule("move", [MoveAction(f"{tmp_path}/sorted/")]))
    files = []
    for i in range(6):
        path = tmp_path / f"file{i}.txt"
        path.write_text(str(i))
        files.append(path)

    with RuleScheduler(repository, settings) as scheduler:
        results = await scheduler.process_events([(FOLDER, path) for path in files])

    assert [r.path for r in results] == files
    assert all(r.outcomes[0].status == OutcomeStatus.SUCCESS for r in results)
    assert sorted(p.name for p in (tmp_path / "sorted").iterdir()) == [f"file{i}.txt" for i in range(6)]


class TestIsIgnored:
    @pytest.mark.parametrize("path,expected", [
        ("/home/u/Downloads/.DS_Store", True),
        ("/home/u/project/node_modules/pkg/index.js", True),
        ("/home/u/Downloads/movie.crdownload", True),
        ("/home/u/Downloads/report.pdf", False),
    ])
    def test_default_patterns(self, settings, path, expected):
        assert is_ignored(path, settings.ignore_patterns) is expected


class CountingEvaluator:
    """Matches every file, holding each evaluation long enough to overlap."""

    def __init__(self, delay=0.05, fail_on=None):
        self.delay = delay
        self.fail_on = fail_on
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def evaluate_group(self, group, info):
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            time.sleep(self.delay)
            if self.fail_on is not None and info.path.name == self.fail_on:
                raise RuntimeError(f"cannot evaluate {info.path.name}")
            return EvaluationResult(True)
        finally:
            with self._lock:
                self.active -= 1


def write_files(folder, count):
    folder.mkdir(exist_ok=True)
    files = []
    for i in range(count):
        path = folder / f"file{i}.txt"
        path.write_text(str(i))
        files.append(path)
    return files


class TestProcessEvents:
    """Concurrency limits and isolation between files."""

    @pytest.mark.asyncio
    async def test_never_exceeds_max_concurrent_rules(self, repository, tmp_path):
        settings = Settings(max_concurrent_rules=2)
        repository.create(txt_rule("match"))
        evaluator = CountingEvaluator()
        files = write_files(tmp_path / "inbox", 8)

        with RuleScheduler(repository, settings, evaluator=evaluator) as scheduler:
            results = await scheduler.process_events([(FOLDER, path) for path in files])

        assert all(r.state == ProcessingState.DONE for r in results)
        assert 1 <= evaluator.peak <= 2

    @pytest.mark.asyncio
    async def test_error_in_one_file_does_not_affect_others(self, repository, settings, tmp_path):
        repository.create(txt_rule("match"))
        evaluator = CountingEvaluator(delay=0, fail_on="file2.txt")
        files = write_files(tmp_path / "inbox", 5)

        with RuleScheduler(repository, settings, evaluator=evaluator) as scheduler:
            results = await scheduler.process_events([(FOLDER, path) for path in files])

        states = {r.path.name: r.state for r in results}
        assert states.pop("file2.txt") == ProcessingState.ERROR
        assert set(states.values()) == {ProcessingState.DONE}
        assert "cannot evaluate file2.txt" in results[2].error

    @pytest.mark.asyncio
    async def test_concurrent_renames_to_one_name_keep_every_file(self, repository, tmp_path):
        settings = Settings(max_concurrent_rules=8)
        repository.create(txt_rule("collide", [RenameAction("same.txt")]))
        inbox = tmp_path / "inbox"
        files = write_files(inbox, 40)

        with RuleScheduler(repository, settings) as scheduler:
            results = await scheduler.process_events([(FOLDER, path) for path in files])

        assert all(r.outcomes[0].status == OutcomeStatus.SUCCESS for r in results)
        remaining = list(inbox.iterdir())
        assert len(remaining) == 40
        assert sorted(int(p.read_text()) for p in remaining) == list(range(40))
        assert len({r.final_path for r in results}) == 40
