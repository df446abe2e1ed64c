"""Tests for the activity log, match history and undo."""

from datetime import datetime, timedelta, timezone

import pytest

from file_dispatch.core.executor import ActionOutcome, OutcomeStatus
from file_dispatch.models.actions import ActionType
from file_dispatch.storage.activity_log import ActivityLog


@pytest.fixture
def log(tmp_path):
    return ActivityLog(tmp_path / "activity.db")


def moved(source, destination, status=OutcomeStatus.SUCCESS, action_type=ActionType.MOVE):
    return ActionOutcome(action_type, status, source, destination)


class TestMatches:
    def test_never_matched(self, log, tmp_path):
        assert log.last_match_time(tmp_path / "a.txt") is None

    def test_latest_match_across_rules(self, log, tmp_path):
        path = tmp_path / "a.txt"
        earlier = datetime(2024, 1, 1, tzinfo=timezone.utc)
        later = earlier + timedelta(days=3)
        log.record_match("r1", path, earlier)
        log.record_match("r2", path, later)

        assert log.last_match_time(path) == later

    def test_rematch_updates_time(self, log, tmp_path):
        path = tmp_path / "a.txt"
        first = datetime(2024, 1, 1, tzinfo=timezone.utc)
        log.record_match("r1", path, first)
        log.record_match("r1", path, first + timedelta(hours=1))

        assert log.last_match_time(path) == first + timedelta(hours=1)


class TestOutcomes:
    def test_recent_newest_first(self, log, tmp_path):
        a, b = tmp_path / "a.txt", tmp_path / "b.txt"
        log.record_outcomes("r1", "Rule one", a, [moved(a, tmp_path / "x" / "a.txt")])
        log.record_outcomes("r2", "Rule two", b, [
            ActionOutcome(ActionType.DELETE_PERMANENTLY, OutcomeStatus.REJECTED, b, error="disabled"),
        ])

        entries = log.recent()

        assert [e.rule_name for e in entries] == ["Rule two", "Rule one"]
        assert entries[0].status == "rejected"
        assert entries[0].error == "disabled"
        assert entries[1].destination_path == tmp_path / "x" / "a.txt"

    def test_limit(self, log, tmp_path):
        path = tmp_path / "a.txt"
        for _ in range(5):
            log.record_outcomes("r", "Rule", path, [moved(path, path)])
        assert len(log.recent(limit=3)) == 3


class TestUndo:
    def test_nothing_to_undo(self, log):
        result = log.undo_last()
        assert result.is_failure()
        assert "Nothing to undo" in str(result.error())

    def test_undo_move(self, log, tmp_path):
        source = tmp_path / "a.txt"
        destination = tmp_path / "sorted" / "a.txt"
        destination.parent.mkdir()
        destination.write_text("x")
        log.record_outcomes("r", "Rule", source, [moved(source, destination)])

        result = log.undo_last()

        assert result.is_success()
        assert source.read_text() == "x"
        assert not destination.exists()
        assert log.recent()[0].undone is True
        assert log.undo_last().is_failure()

    def test_failed_and_non_undoable_outcomes_are_skipped(self, log, tmp_path):
        source = tmp_path / "a.txt"
        destination = tmp_path / "b.txt"
        destination.write_text("x")
        log.record_outcomes("r", "Rule", source, [moved(source, destination)])
        log.record_outcomes("r", "Rule", destination, [
            moved(destination, tmp_path / "c.txt", status=OutcomeStatus.FAILED),
            moved(destination, tmp_path / "copy.txt", action_type=ActionType.COPY),
        ])

        result = log.undo_last()

        assert result.is_success()
        assert result.value().destination_path == destination
        assert source.exists()

    def test_occupied_original_location(self, log, tmp_path):
        source = tmp_path / "a.txt"
        destination = tmp_path / "b.txt"
        source.write_text("new file")
        destination.write_text("moved file")
        log.record_outcomes("r", "Rule", source, [moved(source, destination)])

        result = log.undo_last()

        assert result.is_failure()
        assert source.read_text() == "new file"
        assert destination.read_text() == "moved file"
