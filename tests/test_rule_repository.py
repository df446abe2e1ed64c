"""Tests for rule storage and ordering."""

import json

import pytest

from file_dispatch.exceptions import ConfigurationError, RuleNotFoundError, RuleValidationError
from file_dispatch.models.actions import MoveAction
from file_dispatch.models.conditions import ConditionGroup, MatchType, NameCondition, StringOperator
from file_dispatch.models.rule import Rule
from file_dispatch.storage.rule_repository import RuleRepository


def make_rule(name, folder_id="downloads"):
    return Rule(
        id="",
        folder_id=folder_id,
        name=name,
        conditions=ConditionGroup(MatchType.ALL, [NameCondition(StringOperator.CONTAINS, name)]),
        actions=[MoveAction("~/Sorted/")],
    )


@pytest.fixture
def repository():
    return RuleRepository()


def positions(repository, folder_id="downloads"):
    return [(r.name, r.position) for r in repository.list_by_folder(folder_id)]


class TestCreate:
    def test_assigns_id_and_dense_positions(self, repository):
        a = repository.create(make_rule("a"))
        repository.create(make_rule("b"))
        repository.create(make_rule("other", folder_id="desktop"))

        assert a.id
        assert positions(repository) == [("a", 0), ("b", 1)]
        assert positions(repository, "desktop") == [("other", 0)]

    def test_invalid_rule_rejected(self, repository):
        with pytest.raises(RuleValidationError):
            repository.create(make_rule("  "))
        assert repository.folders() == []

    def test_duplicate_id_rejected(self, repository):
        rule = repository.create(make_rule("a"))
        with pytest.raises(RuleValidationError):
            repository.create(rule)

    def test_returned_rules_are_copies(self, repository):
        rule = repository.create(make_rule("a"))
        rule.name = "changed"
        repository.get(rule.id).actions.clear()

        stored = repository.get(rule.id)
        assert stored.name == "a"
        assert len(stored.actions) == 1


class TestUpdateAndDelete:
    def test_update_keeps_position_and_creation_time(self, repository):
        a = repository.create(make_rule("a"))
        b = repository.create(make_rule("b"))

        b.name = "renamed"
        b.position = 0
        updated = repository.update(b)

        assert updated.position == 1
        assert updated.created_at == b.created_at
        assert positions(repository) == [("a", 0), ("renamed", 1)]
        assert repository.get(a.id).name == "a"

    def test_update_unknown_rule(self, repository):
        rule = make_rule("ghost")
        rule.id = "missing"
        with pytest.raises(RuleNotFoundError):
            repository.update(rule)

    def test_delete_renumbers(self, repository):
        a = repository.create(make_rule("a"))
        repository.create(make_rule("b"))
        repository.create(make_rule("c"))

        repository.delete(a.id)

        assert positions(repository) == [("b", 0), ("c", 1)]

    def test_set_enabled(self, repository):
        rule = repository.create(make_rule("a"))
        repository.set_enabled(rule.id, False)
        assert repository.get(rule.id).enabled is False


class TestReorder:
    def test_reorder(self, repository):
        ids = [repository.create(make_rule(name)).id for name in ("a", "b", "c")]

        rules = repository.reorder("downloads", [ids[2], ids[0], ids[1]])

        assert [(r.name, r.position) for r in rules] == [("c", 0), ("a", 1), ("b", 2)]

    @pytest.mark.parametrize("make_ids", [
        lambda ids: ids[:2],
        lambda ids: ids + ["unknown"],
        lambda ids: [ids[0], ids[0], ids[1]],
    ])
    def test_mismatched_ids_leave_order_unchanged(self, repository, make_ids):
        ids = [repository.create(make_rule(name)).id for name in ("a", "b", "c")]

        with pytest.raises(RuleValidationError):
            repository.reorder("downloads", make_ids(ids))

        assert positions(repository) == [("a", 0), ("b", 1), ("c", 2)]

    def test_unknown_folder(self, repository):
        with pytest.raises(RuleNotFoundError):
            repository.reorder("nowhere", [])


class TestPersistence:
    def test_round_trip(self, tmp_path):
        path = tmp_path / "rules.json"
        repository = RuleRepository(path)
        first = repository.create(make_rule("a"))
        repository.create(make_rule("b"))
        repository.delete(first.id)

        reloaded = RuleRepository(path)

        assert positions(reloaded) == [("b", 0)]
        assert reloaded.list_by_folder("downloads")[0].actions == [MoveAction("~/Sorted/")]

    def test_written_as_json(self, tmp_path):
        path = tmp_path / "rules.json"
        RuleRepository(path).create(make_rule("a"))

        data = json.loads(path.read_text())
        assert data["rules"][0]["name"] == "a"
        assert data["rules"][0]["folderId"] == "downloads"

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError):
            RuleRepository(path)
