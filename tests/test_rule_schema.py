"""Tests for rule schema validation and rules files."""

import json
from datetime import date

import pytest

from file_dispatch.core.rule_schema import (
    create_example_rules_file, load_rules_file, rule_from_draft, validate_rule,
    validate_rule_file, validate_rule_json,
)
from file_dispatch.exceptions import ConfigurationError, RuleValidationError
from file_dispatch.models.actions import NotifyAction, PauseAction
from file_dispatch.models.conditions import (
    ConditionGroup, DateBetween, DateModifiedCondition, MatchType, NameCondition, NestedCondition,
    SizeBetween, SizeCondition, StringOperator,
)
from file_dispatch.models.rule import Rule


def write_json(path, data):
    path.write_text(json.dumps(data))
    return path


class TestValidateRuleJson:
    def test_example_file_is_valid(self):
        assert validate_rule_json(create_example_rules_file()) == []

    def test_rules_key_required(self):
        errors = validate_rule_json({"folderId": "x"})
        assert any("rules" in error for error in errors)

    def test_unknown_condition_type(self):
        data = {"rules": [{"name": "x", "conditions": {"conditions": [{"type": "colour"}]}}]}
        errors = validate_rule_json(data)
        assert errors
        assert errors[0].startswith("Validation error at rules -> 0 -> conditions")

    def test_action_missing_required_field(self):
        data = {"rules": [{"name": "x", "actions": [{"type": "rename"}]}]}
        assert any("pattern" in error for error in validate_rule_json(data))

    def test_bad_date_format(self):
        data = {"rules": [{"name": "x", "conditions": {"conditions": [
            {"type": "dateModified", "operator": {"type": "is", "date": "yesterday"}},
        ]}}]}
        assert validate_rule_json(data)


class TestValidateRule:
    def rule(self, conditions=(), actions=(), name="Rule"):
        return Rule(id="r", folder_id="f", name=name,
                    conditions=ConditionGroup(MatchType.ALL, list(conditions)), actions=list(actions))

    def test_valid_rule_is_returned(self):
        rule = self.rule([NameCondition(StringOperator.IS, "x")])
        assert validate_rule(rule) is rule

    def test_collects_every_problem(self):
        rule = self.rule(
            conditions=[
                NameCondition(StringOperator.IS, ""),
                NestedCondition(ConditionGroup(MatchType.ANY, [
                    NameCondition(StringOperator.MATCHES, "(unclosed"),
                ])),
                SizeCondition(SizeBetween(10, 1)),
                DateModifiedCondition(DateBetween(date(2024, 2, 1), date(2024, 1, 1))),
            ],
            actions=[NotifyAction("  "), PauseAction(-1)],
            name="",
        )
        with pytest.raises(RuleValidationError) as exc_info:
            validate_rule(rule)

        errors = exc_info.value.errors
        assert len(errors) == 7
        assert "name cannot be empty" in errors
        assert any(e.startswith("conditions[1].conditions[0]: invalid regex") for e in errors)

    def test_rule_from_draft(self):
        rule = rule_from_draft({"name": "Draft", "actions": [{"type": "delete"}]})
        assert rule.name == "Draft"

    def test_rule_from_draft_schema_error(self):
        with pytest.raises(RuleValidationError) as exc_info:
            rule_from_draft({"name": "Draft", "actions": [{"type": "pause", "durationSeconds": -1}]})
        assert exc_info.value.rule_name == "Draft"


class TestRulesFiles:
    def test_load_example(self, tmp_path):
        path = write_json(tmp_path / "rules.json", create_example_rules_file())

        rules = load_rules_file(path)

        assert [r.name for r in rules] == ["Invoices", "Screenshots", "Old installers"]
        assert [r.position for r in rules] == [0, 1, 2]
        assert {r.folder_id for r in rules} == {"downloads"}
        assert all(r.id for r in rules)
        assert rules[1].continues is True
        assert rules[2].enabled is False

    def test_folder_override(self, tmp_path):
        path = write_json(tmp_path / "rules.json", {"rules": [{"name": "x"}]})
        assert load_rules_file(path, folder_id="desktop")[0].folder_id == "desktop"
        assert load_rules_file(path)[0].folder_id == "default"

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text("{")
        with pytest.raises(ConfigurationError):
            load_rules_file(path)
        assert validate_rule_file(path)[0].startswith("JSON parsing error")

    def test_semantic_errors_reported_per_rule(self, tmp_path):
        path = write_json(tmp_path / "rules.json", {"rules": [
            {"name": "ok"},
            {"name": "bad", "conditions": {"conditions": [
                {"type": "name", "operator": "matches", "value": "[z-a]"},
            ]}},
        ]})

        errors = validate_rule_file(path)

        assert len(errors) == 1
        assert errors[0].startswith("rules -> 1: conditions[0]: invalid regex")
        with pytest.raises(RuleValidationError):
            load_rules_file(path)

    def test_missing_file(self, tmp_path):
        assert validate_rule_file(tmp_path / "nope.json")[0].startswith("Error reading file")
