"""JSON schema and validation for rule definitions."""

import json
import logging
import re
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonschema

from ..exceptions import ConfigurationError, RuleValidationError
from ..models.actions import (
    ActionType, ArchiveAction, CopyAction, MoveAction, NotifyAction, OpenWithAction,
    PauseAction, RenameAction, RunScriptAction, SortIntoSubfolderAction,
)
from ..models.conditions import (
    ComparisonOperator, ConditionGroup, DateBetween, DateCondition, InTheLast, NestedCondition,
    NotInTheLast, ShellScriptCondition, SizeBetween, SizeCondition, StringCondition,
)
from ..models.rule import Rule
from ..models.serialization import CONDITION_TAGS, rule_from_dict

logger = logging.getLogger(__name__)

STRING_OPERATORS = [
    "is", "isNot", "contains", "doesNotContain", "startsWith", "endsWith", "matches", "doesNotMatch",
]
SIZE_OPERATORS = [
    "equals", "notEquals", "greaterThan", "lessThan", "greaterOrEqual", "lessOrEqual", "between",
]
DATE_OPERATORS = ["is", "isBefore", "isAfter", "between", "inTheLast", "notInTheLast"]
TIME_OPERATORS = ["is", "isBefore", "isAfter", "between"]
TIME_UNITS = ["minutes", "hours", "days", "weeks", "months", "years"]


def _tagged(tag_values: List[str], required: List[str], properties: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "if": {"properties": {"type": {"enum": tag_values}}, "required": ["type"]},
        "then": {"required": required, "properties": properties},
    }


_STRING_FIELDS = {
    "operator": {"type": "string", "enum": STRING_OPERATORS},
    "value": {"type": "string"},
    "caseSensitive": {"type": "boolean"},
}

_DESTINATION_FIELDS = {
    "destination": {"type": "string", "minLength": 1},
    "onConflict": {"type": "string", "enum": ["rename", "replace", "skip"]},
}

# JSON Schema for a single rule in its serialized (camelCase) form
RULE_DEFINITION = {
    "definitions": {
        "dateOperator": {
            "type": "object",
            "required": ["type"],
            "properties": {
                "type": {"type": "string", "enum": DATE_OPERATORS},
                "date": {"type": "string", "format": "date"},
                "start": {"type": "string", "format": "date"},
                "end": {"type": "string", "format": "date"},
                "amount": {"type": "integer", "minimum": 0},
                "unit": {"type": "string", "enum": TIME_UNITS},
            },
        },
        "timeOperator": {
            "type": "object",
            "required": ["type"],
            "properties": {
                "type": {"type": "string", "enum": TIME_OPERATORS},
                "time": {"type": "string"},
                "start": {"type": "string"},
                "end": {"type": "string"},
            },
        },
        "condition": {
            "type": "object",
            "required": ["type"],
            "properties": {
                "type": {"type": "string", "enum": sorted(set(CONDITION_TAGS.values()))},
            },
            "allOf": [
                _tagged(["name", "extension", "fullName"], ["operator", "value"], _STRING_FIELDS),
                _tagged(["contents"], ["operator", "value"], {
                    **_STRING_FIELDS,
                    "source": {"type": "string", "enum": ["text", "ocr", "auto"]},
                }),
                _tagged(["size"], ["operator"], {
                    "value": {"type": ["integer", "null"], "minimum": 0},
                    "unit": {"type": "string", "enum": ["bytes", "kilobytes", "megabytes", "gigabytes"]},
                }),
                _tagged(["dateCreated", "dateModified", "dateAdded", "dateLastMatched"], ["operator"], {
                    "operator": {"$ref": "#/definitions/dateOperator"},
                }),
                _tagged(["currentTime"], ["operator"], {
                    "operator": {"$ref": "#/definitions/timeOperator"},
                }),
                _tagged(["kind"], ["kind"], {
                    "kind": {"type": "string", "enum": [
                        "file", "folder", "image", "video", "audio", "document", "archive", "code", "other",
                    ]},
                    "negate": {"type": "boolean"},
                }),
                _tagged(["shellScript"], ["command"], {"command": {"type": "string", "minLength": 1}}),
                _tagged(["nested"], ["conditions"], {
                    "matchType": {"type": "string", "enum": ["all", "any", "none"]},
                    "conditions": {"type": "array", "items": {"$ref": "#/definitions/condition"}},
                }),
            ],
        },
        "group": {
            "type": "object",
            "properties": {
                "matchType": {"type": "string", "enum": ["all", "any", "none"]},
                "conditions": {"type": "array", "items": {"$ref": "#/definitions/condition"}},
            },
        },
        "action": {
            "type": "object",
            "required": ["type"],
            "properties": {
                "type": {"type": "string", "enum": [t.value for t in ActionType]},
            },
            "allOf": [
                _tagged(["move", "copy"], ["destination"], {
                    **_DESTINATION_FIELDS, "skipDuplicates": {"type": "boolean"},
                }),
                _tagged(["sortIntoSubfolder"], ["destination"], _DESTINATION_FIELDS),
                _tagged(["rename"], ["pattern"], {
                    "pattern": {"type": "string", "minLength": 1},
                    "onConflict": _DESTINATION_FIELDS["onConflict"],
                }),
                _tagged(["archive"], ["destination"], {
                    "destination": {"type": "string", "minLength": 1},
                    "format": {"type": "string", "enum": ["zip", "tar", "tarGz"]},
                    "deleteAfter": {"type": "boolean"},
                }),
                _tagged(["runScript"], ["command"], {"command": {"type": "string", "minLength": 1}}),
                _tagged(["notify"], ["message"], {"message": {"type": "string", "minLength": 1}}),
                _tagged(["openWith"], ["appPath"], {"appPath": {"type": "string", "minLength": 1}}),
                _tagged(["pause"], ["durationSeconds"], {"durationSeconds": {"type": "number", "minimum": 0}}),
            ],
        },
    },
    "type": "object",
    "required": ["name"],
    "properties": {
        "id": {"type": "string"},
        "folderId": {"type": "string"},
        "name": {"type": "string", "minLength": 1, "description": "Name shown in logs and previews"},
        "enabled": {"type": "boolean"},
        "stopProcessing": {"type": "boolean"},
        "position": {"type": "integer", "minimum": 0},
        "conditions": {"$ref": "#/definitions/group"},
        "actions": {"type": "array", "items": {"$ref": "#/definitions/action"}},
        "createdAt": {"type": "string"},
        "updatedAt": {"type": "string"},
    },
}

# JSON Schema for a rules file
RULE_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "definitions": RULE_DEFINITION["definitions"],
    "type": "object",
    "required": ["rules"],
    "properties": {
        "folderId": {"type": "string", "description": "Folder the rules belong to"},
        "rules": {
            "type": "array",
            "items": {key: value for key, value in RULE_DEFINITION.items() if key != "definitions"},
        },
    },
}

_RULE_VALIDATOR_SCHEMA = {"$schema": "http://json-schema.org/draft-07/schema#", **RULE_DEFINITION}


def _schema_errors(data: Any, schema: Dict[str, Any]) -> List[str]:
    validator = jsonschema.Draft7Validator(schema, format_checker=jsonschema.Draft7Validator.FORMAT_CHECKER)
    errors = []
    for error in sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path)):
        path = " -> ".join(str(p) for p in error.absolute_path) if error.absolute_path else "root"
        errors.append(f"Validation error at {path}: {error.message}")
    return errors


def validate_rule_json(rule_data: Dict[str, Any]) -> List[str]:
    """Validate a rules file object.

    Args:
        rule_data: The parsed rules file, ``{"rules": [...]}``

    Returns:
        List of validation error messages
    """
    try:
        return _schema_errors(rule_data, RULE_SCHEMA)
    except jsonschema.SchemaError as e:
        return [f"Schema error: {e.message}"]


def validate_rule_file(file_path: Path) -> List[str]:
    """Validate a rules JSON file.

    Returns:
        List of validation error messages
    """
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            rule_data = json.load(f)
    except json.JSONDecodeError as e:
        return [f"JSON parsing error: {e.msg} at line {e.lineno}, column {e.colno}"]
    except OSError as e:
        return [f"Error reading file: {e}"]

    errors = validate_rule_json(rule_data)
    if errors:
        return errors

    for index, item in enumerate(rule_data["rules"]):
        try:
            validate_rule(rule_from_dict(item))
        except RuleValidationError as e:
            errors.extend(f"rules -> {index}: {message}" for message in e.errors)
    return errors


def _condition_errors(group: ConditionGroup, path: str) -> List[str]:
    errors = []
    for index, condition in enumerate(group.conditions):
        where = f"{path}[{index}]"
        if isinstance(condition, StringCondition):
            if not condition.value:
                errors.append(f"{where}: value cannot be empty")
            elif condition.operator.is_regex:
                try:
                    re.compile(condition.value)
                except re.error as e:
                    errors.append(f"{where}: invalid regex '{condition.value}': {e}")
        elif isinstance(condition, SizeCondition):
            operator = condition.operator
            if isinstance(operator, SizeBetween):
                if operator.min < 0 or operator.min > operator.max:
                    errors.append(f"{where}: size range {operator.min}..{operator.max} is invalid")
            elif isinstance(operator, ComparisonOperator):
                if condition.value is None or condition.value < 0:
                    errors.append(f"{where}: size value is required and cannot be negative")
        elif isinstance(condition, DateCondition):
            operator = condition.operator
            if isinstance(operator, DateBetween) and operator.start > operator.end:
                errors.append(f"{where}: date range starts after it ends")
            if isinstance(operator, (InTheLast, NotInTheLast)) and operator.amount < 0:
                errors.append(f"{where}: amount cannot be negative")
        elif isinstance(condition, ShellScriptCondition):
            if not condition.command.strip():
                errors.append(f"{where}: command cannot be empty")
        elif isinstance(condition, NestedCondition):
            errors.extend(_condition_errors(condition.group, f"{where}.conditions"))
    return errors


def _action_errors(actions) -> List[str]:
    errors = []
    for index, action in enumerate(actions):
        where = f"actions[{index}]"
        if isinstance(action, (MoveAction, CopyAction, SortIntoSubfolderAction, ArchiveAction)):
            if not action.destination.strip():
                errors.append(f"{where}: destination cannot be empty")
        elif isinstance(action, RenameAction):
            if not action.pattern.strip():
                errors.append(f"{where}: pattern cannot be empty")
        elif isinstance(action, RunScriptAction):
            if not action.command.strip():
                errors.append(f"{where}: command cannot be empty")
        elif isinstance(action, NotifyAction):
            if not action.message.strip():
                errors.append(f"{where}: message cannot be empty")
        elif isinstance(action, OpenWithAction):
            if not action.app_path.strip():
                errors.append(f"{where}: application path cannot be empty")
        elif isinstance(action, PauseAction):
            if action.duration_seconds < 0:
                errors.append(f"{where}: pause duration cannot be negative")
    return errors


def validate_rule(rule: Rule) -> Rule:
    """Check a rule before it is stored or evaluated.

    Raises:
        RuleValidationError: With every problem found in the rule.
    """
    errors = []
    if not rule.name.strip():
        errors.append("name cannot be empty")
    errors.extend(_condition_errors(rule.conditions, "conditions"))
    errors.extend(_action_errors(rule.actions))

    if errors:
        raise RuleValidationError(errors, rule_name=rule.name or None)
    return rule


def rule_from_draft(draft: Dict[str, Any]) -> Rule:
    """Validate a serialized rule draft and build the Rule.

    Raises:
        RuleValidationError: If the draft violates the schema or the rule checks.
    """
    errors = _schema_errors(draft, _RULE_VALIDATOR_SCHEMA)
    if errors:
        name = draft.get("name") if isinstance(draft, dict) else None
        raise RuleValidationError(errors, rule_name=name or None)
    return validate_rule(rule_from_dict(draft))


def load_rules_file(file_path: Path, folder_id: Optional[str] = None) -> List[Rule]:
    """Load and validate every rule in a rules file.

    Rules without an id get a generated one; positions follow file order.

    Raises:
        ConfigurationError: If the file cannot be read or is not valid JSON.
        RuleValidationError: If any rule is invalid.
    """
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {file_path}: {e.msg} at line {e.lineno}")
    except OSError as e:
        raise ConfigurationError(f"Cannot read rules file {file_path}: {e}")

    errors = validate_rule_json(data)
    if errors:
        raise RuleValidationError(errors)

    folder_id = folder_id or data.get("folderId") or "default"
    rules = []
    for position, item in enumerate(data["rules"]):
        rule = validate_rule(rule_from_dict(item))
        rule.id = rule.id or str(uuid.uuid4())
        rule.folder_id = rule.folder_id or folder_id
        rule.position = position
        rules.append(rule)

    logger.debug(f"Loaded {len(rules)} rules from {file_path}")
    return rules


def create_example_rules_file() -> Dict[str, Any]:
    """Create an example rules file with common patterns.

    Returns:
        Example rules data structure
    """
    return {
        "folderId": "downloads",
        "rules": [
            {
                "name": "Invoices",
                "conditions": {
                    "matchType": "all",
                    "conditions": [
                        {"type": "extension", "operator": "is", "value": "pdf", "caseSensitive": False},
                        {"type": "name", "operator": "contains", "value": "invoice", "caseSensitive": False},
                    ],
                },
                "actions": [
                    {"type": "move", "destination": "~/Documents/Invoices/{year}/{month}/",
                     "onConflict": "rename"},
                ],
                "stopProcessing": True,
            },
            {
                "name": "Screenshots",
                "conditions": {
                    "matchType": "all",
                    "conditions": [
                        {"type": "kind", "kind": "image"},
                        {"type": "name", "operator": "matches", "value": r"^Screenshot (\d{4})-(\d{2})"},
                    ],
                },
                "actions": [
                    {"type": "sortIntoSubfolder", "destination": "~/Pictures/Screenshots/{1}/{2}"},
                    {"type": "continue"},
                ],
                "stopProcessing": True,
            },
            {
                "name": "Old installers",
                "conditions": {
                    "matchType": "any",
                    "conditions": [
                        {"type": "extension", "operator": "is", "value": "dmg"},
                        {"type": "extension", "operator": "is", "value": "exe"},
                        {"type": "extension", "operator": "is", "value": "msi"},
                    ],
                },
                "actions": [
                    {"type": "delete"},
                ],
                "enabled": False,
            },
        ],
    }
