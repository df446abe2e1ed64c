"""Conversion between rule objects and their JSON form.

The JSON form uses camelCase keys and a ``type`` tag on every condition,
action and operator variant, for example::

    {"type": "extension", "operator": "is", "value": "pdf", "caseSensitive": false}
    {"type": "move", "destination": "~/Documents/{year}", "onConflict": "rename"}
    {"type": "dateCreated", "operator": {"type": "inTheLast", "amount": 3, "unit": "days"}}
"""

from datetime import date, datetime, time, timezone
from typing import Any, Callable, Dict, List, Type

from ..exceptions import RuleValidationError
from .actions import (
    Action, ArchiveAction, ArchiveFormat, ConflictResolution, ContinueAction, CopyAction,
    DeleteAction, DeletePermanentlyAction, IgnoreAction, MakePdfSearchableAction, MoveAction,
    NotifyAction, OpenAction, OpenWithAction, PauseAction, RenameAction, RunScriptAction,
    ShowInFileManagerAction, SortIntoSubfolderAction, UnarchiveAction,
)
from .conditions import (
    ComparisonOperator, Condition, ConditionGroup, ContentsCondition, ContentSource,
    CurrentTimeCondition, DateAddedCondition, DateBetween, DateCreatedCondition, DateIs,
    DateIsAfter, DateIsBefore, DateLastMatchedCondition, DateModifiedCondition, ExtensionCondition,
    FileKind, FullNameCondition, InTheLast, KindCondition, MatchType, NameCondition,
    NestedCondition, NotInTheLast, ShellScriptCondition, SizeBetween, SizeCondition, SizeUnit,
    StringCondition, StringOperator, TimeBetween, TimeIs, TimeIsAfter, TimeIsBefore, TimeUnit,
)
from .rule import Rule


# Operators

_DATE_OPERATOR_TAGS = {
    DateIs: "is",
    DateIsBefore: "isBefore",
    DateIsAfter: "isAfter",
    DateBetween: "between",
    InTheLast: "inTheLast",
    NotInTheLast: "notInTheLast",
}

_TIME_OPERATOR_TAGS = {
    TimeIs: "is",
    TimeIsBefore: "isBefore",
    TimeIsAfter: "isAfter",
    TimeBetween: "between",
}


def date_operator_to_dict(operator) -> Dict[str, Any]:
    data: Dict[str, Any] = {"type": _DATE_OPERATOR_TAGS[type(operator)]}
    if isinstance(operator, (DateIs, DateIsBefore, DateIsAfter)):
        data["date"] = operator.date.isoformat()
    elif isinstance(operator, DateBetween):
        data["start"] = operator.start.isoformat()
        data["end"] = operator.end.isoformat()
    else:
        data["amount"] = operator.amount
        data["unit"] = operator.unit.value
    return data


def date_operator_from_dict(data: Dict[str, Any]):
    tag = data["type"]
    if tag == "is":
        return DateIs(_parse_date(data["date"]))
    if tag == "isBefore":
        return DateIsBefore(_parse_date(data["date"]))
    if tag == "isAfter":
        return DateIsAfter(_parse_date(data["date"]))
    if tag == "between":
        return DateBetween(_parse_date(data["start"]), _parse_date(data["end"]))
    if tag == "inTheLast":
        return InTheLast(int(data["amount"]), TimeUnit(data["unit"]))
    if tag == "notInTheLast":
        return NotInTheLast(int(data["amount"]), TimeUnit(data["unit"]))
    raise ValueError(f"Unknown date operator '{tag}'")


def time_operator_to_dict(operator) -> Dict[str, Any]:
    data: Dict[str, Any] = {"type": _TIME_OPERATOR_TAGS[type(operator)]}
    if isinstance(operator, TimeBetween):
        data["start"] = operator.start.isoformat()
        data["end"] = operator.end.isoformat()
    else:
        data["time"] = operator.time.isoformat()
    return data


def time_operator_from_dict(data: Dict[str, Any]):
    tag = data["type"]
    if tag == "is":
        return TimeIs(_parse_time(data["time"]))
    if tag == "isBefore":
        return TimeIsBefore(_parse_time(data["time"]))
    if tag == "isAfter":
        return TimeIsAfter(_parse_time(data["time"]))
    if tag == "between":
        return TimeBetween(_parse_time(data["start"]), _parse_time(data["end"]))
    raise ValueError(f"Unknown time operator '{tag}'")


def size_operator_to_dict(operator) -> Dict[str, Any]:
    if isinstance(operator, SizeBetween):
        return {"type": "between", "min": operator.min, "max": operator.max}
    return {"type": operator.value}


def size_operator_from_dict(data):
    # Accept the bare string form ("greaterThan") as well as the tagged object
    tag = data if isinstance(data, str) else data["type"]
    if tag == "between":
        return SizeBetween(int(data["min"]), int(data["max"]))
    return ComparisonOperator(tag)


def _parse_date(value) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


def _parse_time(value) -> time:
    if isinstance(value, time):
        return value
    return time.fromisoformat(value)


def _parse_datetime(value) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# Conditions

_STRING_CONDITIONS: Dict[str, Type[StringCondition]] = {
    "name": NameCondition,
    "extension": ExtensionCondition,
    "fullName": FullNameCondition,
    "contents": ContentsCondition,
}

_DATE_CONDITIONS = {
    "dateCreated": DateCreatedCondition,
    "dateModified": DateModifiedCondition,
    "dateAdded": DateAddedCondition,
    "dateLastMatched": DateLastMatchedCondition,
}

CONDITION_TAGS: Dict[type, str] = {
    **{cls: tag for tag, cls in _STRING_CONDITIONS.items()},
    **{cls: tag for tag, cls in _DATE_CONDITIONS.items()},
    SizeCondition: "size",
    CurrentTimeCondition: "currentTime",
    KindCondition: "kind",
    ShellScriptCondition: "shellScript",
    NestedCondition: "nested",
}


def condition_to_dict(condition: Condition) -> Dict[str, Any]:
    tag = CONDITION_TAGS.get(type(condition))
    if tag is None:
        raise TypeError(f"Unsupported condition type: {type(condition).__name__}")

    data: Dict[str, Any] = {"type": tag}
    if isinstance(condition, StringCondition):
        data.update({
            "operator": condition.operator.value,
            "value": condition.value,
            "caseSensitive": condition.case_sensitive,
        })
        if isinstance(condition, ContentsCondition):
            data["source"] = condition.source.value
    elif isinstance(condition, SizeCondition):
        data.update({
            "operator": size_operator_to_dict(condition.operator),
            "value": condition.value,
            "unit": condition.unit.value,
        })
    elif tag in _DATE_CONDITIONS:
        data["operator"] = date_operator_to_dict(condition.operator)
    elif isinstance(condition, CurrentTimeCondition):
        data["operator"] = time_operator_to_dict(condition.operator)
    elif isinstance(condition, KindCondition):
        data.update({"kind": condition.kind.value, "negate": condition.negate})
    elif isinstance(condition, ShellScriptCondition):
        data["command"] = condition.command
    elif isinstance(condition, NestedCondition):
        data.update(group_to_dict(condition.group))
    return data


def condition_from_dict(data: Dict[str, Any]) -> Condition:
    tag = data["type"]
    if tag in _STRING_CONDITIONS:
        cls = _STRING_CONDITIONS[tag]
        kwargs = {
            "operator": StringOperator(data["operator"]),
            "value": data.get("value", ""),
            "case_sensitive": bool(data.get("caseSensitive", False)),
        }
        if cls is ContentsCondition:
            kwargs["source"] = ContentSource(data.get("source", "auto"))
        return cls(**kwargs)
    if tag in _DATE_CONDITIONS:
        return _DATE_CONDITIONS[tag](date_operator_from_dict(data["operator"]))
    if tag == "size":
        value = data.get("value")
        return SizeCondition(
            operator=size_operator_from_dict(data["operator"]),
            value=int(value) if value is not None else None,
            unit=SizeUnit(data.get("unit", "bytes")),
        )
    if tag == "currentTime":
        return CurrentTimeCondition(time_operator_from_dict(data["operator"]))
    if tag == "kind":
        return KindCondition(FileKind(data["kind"]), bool(data.get("negate", False)))
    if tag == "shellScript":
        return ShellScriptCondition(data["command"])
    if tag == "nested":
        return NestedCondition(group_from_dict(data))
    raise ValueError(f"Unknown condition type '{tag}'")


def group_to_dict(group: ConditionGroup) -> Dict[str, Any]:
    return {
        "matchType": group.match_type.value,
        "conditions": [condition_to_dict(c) for c in group.conditions],
    }


def group_from_dict(data: Dict[str, Any]) -> ConditionGroup:
    return ConditionGroup(
        match_type=MatchType(data.get("matchType", "all")),
        conditions=[condition_from_dict(c) for c in data.get("conditions", [])],
    )


# Actions

def _destination_fields(action) -> Dict[str, Any]:
    return {"destination": action.destination, "onConflict": action.on_conflict.value}


_ACTION_ENCODERS: Dict[type, Callable[[Any], Dict[str, Any]]] = {
    MoveAction: lambda a: {**_destination_fields(a), "skipDuplicates": a.skip_duplicates},
    CopyAction: lambda a: {**_destination_fields(a), "skipDuplicates": a.skip_duplicates},
    SortIntoSubfolderAction: _destination_fields,
    RenameAction: lambda a: {"pattern": a.pattern, "onConflict": a.on_conflict.value},
    ArchiveAction: lambda a: {
        "destination": a.destination, "format": a.format.value, "deleteAfter": a.delete_after,
    },
    UnarchiveAction: lambda a: {"destination": a.destination, "deleteAfter": a.delete_after},
    DeleteAction: lambda a: {},
    DeletePermanentlyAction: lambda a: {},
    RunScriptAction: lambda a: {"command": a.command},
    NotifyAction: lambda a: {"message": a.message},
    OpenAction: lambda a: {},
    OpenWithAction: lambda a: {"appPath": a.app_path},
    ShowInFileManagerAction: lambda a: {},
    MakePdfSearchableAction: lambda a: {"destination": a.destination, "skipIfText": a.skip_if_text},
    PauseAction: lambda a: {"durationSeconds": a.duration_seconds},
    ContinueAction: lambda a: {},
    IgnoreAction: lambda a: {},
}


def _conflict(data: Dict[str, Any]) -> ConflictResolution:
    return ConflictResolution(data.get("onConflict", "rename"))


_ACTION_DECODERS: Dict[str, Callable[[Dict[str, Any]], Action]] = {
    "move": lambda d: MoveAction(d["destination"], _conflict(d), bool(d.get("skipDuplicates", False))),
    "copy": lambda d: CopyAction(d["destination"], _conflict(d), bool(d.get("skipDuplicates", False))),
    "sortIntoSubfolder": lambda d: SortIntoSubfolderAction(d["destination"], _conflict(d)),
    "rename": lambda d: RenameAction(d["pattern"], _conflict(d)),
    "archive": lambda d: ArchiveAction(
        d["destination"], ArchiveFormat(d.get("format", "zip")), bool(d.get("deleteAfter", False)),
    ),
    "unarchive": lambda d: UnarchiveAction(d.get("destination"), bool(d.get("deleteAfter", False))),
    "delete": lambda d: DeleteAction(),
    "deletePermanently": lambda d: DeletePermanentlyAction(),
    "runScript": lambda d: RunScriptAction(d["command"]),
    "notify": lambda d: NotifyAction(d["message"]),
    "open": lambda d: OpenAction(),
    "openWith": lambda d: OpenWithAction(d["appPath"]),
    "showInFileManager": lambda d: ShowInFileManagerAction(),
    "makePdfSearchable": lambda d: MakePdfSearchableAction(
        d.get("destination"), bool(d.get("skipIfText", True)),
    ),
    "pause": lambda d: PauseAction(float(d["durationSeconds"])),
    "continue": lambda d: ContinueAction(),
    "ignore": lambda d: IgnoreAction(),
}


def action_to_dict(action: Action) -> Dict[str, Any]:
    encoder = _ACTION_ENCODERS.get(type(action))
    if encoder is None:
        raise TypeError(f"Unsupported action type: {type(action).__name__}")
    return {"type": action.action_type.value, **encoder(action)}


def action_from_dict(data: Dict[str, Any]) -> Action:
    tag = data["type"]
    decoder = _ACTION_DECODERS.get(tag)
    if decoder is None:
        raise ValueError(f"Unknown action type '{tag}'")
    return decoder(data)


# Rules

def rule_to_dict(rule: Rule) -> Dict[str, Any]:
    return {
        "id": rule.id,
        "folderId": rule.folder_id,
        "name": rule.name,
        "enabled": rule.enabled,
        "stopProcessing": rule.stop_processing,
        "conditions": group_to_dict(rule.conditions),
        "actions": [action_to_dict(a) for a in rule.actions],
        "position": rule.position,
        "createdAt": rule.created_at.isoformat(),
        "updatedAt": rule.updated_at.isoformat(),
    }


def rule_from_dict(data: Dict[str, Any]) -> Rule:
    """Build a Rule from its JSON form.

    Raises:
        RuleValidationError: If a tag is unknown or a required field is missing
            or malformed.
    """
    name = data.get("name") if isinstance(data, dict) else None
    try:
        kwargs: Dict[str, Any] = {
            "id": str(data.get("id", "")),
            "folder_id": str(data.get("folderId", "")),
            "name": data["name"],
            "enabled": bool(data.get("enabled", True)),
            "stop_processing": bool(data.get("stopProcessing", True)),
            "conditions": group_from_dict(data.get("conditions", {})),
            "actions": [action_from_dict(a) for a in data.get("actions", [])],
            "position": int(data.get("position", 0)),
        }
        if data.get("createdAt"):
            kwargs["created_at"] = _parse_datetime(data["createdAt"])
        if data.get("updatedAt"):
            kwargs["updated_at"] = _parse_datetime(data["updatedAt"])
    except KeyError as e:
        raise RuleValidationError([f"Missing field {e}"], rule_name=name)
    except (ValueError, TypeError, AttributeError) as e:
        raise RuleValidationError([str(e)], rule_name=name)

    return Rule(**kwargs)


def rules_from_list(items: List[Dict[str, Any]]) -> List[Rule]:
    return [rule_from_dict(item) for item in items]
