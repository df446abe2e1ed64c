"""File Dispatch

A rule engine that organizes files in watched folders: when a file matches a
rule's conditions, the rule's actions move, rename, archive or otherwise
handle it.
"""

__version__ = "0.1.0"

from .core import (
    ActionExecutor,
    ConditionEvaluator,
    PreviewCoordinator,
    PreviewService,
    RuleScheduler,
    TokenResolver,
)
from .exceptions import FileDispatchError, RuleValidationError
from .models import ConditionGroup, Rule, Settings
from .storage import ActivityLog, RuleRepository

__all__ = [
    "ActionExecutor",
    "ConditionEvaluator",
    "PreviewCoordinator",
    "PreviewService",
    "RuleScheduler",
    "TokenResolver",
    "FileDispatchError",
    "RuleValidationError",
    "ConditionGroup",
    "Rule",
    "Settings",
    "ActivityLog",
    "RuleRepository",
]
