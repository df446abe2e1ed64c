"""Data models for file dispatch."""

from .actions import Action, ActionType, ArchiveFormat, ConflictResolution
from .conditions import Condition, ConditionGroup, FileKind, MatchType
from .config import Settings, load_settings, save_settings
from .file_info import FileInfo
from .rule import Rule

__all__ = [
    "Action",
    "ActionType",
    "ArchiveFormat",
    "ConflictResolution",
    "Condition",
    "ConditionGroup",
    "FileKind",
    "MatchType",
    "Settings",
    "load_settings",
    "save_settings",
    "FileInfo",
    "Rule",
]
