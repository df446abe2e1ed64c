"""Persistence for rules and activity."""

from .activity_log import ActivityEntry, ActivityLog
from .rule_repository import RuleRepository

__all__ = ["ActivityEntry", "ActivityLog", "RuleRepository"]
