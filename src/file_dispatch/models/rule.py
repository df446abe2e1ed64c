"""Rule model."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List

from .actions import Action, continues_after
from .conditions import ConditionGroup


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Rule:
    """A named, ordered unit pairing a condition tree with an action list.

    ``position`` orders rules within their folder; the repository keeps the
    positions of a folder dense (0..n-1).
    """
    id: str
    folder_id: str
    name: str
    conditions: ConditionGroup = field(default_factory=ConditionGroup)
    actions: List[Action] = field(default_factory=list)
    enabled: bool = True
    stop_processing: bool = True
    position: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def continues(self) -> bool:
        """Whether the action list lets later rules run despite stop_processing."""
        return continues_after(self.actions)
