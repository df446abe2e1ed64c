"""Rule persistence: in memory, optionally backed by a JSON file."""

import copy
import json
import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from ..core.rule_schema import validate_rule
from ..exceptions import ConfigurationError, RuleNotFoundError, RuleValidationError
from ..models.rule import Rule
from ..models.serialization import rule_from_dict, rule_to_dict

logger = logging.getLogger(__name__)


class RuleRepository:
    """Stores rules per folder and keeps their positions dense (0..n-1).

    Rules handed out are copies; edits go through ``update`` and replace the
    stored rule wholesale. When ``path`` is given, every change is written to
    that JSON file.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = path
        self._rules: Dict[str, Rule] = {}
        self._lock = threading.RLock()
        if path is not None and path.exists():
            self._load()

    def create(self, rule: Rule) -> Rule:
        """Validate and store a new rule at the end of its folder."""
        validate_rule(rule)
        with self._lock:
            rule = copy.deepcopy(rule)
            rule.id = rule.id or str(uuid.uuid4())
            if rule.id in self._rules:
                raise RuleValidationError([f"Rule id '{rule.id}' already exists"], rule_name=rule.name)
            rule.position = len(self._folder_rules(rule.folder_id))
            now = datetime.now(timezone.utc)
            rule.created_at = now
            rule.updated_at = now
            self._rules[rule.id] = rule
            self._save()
            logger.info(f"Created rule '{rule.name}' in folder {rule.folder_id}")
            return copy.deepcopy(rule)

    def update(self, rule: Rule) -> Rule:
        """Replace a stored rule. Position and creation time are kept."""
        validate_rule(rule)
        with self._lock:
            existing = self._get(rule.id)
            updated = replace(
                copy.deepcopy(rule),
                folder_id=existing.folder_id,
                position=existing.position,
                created_at=existing.created_at,
                updated_at=datetime.now(timezone.utc),
            )
            self._rules[rule.id] = updated
            self._save()
            return copy.deepcopy(updated)

    def delete(self, rule_id: str) -> None:
        with self._lock:
            rule = self._get(rule_id)
            del self._rules[rule_id]
            self._renumber(rule.folder_id)
            self._save()
            logger.info(f"Deleted rule '{rule.name}'")

    def set_enabled(self, rule_id: str, enabled: bool) -> Rule:
        with self._lock:
            rule = self._get(rule_id)
            rule.enabled = enabled
            rule.updated_at = datetime.now(timezone.utc)
            self._save()
            return copy.deepcopy(rule)

    def reorder(self, folder_id: str, ordered_ids: List[str]) -> List[Rule]:
        """Rewrite every position in the folder to follow ``ordered_ids``.

        Raises:
            RuleNotFoundError: If the folder has no rules.
            RuleValidationError: If ``ordered_ids`` is not exactly the folder's rule ids.
        """
        with self._lock:
            rules = self._folder_rules(folder_id)
            if not rules:
                raise RuleNotFoundError(f"Unknown folder: {folder_id}")

            current = {rule.id for rule in rules}
            if len(ordered_ids) != len(set(ordered_ids)) or set(ordered_ids) != current:
                raise RuleValidationError(
                    [f"Reorder must list each rule of folder {folder_id} exactly once"])

            # All positions change together or not at all
            for position, rule_id in enumerate(ordered_ids):
                self._rules[rule_id].position = position
            self._save()
            return self.list_by_folder(folder_id)

    def get(self, rule_id: str) -> Rule:
        with self._lock:
            return copy.deepcopy(self._get(rule_id))

    def list_by_folder(self, folder_id: str) -> List[Rule]:
        """Copies of the folder's rules, ordered by position."""
        with self._lock:
            return copy.deepcopy(self._folder_rules(folder_id))

    def folders(self) -> List[str]:
        with self._lock:
            return sorted({rule.folder_id for rule in self._rules.values()})

    def _get(self, rule_id: str) -> Rule:
        rule = self._rules.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Rule not found: {rule_id}")
        return rule

    def _folder_rules(self, folder_id: str) -> List[Rule]:
        return sorted(
            (rule for rule in self._rules.values() if rule.folder_id == folder_id),
            key=lambda rule: rule.position,
        )

    def _renumber(self, folder_id: str) -> None:
        for position, rule in enumerate(self._folder_rules(folder_id)):
            rule.position = position

    def _load(self) -> None:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {self.path}: {e.msg} at line {e.lineno}")
        except OSError as e:
            raise ConfigurationError(f"Cannot read rules from {self.path}: {e}")

        for item in data.get("rules", []):
            rule = rule_from_dict(item)
            self._rules[rule.id] = rule
        for folder_id in {rule.folder_id for rule in self._rules.values()}:
            self._renumber(folder_id)

    def _save(self) -> None:
        if self.path is None:
            return
        rules = sorted(self._rules.values(), key=lambda r: (r.folder_id, r.position))
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump({"rules": [rule_to_dict(rule) for rule in rules]}, f, indent=2)
        tmp_path.replace(self.path)
