"""Condition and ConditionGroup evaluation.

Groups are evaluated left to right, depth first, and short-circuit: ``all``
stops at the first false element, ``any`` and ``none`` at the first true one.
Conditions after the stopping point are not evaluated, so their shell scripts
never run.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from functools import lru_cache
from typing import Callable, Dict, List, Optional, Tuple

from ..models.conditions import (
    ComparisonOperator, ConditionGroup, ContentsCondition, CurrentTimeCondition,
    DateAddedCondition, DateBetween, DateCreatedCondition, DateIs, DateIsAfter, DateIsBefore,
    DateLastMatchedCondition, DateModifiedCondition, ExtensionCondition, FullNameCondition,
    InTheLast, KindCondition, MatchType, NameCondition, NestedCondition, NotInTheLast,
    ShellScriptCondition, SizeBetween, SizeCondition, StringCondition, StringOperator,
    TimeBetween, TimeIs, TimeIsAfter, TimeIsBefore,
)
from ..models.config import Settings
from ..models.file_info import FileInfo
from .content import ContentCache, ContentProvider, TextContentProvider
from .file_operations import FileOperations

logger = logging.getLogger(__name__)


@dataclass
class EvaluationResult:
    """Outcome of evaluating a condition or group.

    ``captures`` maps "1", "2"... to the groups captured by ``matches``
    conditions, for use as ``{1}``, ``{2}`` tokens in actions.
    """
    matched: bool
    captures: Dict[str, str] = field(default_factory=dict)


@lru_cache(maxsize=256)
def compile_pattern(pattern: str, case_sensitive: bool) -> "re.Pattern[str]":
    """Compile a condition regex once per (pattern, case_sensitive) pair."""
    flags = 0 if case_sensitive else re.IGNORECASE
    return re.compile(pattern, flags)


def evaluate_string(target: Optional[str], condition: StringCondition) -> EvaluationResult:
    if target is None:
        return EvaluationResult(False)

    operator = condition.operator
    if operator.is_regex:
        try:
            regex = compile_pattern(condition.value, condition.case_sensitive)
        except re.error as e:
            logger.warning(f"Invalid regex '{condition.value}': {e}")
            return EvaluationResult(False)

        match = regex.search(target)
        if match is None:
            return EvaluationResult(operator == StringOperator.DOES_NOT_MATCH)

        captures = {
            str(i): value
            for i, value in enumerate(match.groups(), start=1)
            if value is not None
        }
        return EvaluationResult(operator == StringOperator.MATCHES, captures)

    value = condition.value
    if not condition.case_sensitive:
        target = target.lower()
        value = value.lower()

    if operator == StringOperator.IS:
        matched = target == value
    elif operator == StringOperator.IS_NOT:
        matched = target != value
    elif operator == StringOperator.CONTAINS:
        matched = value in target
    elif operator == StringOperator.DOES_NOT_CONTAIN:
        matched = value not in target
    elif operator == StringOperator.STARTS_WITH:
        matched = target.startswith(value)
    else:
        matched = target.endswith(value)
    return EvaluationResult(matched)


def evaluate_size(size: Optional[int], condition: SizeCondition) -> bool:
    if size is None:
        return False

    unit = condition.unit
    operator = condition.operator
    if isinstance(operator, SizeBetween):
        return unit.to_bytes(operator.min) <= size <= unit.to_bytes(operator.max)

    if condition.value is None:
        return False
    value = unit.to_bytes(condition.value)
    return {
        ComparisonOperator.EQUALS: size == value,
        ComparisonOperator.NOT_EQUALS: size != value,
        ComparisonOperator.GREATER_THAN: size > value,
        ComparisonOperator.LESS_THAN: size < value,
        ComparisonOperator.GREATER_OR_EQUAL: size >= value,
        ComparisonOperator.LESS_OR_EQUAL: size <= value,
    }[operator]


def evaluate_date(value: Optional[datetime], operator, now: datetime) -> bool:
    """Compare a timestamp against a date operator.

    Calendar operators compare the UTC date; relative operators compare the
    instant against ``now``.
    """
    if value is None:
        return False

    day: date = value.astimezone(timezone.utc).date()
    if isinstance(operator, DateIs):
        return day == operator.date
    if isinstance(operator, DateIsBefore):
        return day < operator.date
    if isinstance(operator, DateIsAfter):
        return day > operator.date
    if isinstance(operator, DateBetween):
        return operator.start <= day <= operator.end
    if isinstance(operator, InTheLast):
        return value >= now - operator.unit.to_timedelta(operator.amount)
    if isinstance(operator, NotInTheLast):
        return value < now - operator.unit.to_timedelta(operator.amount)
    raise TypeError(f"Unsupported date operator: {type(operator).__name__}")


def evaluate_time(now: time, operator) -> bool:
    """Compare a wall-clock time against a time operator, to the minute."""
    current = (now.hour, now.minute)

    def hm(value: time) -> Tuple[int, int]:
        return value.hour, value.minute

    if isinstance(operator, TimeIs):
        return current == hm(operator.time)
    if isinstance(operator, TimeIsBefore):
        return current < hm(operator.time)
    if isinstance(operator, TimeIsAfter):
        return current > hm(operator.time)
    if isinstance(operator, TimeBetween):
        start, end = hm(operator.start), hm(operator.end)
        if start <= end:
            return start <= current <= end
        # Window wraps past midnight
        return current >= start or current <= end
    raise TypeError(f"Unsupported time operator: {type(operator).__name__}")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _local_time() -> time:
    return datetime.now().time()


class ConditionEvaluator:
    """Evaluates conditions and groups against file metadata.

    Args:
        settings: Engine settings
        operations: I/O capability used to run shell conditions
        content_provider: Text source for contents conditions
        content_cache: Cache shared across evaluations
        clock: Returns the current UTC time for relative date operators
        time_clock: Returns the local wall-clock time for current-time conditions
        skip_content: Treat contents conditions as false without reading files
    """

    def __init__(self, settings: Optional[Settings] = None,
                 operations: Optional[FileOperations] = None,
                 content_provider: Optional[ContentProvider] = None,
                 content_cache: Optional[ContentCache] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 time_clock: Optional[Callable[[], time]] = None,
                 skip_content: bool = False):
        self.settings = settings or Settings()
        self.operations = operations or FileOperations(script_timeout=self.settings.script_timeout_seconds)
        self.content_provider = content_provider or TextContentProvider(self.settings)
        self.content_cache = content_cache or ContentCache()
        self.clock = clock or _utcnow
        self.time_clock = time_clock or _local_time
        self.skip_content = skip_content

    HANDLERS = {
        NameCondition: lambda self, c, info: evaluate_string(info.name, c),
        ExtensionCondition: lambda self, c, info: evaluate_string(info.extension, c),
        FullNameCondition: lambda self, c, info: evaluate_string(info.full_name, c),
        ContentsCondition: lambda self, c, info: self._evaluate_contents(c, info),
        SizeCondition: lambda self, c, info: EvaluationResult(evaluate_size(info.size, c)),
        DateCreatedCondition: lambda self, c, info: EvaluationResult(
            evaluate_date(info.created, c.operator, self.clock())),
        DateModifiedCondition: lambda self, c, info: EvaluationResult(
            evaluate_date(info.modified, c.operator, self.clock())),
        DateAddedCondition: lambda self, c, info: EvaluationResult(
            evaluate_date(info.added, c.operator, self.clock())),
        DateLastMatchedCondition: lambda self, c, info: EvaluationResult(
            self._evaluate_last_matched(c, info)),
        CurrentTimeCondition: lambda self, c, info: EvaluationResult(
            evaluate_time(self.time_clock(), c.operator)),
        KindCondition: lambda self, c, info: EvaluationResult(
            info.kind is not None and (info.kind == c.kind) != c.negate),
        ShellScriptCondition: lambda self, c, info: EvaluationResult(self._evaluate_shell(c, info)),
        NestedCondition: lambda self, c, info: self.evaluate_group(c.group, info),
    }

    def matches(self, condition, file_info: FileInfo) -> bool:
        return self.evaluate(condition, file_info).matched

    def evaluate(self, condition, file_info: FileInfo) -> EvaluationResult:
        handler = self.HANDLERS.get(type(condition))
        if handler is None:
            raise TypeError(f"Unsupported condition type: {type(condition).__name__}")
        result = handler(self, condition, file_info)
        logger.debug(f"{type(condition).__name__} on {file_info.full_name}: {result.matched}")
        return result

    def evaluate_group(self, group: ConditionGroup, file_info: FileInfo) -> EvaluationResult:
        if self._skips_negated_content(group):
            return EvaluationResult(False)

        if group.match_type == MatchType.ALL:
            captures: Dict[str, str] = {}
            for condition in group.conditions:
                result = self.evaluate(condition, file_info)
                if not result.matched:
                    return EvaluationResult(False)
                captures.update(result.captures)
            return EvaluationResult(True, captures)

        if group.match_type == MatchType.ANY:
            for condition in group.conditions:
                result = self.evaluate(condition, file_info)
                if result.matched:
                    return result
            return EvaluationResult(False)

        for condition in group.conditions:
            if self.evaluate(condition, file_info).matched:
                return EvaluationResult(False)
        return EvaluationResult(True)

    def explain_group(self, group: ConditionGroup,
                      file_info: FileInfo) -> Tuple[List[bool], EvaluationResult]:
        """Evaluate every top-level condition exactly once, without stopping early.

        Returns the per-condition booleans and the combined result, which is
        the same as ``evaluate_group`` gives for the same inputs. Nested groups
        still short-circuit internally.
        """
        if self._skips_negated_content(group):
            return [False] * len(group.conditions), EvaluationResult(False)

        results = [self.evaluate(c, file_info) for c in group.conditions]
        flags = [r.matched for r in results]

        if group.match_type == MatchType.ALL:
            if not all(flags):
                return flags, EvaluationResult(False)
            captures: Dict[str, str] = {}
            for result in results:
                captures.update(result.captures)
            return flags, EvaluationResult(True, captures)

        if group.match_type == MatchType.ANY:
            for result in results:
                if result.matched:
                    return flags, EvaluationResult(True, dict(result.captures))
            return flags, EvaluationResult(False)

        return flags, EvaluationResult(not any(flags))

    def _skips_negated_content(self, group: ConditionGroup) -> bool:
        # A skipped contents condition would make "none" groups pass vacuously
        return (
            self.skip_content
            and group.match_type == MatchType.NONE
            and group.has_content_condition()
        )

    def _evaluate_contents(self, condition: ContentsCondition, file_info: FileInfo) -> EvaluationResult:
        if self.skip_content:
            return EvaluationResult(False)
        text = self.content_cache.get_or_extract(file_info, condition.source, self.content_provider)
        if not text:
            return EvaluationResult(False)
        return evaluate_string(text, condition)

    def _evaluate_last_matched(self, condition: DateLastMatchedCondition, file_info: FileInfo) -> bool:
        if file_info.last_matched is None:
            # Never matched counts as matched long ago
            return isinstance(condition.operator, NotInTheLast)
        return evaluate_date(file_info.last_matched, condition.operator, self.clock())

    def _evaluate_shell(self, condition: ShellScriptCondition, file_info: FileInfo) -> bool:
        result = self.operations.run_script(condition.command, file_info.path)
        if result.is_failure():
            logger.warning(f"Shell condition failed for {file_info.path}: {result.error()}")
            return False
        return result.value() == 0
