"""Condition model: boolean trees of file predicates.

A ConditionGroup owns an ordered list of conditions. Each condition is one
dataclass per variant; a NestedCondition wraps another ConditionGroup, which
gives the recursive tree evaluated by ``core.conditions``.
"""

from dataclasses import dataclass, field
from datetime import date, time, timedelta
from enum import Enum
from typing import List, Optional, Union


class MatchType(Enum):
    """How the results of a group's conditions are combined."""
    ALL = "all"
    ANY = "any"
    NONE = "none"


class StringOperator(Enum):
    """Operators for name, extension, full name and contents conditions."""
    IS = "is"
    IS_NOT = "isNot"
    CONTAINS = "contains"
    DOES_NOT_CONTAIN = "doesNotContain"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    MATCHES = "matches"
    DOES_NOT_MATCH = "doesNotMatch"

    @property
    def is_regex(self) -> bool:
        return self in (StringOperator.MATCHES, StringOperator.DOES_NOT_MATCH)


class ComparisonOperator(Enum):
    """Single-value size comparisons."""
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    GREATER_OR_EQUAL = "greaterOrEqual"
    LESS_OR_EQUAL = "lessOrEqual"


@dataclass
class SizeBetween:
    """Inclusive size range, expressed in the condition's unit."""
    min: int
    max: int


class SizeUnit(Enum):
    """Units for size conditions (binary multiples)."""
    BYTES = "bytes"
    KILOBYTES = "kilobytes"
    MEGABYTES = "megabytes"
    GIGABYTES = "gigabytes"

    @property
    def multiplier(self) -> int:
        return {
            SizeUnit.BYTES: 1,
            SizeUnit.KILOBYTES: 1024,
            SizeUnit.MEGABYTES: 1024 ** 2,
            SizeUnit.GIGABYTES: 1024 ** 3,
        }[self]

    def to_bytes(self, value: int) -> int:
        return value * self.multiplier


class TimeUnit(Enum):
    """Units for relative date operators."""
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    YEARS = "years"

    def to_timedelta(self, amount: int) -> timedelta:
        # Months and years are fixed-length approximations.
        if self == TimeUnit.MINUTES:
            return timedelta(minutes=amount)
        if self == TimeUnit.HOURS:
            return timedelta(hours=amount)
        if self == TimeUnit.DAYS:
            return timedelta(days=amount)
        if self == TimeUnit.WEEKS:
            return timedelta(weeks=amount)
        if self == TimeUnit.MONTHS:
            return timedelta(days=30 * amount)
        return timedelta(days=365 * amount)


# Date operators: each variant carries only the fields it needs.

@dataclass
class DateIs:
    date: date


@dataclass
class DateIsBefore:
    date: date


@dataclass
class DateIsAfter:
    date: date


@dataclass
class DateBetween:
    start: date
    end: date


@dataclass
class InTheLast:
    amount: int
    unit: TimeUnit


@dataclass
class NotInTheLast:
    amount: int
    unit: TimeUnit


DateOperator = Union[DateIs, DateIsBefore, DateIsAfter, DateBetween, InTheLast, NotInTheLast]


# Time-of-day operators work on the wall clock, not the calendar.

@dataclass
class TimeIs:
    time: time


@dataclass
class TimeIsBefore:
    time: time


@dataclass
class TimeIsAfter:
    time: time


@dataclass
class TimeBetween:
    start: time
    end: time


TimeOperator = Union[TimeIs, TimeIsBefore, TimeIsAfter, TimeBetween]


class FileKind(Enum):
    """Coarse classification of a path."""
    FILE = "file"
    FOLDER = "folder"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    ARCHIVE = "archive"
    CODE = "code"
    OTHER = "other"


class ContentSource(Enum):
    """Where a contents condition gets its text from."""
    TEXT = "text"
    OCR = "ocr"
    AUTO = "auto"


# Leaf conditions

@dataclass
class StringCondition:
    """Base for conditions that compare a string attribute of the file."""
    operator: StringOperator
    value: str
    case_sensitive: bool = False


@dataclass
class NameCondition(StringCondition):
    """Matches the file name without its extension."""


@dataclass
class ExtensionCondition(StringCondition):
    """Matches the lower-cased extension, without the leading dot."""


@dataclass
class FullNameCondition(StringCondition):
    """Matches the complete file name."""


@dataclass
class ContentsCondition(StringCondition):
    """Matches text extracted from the file by the content capability."""
    source: ContentSource = ContentSource.AUTO


@dataclass
class SizeCondition:
    operator: Union[ComparisonOperator, SizeBetween]
    value: Optional[int] = None
    unit: SizeUnit = SizeUnit.BYTES


@dataclass
class DateCondition:
    """Base for conditions on one of the file's timestamps."""
    operator: DateOperator


@dataclass
class DateCreatedCondition(DateCondition):
    pass


@dataclass
class DateModifiedCondition(DateCondition):
    pass


@dataclass
class DateAddedCondition(DateCondition):
    pass


@dataclass
class DateLastMatchedCondition(DateCondition):
    pass


@dataclass
class CurrentTimeCondition:
    operator: TimeOperator


@dataclass
class KindCondition:
    kind: FileKind
    negate: bool = False


@dataclass
class ShellScriptCondition:
    """Runs a shell command; exit code 0 means the condition matches.

    The command runs with the user's privileges and no sandbox. Rules are
    treated as trusted input.
    """
    command: str


@dataclass
class NestedCondition:
    group: "ConditionGroup"


Condition = Union[
    NameCondition,
    ExtensionCondition,
    FullNameCondition,
    ContentsCondition,
    SizeCondition,
    DateCreatedCondition,
    DateModifiedCondition,
    DateAddedCondition,
    DateLastMatchedCondition,
    CurrentTimeCondition,
    KindCondition,
    ShellScriptCondition,
    NestedCondition,
]

CONDITION_TYPES = (
    NameCondition,
    ExtensionCondition,
    FullNameCondition,
    ContentsCondition,
    SizeCondition,
    DateCreatedCondition,
    DateModifiedCondition,
    DateAddedCondition,
    DateLastMatchedCondition,
    CurrentTimeCondition,
    KindCondition,
    ShellScriptCondition,
    NestedCondition,
)


@dataclass
class ConditionGroup:
    """A boolean combination of conditions and nested groups."""
    match_type: MatchType = MatchType.ALL
    conditions: List[Condition] = field(default_factory=list)

    def __post_init__(self) -> None:
        if isinstance(self.match_type, str):
            self.match_type = MatchType(self.match_type)

    def walk(self):
        """Yield every condition in the tree, depth first, left to right."""
        for condition in self.conditions:
            yield condition
            if isinstance(condition, NestedCondition):
                yield from condition.group.walk()

    def has_content_condition(self) -> bool:
        return any(isinstance(c, ContentsCondition) for c in self.walk())
