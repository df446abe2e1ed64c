"""Token substitution for destination paths, names, scripts and messages.

Patterns contain ``{token}`` or ``{token:format}`` placeholders::

    ~/Documents/{year}/{month}/{name}.{ext}
    {created:%d.%m.%Y} - {fullname}
    scan-{counter:3}.pdf

Unknown or malformed tokens are kept verbatim, so a typo shows up in the
result instead of silently disappearing.
"""

import random
import re
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from ..models.config import Settings
from ..models.file_info import FileInfo

# Braces without nesting; an unclosed "{" never matches and stays as text.
TOKEN_PATTERN = re.compile(r"\{([^{}]*)\}")


@dataclass
class TokenContext:
    """Everything a pattern may draw values from.

    ``counter`` and ``rng`` are fixed by the preview service for repeatable
    output; when left as None the resolver supplies live values.
    """
    file_info: FileInfo
    captures: Dict[str, str] = field(default_factory=dict)
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    counter: Optional[int] = None
    rng: Optional[random.Random] = None
    date_format: str = "%Y-%m-%d"
    time_format: str = "%H-%M-%S"
    use_short_date_names: bool = True

    @classmethod
    def from_settings(cls, file_info: FileInfo, settings: Settings, **kwargs) -> "TokenContext":
        return cls(
            file_info=file_info,
            date_format=settings.date_format,
            time_format=settings.time_format,
            use_short_date_names=settings.use_short_date_names,
            **kwargs,
        )

    @property
    def calendar_date(self) -> datetime:
        """Timestamp behind the calendar tokens: created, then modified, then now."""
        info = self.file_info
        return info.created or info.modified or self.now


def format_size(size: Optional[int], fmt: str = "") -> Optional[str]:
    """Human readable size, or the raw byte count with the ``bytes`` modifier."""
    if size is None:
        return None
    if fmt == "bytes":
        return str(size)

    kb = 1024.0
    mb = kb * 1024
    gb = mb * 1024
    if size >= gb:
        return f"{size / gb:.1f} GB"
    if size >= mb:
        return f"{size / mb:.1f} MB"
    if size >= kb:
        return f"{size / kb:.1f} KB"
    return f"{size} B"


def _strftime(value: Optional[datetime], fmt: str, default: str) -> Optional[str]:
    if value is None:
        return None
    return value.strftime(fmt or default)


def _calendar(spec: str) -> Callable[["TokenResolver", TokenContext, str], str]:
    # Fixed-format calendar token; a modifier is ignored
    return lambda resolver, ctx, fmt: ctx.calendar_date.strftime(spec)


class TokenResolver:
    """Resolves tokens in patterns against a TokenContext.

    The resolver owns the live ``{counter}``: it starts at 1 and increases by
    one for every pattern that uses it, across all files and rules.
    """

    VARIABLE_MAP = {
        'name': lambda r, ctx, fmt: ctx.file_info.name,
        'ext': lambda r, ctx, fmt: ctx.file_info.extension,
        'fullname': lambda r, ctx, fmt: ctx.file_info.full_name,
        'parent': lambda r, ctx, fmt: ctx.file_info.parent or '',
        'size': lambda r, ctx, fmt: format_size(ctx.file_info.size, fmt),
        'date': lambda r, ctx, fmt: ctx.calendar_date.strftime(fmt or ctx.date_format),
        'time': lambda r, ctx, fmt: ctx.calendar_date.strftime(fmt or ctx.time_format),
        'year': _calendar('%Y'),
        'month': _calendar('%m'),
        'day': _calendar('%d'),
        'hour': _calendar('%H'),
        'minute': _calendar('%M'),
        'second': _calendar('%S'),
        'weekday': lambda r, ctx, fmt: ctx.calendar_date.strftime(
            '%a' if ctx.use_short_date_names else '%A'),
        'monthname': lambda r, ctx, fmt: ctx.calendar_date.strftime(
            '%b' if ctx.use_short_date_names else '%B'),
        'created': lambda r, ctx, fmt: _strftime(ctx.file_info.created, fmt, ctx.date_format),
        'modified': lambda r, ctx, fmt: _strftime(ctx.file_info.modified, fmt, ctx.date_format),
        'added': lambda r, ctx, fmt: _strftime(ctx.file_info.added, fmt, ctx.date_format),
        'now': lambda r, ctx, fmt: ctx.now.strftime(fmt or ctx.date_format),
        'counter': lambda r, ctx, fmt: r._format_counter(ctx, fmt),
        'random': lambda r, ctx, fmt: r._format_random(ctx, fmt),
    }

    def __init__(self, start: int = 1):
        self._next_counter = start
        self._lock = threading.Lock()

    def next_counter(self) -> int:
        with self._lock:
            value = self._next_counter
            self._next_counter += 1
            return value

    def resolve(self, pattern: str, context: TokenContext) -> str:
        """Substitute every known token in ``pattern``.

        Args:
            pattern: Text with ``{token}`` placeholders
            context: Values to substitute

        Returns:
            The pattern with known tokens replaced and everything else kept
        """
        counter_box: Dict[str, int] = {}

        def substitute(match: "re.Match[str]") -> str:
            value = self._resolve_token(match.group(1), context, counter_box)
            return match.group(0) if value is None else value

        return TOKEN_PATTERN.sub(substitute, pattern)

    def validate_pattern(self, pattern: str) -> list:
        """List the token names in ``pattern`` the resolver does not know."""
        unknown = []
        for body in TOKEN_PATTERN.findall(pattern):
            key = body.partition(':')[0]
            if key.isdigit() or key in self.VARIABLE_MAP:
                continue
            unknown.append(body)
        return unknown

    def _resolve_token(self, body: str, context: TokenContext,
                       counter_box: Dict[str, int]) -> Optional[str]:
        if not body:
            return None

        if body.isascii() and body.isdigit():
            return context.captures.get(str(int(body)))

        key, _, fmt = body.partition(':')
        getter = self.VARIABLE_MAP.get(key)
        if getter is None:
            return None

        if key == 'counter' and context.counter is None:
            # One live counter value per resolved pattern
            if 'value' not in counter_box:
                counter_box['value'] = self.next_counter()
            context = replace(context, counter=counter_box['value'])

        try:
            return getter(self, context, fmt)
        except ValueError:
            # strftime rejected the modifier
            return None

    @staticmethod
    def _format_counter(context: TokenContext, fmt: str) -> str:
        counter = context.counter if context.counter is not None else 0
        if fmt.isascii() and fmt.isdigit():
            return str(counter).zfill(int(fmt))
        return str(counter)

    @staticmethod
    def _format_random(context: TokenContext, fmt: str) -> str:
        if context.rng is not None:
            value = f"{context.rng.getrandbits(128):032x}"
        else:
            value = uuid.uuid4().hex
        if fmt.isascii() and fmt.isdigit():
            return value[:int(fmt)]
        return value

