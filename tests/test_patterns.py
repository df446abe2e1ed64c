"""Tests for token substitution."""

import random
from dataclasses import replace
from datetime import datetime, timezone

import pytest
from hypothesis import given, strategies as st

from file_dispatch.core.patterns import TokenContext, TokenResolver, format_size
from file_dispatch.models.config import Settings

from conftest import make_info

NOW = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


@pytest.fixture
def resolver():
    return TokenResolver()


@pytest.fixture
def context():
    return TokenContext(file_info=make_info("/data/inbox/Report.PDF"), now=NOW)


class TestFileTokens:
    """Tokens taken from the file itself."""

    def test_name_and_extension(self, resolver, context):
        assert resolver.resolve("{name}.{ext}", context) == "Report.pdf"

    def test_fullname_and_parent(self, resolver, context):
        assert resolver.resolve("{parent}/{fullname}", context) == "inbox/Report.PDF"

    def test_size_human_readable(self, resolver, context):
        assert resolver.resolve("{size}", context) == "1.5 KB"

    def test_size_in_bytes(self, resolver, context):
        assert resolver.resolve("{size:bytes}", context) == "1536"

    def test_unknown_size_stays_verbatim(self, resolver, context):
        context.file_info = replace(context.file_info, size=None)
        assert resolver.resolve("{size}", context) == "{size}"


class TestCalendarTokens:
    """Date tokens come from the created timestamp."""

    def test_year_month_day(self, resolver, context):
        assert resolver.resolve("{year}/{month}/{day}", context) == "2024/03/05"

    def test_hour_minute_second(self, resolver, context):
        assert resolver.resolve("{hour}{minute}{second}", context) == "140709"

    def test_date_and_time_use_configured_formats(self, resolver, context):
        assert resolver.resolve("{date} {time}", context) == "2024-03-05 14-07-09"

    def test_date_format_modifier(self, resolver, context):
        assert resolver.resolve("{date:%d.%m.%Y}", context) == "05.03.2024"

    def test_created_with_format(self, resolver, context):
        assert resolver.resolve("{created:%Y%m%d}", context) == "20240305"

    def test_short_and_long_names(self, resolver, context):
        assert resolver.resolve("{weekday} {monthname}", context) == "Tue Mar"
        context.use_short_date_names = False
        assert resolver.resolve("{weekday} {monthname}", context) == "Tuesday March"

    def test_falls_back_to_modified(self, resolver, context):
        modified = datetime(2023, 12, 31, tzinfo=timezone.utc)
        context.file_info = replace(context.file_info, created=None, modified=modified)
        assert resolver.resolve("{year}-{month}", context) == "2023-12"

    def test_now_token(self, resolver, context):
        assert resolver.resolve("{now:%Y}", context) == "2025"

    def test_from_settings(self):
        settings = Settings(date_format="%d-%m-%Y")
        ctx = TokenContext.from_settings(make_info(), settings, now=NOW)
        assert TokenResolver().resolve("{date}", ctx) == "05-03-2024"


class TestCaptures:
    def test_numbered_capture(self, resolver, context):
        context.captures = {"1": "2024", "2": "03"}
        assert resolver.resolve("{1}/{2}", context) == "2024/03"

    def test_missing_capture_stays_verbatim(self, resolver, context):
        context.captures = {"1": "2024"}
        assert resolver.resolve("{1}-{2}", context) == "2024-{2}"


class TestCounterAndRandom:
    def test_live_counter_is_monotonic(self, resolver, context):
        assert resolver.resolve("{counter}", context) == "1"
        assert resolver.resolve("{counter}", context) == "2"

    def test_counter_value_shared_within_pattern(self, resolver, context):
        assert resolver.resolve("{counter:3}-{counter}", context) == "001-1"

    def test_fixed_counter_does_not_advance_live_counter(self, resolver, context):
        context.counter = 7
        assert resolver.resolve("scan-{counter:3}", context) == "scan-007"
        assert resolver.next_counter() == 1

    def test_random_length(self, resolver, context):
        value = resolver.resolve("{random:8}", context)
        assert len(value) == 8
        int(value, 16)

    def test_seeded_random_is_repeatable(self, resolver, context):
        first = resolver.resolve("{random}", replace(context, rng=random.Random("seed")))
        second = resolver.resolve("{random}", replace(context, rng=random.Random("seed")))
        assert first == second
        assert len(first) == 32


class TestUnknownTokens:
    """Anything that is not a known token is left as written."""

    @pytest.mark.parametrize("pattern", [
        "{unknown}",
        "{}",
        "{name",
        "name}",
        "{{name}}x",
    ])
    def test_kept_verbatim(self, resolver, context, pattern):
        result = resolver.resolve(pattern, context)
        if pattern == "{{name}}x":
            assert result == "{Report}x"
        else:
            assert result == pattern

    def test_validate_pattern_lists_unknown_tokens(self, resolver):
        assert resolver.validate_pattern("{name}-{bogus}-{1}-{date:%Y}") == ["bogus"]


class TestFormatSize:
    @pytest.mark.parametrize("size,expected", [
        (0, "0 B"),
        (1023, "1023 B"),
        (1024, "1.0 KB"),
        (5 * 1024 ** 2, "5.0 MB"),
        (3 * 1024 ** 3, "3.0 GB"),
    ])
    def test_units(self, size, expected):
        assert format_size(size) == expected

    def test_none(self):
        assert format_size(None) is None


_plain_text = st.text(alphabet=st.characters(blacklist_characters="{}"), max_size=40)
_tokens = st.sampled_from([
    "{name}", "{ext}", "{fullname}", "{year}", "{month}", "{date:%Y}", "{size}",
    "{counter:2}", "{random:4}", "{1}", "{nope}", "{", "}",
])


@given(_plain_text)
def test_text_without_braces_is_unchanged(text):
    """Plain text passes through untouched."""
    ctx = TokenContext(file_info=make_info(), now=NOW)
    assert TokenResolver().resolve(text, ctx) == text


@given(st.lists(st.one_of(_plain_text, _tokens), max_size=10))
def test_resolution_never_raises(parts):
    """Any mix of text and tokens resolves to a string."""
    ctx = TokenContext(file_info=make_info(), now=NOW, captures={"1": "x"})
    result = TokenResolver().resolve("".join(parts), ctx)
    assert isinstance(result, str)
