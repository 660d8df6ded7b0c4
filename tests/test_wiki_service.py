from datetime import datetime

import pytest

from server.src.modules.wiki_errors import ValidationError
from server.src.modules.wiki_markup import normalize_markup, to_html
from server.src.modules.wiki_service import (
    normalize_lookup_title,
    section_char,
    shorthand_title,
    time_delta,
    validate_title,
)


def test_title_validation():
    assert validate_title("  Main Page  ") == "Main Page"
    assert validate_title("Category:Spells-2") == "Category:Spells-2"
    with pytest.raises(ValidationError):
        validate_title("   ")
    with pytest.raises(ValidationError):
        validate_title("x" * 36)
    with pytest.raises(ValidationError):
        validate_title("bad/title")
    assert validate_title("x" * 35) == "x" * 35


def test_derived_title_fields():
    assert shorthand_title(" My Page ") == "My_Page"
    assert section_char("apple pie") == "A"
    assert normalize_lookup_title("My Page") == "My_Page"
    assert normalize_lookup_title("My_Page") == "My_Page"


def test_time_delta_by_year():
    assert time_delta(2020) == (datetime(2020, 1, 1), datetime(2021, 1, 1))


def test_time_delta_by_month_wraps_the_year():
    assert time_delta(2020, 12) == (datetime(2020, 12, 1), datetime(2021, 1, 1))


def test_time_delta_by_day():
    assert time_delta(2020, 2, 29) == (datetime(2020, 2, 29), datetime(2020, 3, 1))


def test_time_delta_without_year_runs_until_now():
    now = datetime(2024, 5, 6, 7, 8, 9)
    assert time_delta(now=now) == (datetime(1970, 1, 1), now)


def test_time_delta_rejects_impossible_dates():
    with pytest.raises(ValidationError):
        time_delta(2021, 2, 30)


def test_markup_rendering():
    assert "<strong>bold</strong>" in to_html("**bold**", "markdown")
    assert to_html("a < b\n\nsecond", "text") == "<p>a &lt; b</p>\n<p>second</p>"
    assert normalize_markup("") == "markdown"
    with pytest.raises(ValidationError):
        normalize_markup("wikitext")
