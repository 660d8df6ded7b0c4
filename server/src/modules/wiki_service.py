from __future__ import annotations

import calendar
import re
from datetime import datetime, timezone
from typing import Any

from server.src.modules.wiki_config import get_wiki_settings
from server.src.modules.wiki_errors import ValidationError
from server.src.modules.wiki_markup import to_html


TITLE_MIN_LENGTH = 1
TITLE_MAX_LENGTH = 35
# \w is unicode aware, so ÅÄÖåäö and friends pass
TITLE_RE = re.compile(r"^[\w\s:-]*$")
SHORTHAND_RE = re.compile(r"^[\w:-]+$")
EPOCH_YEAR = 1970


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def iso_utc(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value or "")


def space_to_underline(value: str) -> str:
    return str(value or "").replace(" ", "_")


def normalize_title(value: Any) -> str:
    return str(value or "").strip()


def validate_title(value: Any) -> str:
    title = normalize_title(value)
    if len(title) < TITLE_MIN_LENGTH:
        raise ValidationError("Title needs at least one character")
    if len(title) > TITLE_MAX_LENGTH:
        raise ValidationError(f"Title may not be longer than {TITLE_MAX_LENGTH} characters")
    if not TITLE_RE.match(title):
        raise ValidationError("Title may only contain letters, digits, spaces, _, - and :")
    return title


def shorthand_title(title: str) -> str:
    return space_to_underline(normalize_title(title))


def section_char(title: str) -> str:
    clean = normalize_title(title)
    if not clean:
        return ""
    return clean[0].upper()[:1]


def normalize_section(value: Any) -> str | None:
    raw = str(value or "").strip()
    if not raw:
        return None
    return raw[0].upper()[:1]


def normalize_lookup_title(value: Any) -> str:
    """Accept either the display title or the shorthand form of a lookup key."""
    return space_to_underline(str(value or "").strip())


def normalize_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def normalize_comment(value: Any) -> str | None:
    if value is None:
        return None
    raw = str(value).strip()
    return raw[:255] if raw else None


def _add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def time_delta(
    year: int | None = None,
    month: int | None = None,
    day: int | None = None,
    now: datetime | None = None,
) -> tuple[datetime, datetime]:
    """Return the ``(from, to)`` window used by date listings.

    Omitted fields fall back to the start of the epoch year, January and the
    first day. The finest given field sets the width of the window: a day, a
    month or a year. Without a year the window runs up to ``now``.
    """
    try:
        start = datetime(year or EPOCH_YEAR, month or 1, day or 1)
    except ValueError as exc:
        raise ValidationError(f"Invalid date: {exc}") from exc
    end = start
    if year:
        end = _add_months(start, 12)
    if month:
        end = _add_months(start, 1)
    if day:
        end = datetime.fromordinal(start.toordinal() + 1)
    if not year:
        end = now or utc_now()
    return start, end


def validate_content(value: Any) -> str:
    content = normalize_text(value)
    if len(content.encode("utf-8")) > get_wiki_settings().max_content_bytes:
        raise ValidationError("Content is too large")
    return content


def fix_title(page: Any) -> None:
    page.title = normalize_title(page.title)
    page.title_char = section_char(page.title)
    page.shorthand_title = shorthand_title(page.title)


def compile_page(page: Any) -> None:
    page.compiled_content = to_html(page.content, page.markup)


def prepare_for_save(page: Any) -> None:
    """Recompute the derived columns of ``page`` right before it is written."""
    compile_page(page)
    fix_title(page)
