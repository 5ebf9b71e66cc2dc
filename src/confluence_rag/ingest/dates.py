"""Lenient date parsing for ``<time>`` elements and date macros."""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional

LOGGER = logging.getLogger(__name__)

NOT_SPECIFIED = "Date: [Not specified]"

_FALLBACK_FORMATS = (
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d.%m.%Y",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d %H:%M:%S",
)


def parse_date(value: str) -> Optional[date]:
    """Return the calendar date described by ``value`` or ``None``."""

    candidate = value.strip()
    if not candidate:
        return None
    try:
        return datetime.fromisoformat(candidate).date()
    except ValueError:
        pass
    for fmt in _FALLBACK_FORMATS:
        try:
            return datetime.strptime(candidate, fmt).date()
        except ValueError:
            continue
    LOGGER.debug("Unparseable date value %r", value)
    return None


def format_date_line(value: Optional[str]) -> str:
    """Render ``value`` as a ``Date: ...`` line.

    Parseable values become ``YYYY-MM-DD``, unparseable ones are echoed
    verbatim (trimmed) and missing or blank values yield :data:`NOT_SPECIFIED`.
    """

    if value is None or not value.strip():
        return NOT_SPECIFIED
    parsed = parse_date(value)
    if parsed is None:
        return f"Date: {value.strip()}"
    return f"Date: {parsed:%Y-%m-%d}"
