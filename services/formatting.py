#!/usr/bin/env python3
"""
Presentation and request-parameter helpers shared by the API and the CLI.
"""

import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

_ISO_DATE_RE = re.compile(r'^\d{4}-\d{2}-\d{2}$')
_RELATIVE_DAYS_RE = re.compile(r'^([+-]?\d+)\s+days?(\s+ago)?$')

_DATE_LAYOUTS = (
    '%Y/%m/%d',
    '%Y%m%d',
    '%m/%d/%Y',
    '%d.%m.%Y',
    '%d %B %Y',
    '%d %b %Y',
    '%B %d, %Y',
    '%b %d, %Y',
    '%B %d %Y',
    '%b %d %Y',
)


def format_percentage(value: Any) -> str:
    """
    Render a ratio as a percentage string.

    Upstream providers report either a 0-1 fraction or a 0-100 percentage.
    Values above 1.0 are taken as percentages.

    >>> format_percentage(0.031)
    '3.10%'
    >>> format_percentage(3.1)
    '3.10%'
    """
    number = float(value)
    if number > 1.0:
        number = number / 100
    return '%0.2f%%' % (number * 100)


def format_number(value: Any, decimals: int = 0) -> str:
    """Thousands-separated number, e.g. 12345.6 -> '12,346'."""
    return f"{float(value):,.{decimals}f}"


def _today_utc() -> date:
    return datetime.now(timezone.utc).date()


def canonicalize_date(value: Optional[str], today: Optional[date] = None) -> Optional[str]:
    """
    Normalize a free-form date parameter to YYYY-MM-DD.

    Already-canonical input passes through unchanged. Missing or blank input
    yields None. Anything that cannot be parsed falls back to today's UTC
    date rather than raising.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if _ISO_DATE_RE.match(text):
        return text

    today = today or _today_utc()
    parsed = _parse_date(text, today)
    return (parsed or today).strftime('%Y-%m-%d')


def _parse_date(text: str, today: date) -> Optional[date]:
    lowered = text.lower()

    relative = {'today': 0, 'now': 0, 'yesterday': -1, 'tomorrow': 1}
    if lowered in relative:
        return today + timedelta(days=relative[lowered])

    match = _RELATIVE_DAYS_RE.match(lowered)
    if match:
        days = int(match.group(1))
        if match.group(2):
            days = -abs(days)
        return today + timedelta(days=days)

    try:
        parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc)
        return parsed.date()
    except ValueError:
        pass

    for layout in _DATE_LAYOUTS:
        try:
            return datetime.strptime(text, layout).date()
        except ValueError:
            continue

    return None
