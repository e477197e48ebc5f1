"""Date parsing and range helpers."""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone

from dateutil import parser as date_parser


MDY_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})")
DMY_DASH_RE = re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})")
ISO_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")


def _build(year: str, month: str, day: str) -> date | None:
    try:
        return date(int(year), int(month), int(day))
    except ValueError:
        return None


def parse_mdy(raw: str | None) -> date | None:
    """``MM/DD/YYYY``; compound values like ``01/02/2025 as of 01/01/2025`` use the first date."""
    match = MDY_RE.match((raw or "").strip())
    if not match:
        return None
    month, day, year = match.groups()
    return _build(year, month, day)


def parse_dmy_dash(raw: str | None) -> date | None:
    match = DMY_DASH_RE.match((raw or "").strip())
    if not match:
        return None
    day, month, year = match.groups()
    return _build(year, month, day)


def parse_iso(raw: str | None) -> date | None:
    match = ISO_RE.match((raw or "").strip())
    if not match:
        return None
    return _build(*match.groups())


def parse_flexible(raw: str | None) -> date | None:
    """Best-effort parse for hand-edited files: ISO, then US month-first, then dateutil."""
    text = (raw or "").strip()
    if not text:
        return None
    parsed = parse_iso(text) or parse_mdy(text)
    if parsed is not None:
        return parsed
    try:
        return date_parser.parse(text).date()
    except (ValueError, OverflowError):
        return None


def day_before(value: date) -> date:
    return value - timedelta(days=1)


def days_between(start: date, end: date) -> int:
    return (end - start).days


def year_bounds(year: int) -> tuple[date, date]:
    return date(year, 1, 1), date(year, 12, 31)


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)
