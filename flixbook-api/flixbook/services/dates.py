# flixbook/services/dates.py
"""
Title/date inference for gallery items.

A media file's date comes from the first strategy that yields one:
  1) filename_calendar  yyyy-mm-dd (or dd-mm-yyyy) digit run in the name
  2) filename_unix      a 10-digit epoch-seconds run inside a plausible window
  3) filesystem         birth time, then modification time, then change time
If none does, the timestamp is 0 and the title is cleaned up from the filename.

Everything here is a pure function of (filename, FileTimes, now, rules).
Reading FileTimes from disk is done by read_file_times(), which callers inject.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, NamedTuple, Optional, Tuple

LOGGER = logging.getLogger("flixbook.dates")


@dataclass(frozen=True)
class FileTimes:
    """Filesystem timestamps in epoch seconds; any of them may be missing."""
    birth: Optional[float] = None
    modified: Optional[float] = None
    changed: Optional[float] = None


def read_file_times(path: Path) -> Optional[FileTimes]:
    """stat() a file; None when it cannot be read (inference moves on)."""
    try:
        st = path.stat()
    except OSError as e:
        LOGGER.debug(f"stat failed for {path}: {e}")
        return None
    return FileTimes(
        birth=getattr(st, "st_birthtime", None),  # macOS/BSD/Windows; absent on most Linux
        modified=st.st_mtime,
        changed=st.st_ctime,
    )


@dataclass(frozen=True)
class DateRules:
    min_year: int = 2008
    max_year: int = 2100
    unix_min: datetime = datetime(2008, 1, 1, tzinfo=timezone.utc)
    future_skew: timedelta = timedelta(days=7)

    @classmethod
    def from_settings(cls, settings) -> "DateRules":
        return cls(
            min_year=settings.min_year,
            max_year=settings.max_year,
            unix_min=settings.unix_min,
            future_skew=timedelta(days=settings.future_skew_days),
        )


DEFAULT_RULES = DateRules()


class DateResolution(NamedTuple):
    value: datetime   # naive, local time
    source: str       # name of the strategy that produced it


# ---------- Filename patterns ----------
# Lookarounds keep every pattern from matching inside a longer digit run.
_YMD_RE = re.compile(r"(?<!\d)(\d{4})[-_.]?(\d{2})[-_.]?(\d{2})(?!\d)")
_DMY_RE = re.compile(r"(?<!\d)(\d{2})[-_.]?(\d{2})[-_.]?(\d{4})(?!\d)")
_UNIX_RE = re.compile(r"(?<!\d)(\d{10})(?!\d)")

_PREFIX_RE = re.compile(r"^(IMG|VID|PXL|Snapchat|WhatsApp|WA|DSC|PHOTO|VIDEO)[-_\s]+", re.IGNORECASE)
_SEPARATORS_RE = re.compile(r"[-_\s]+")
_WORD_START_RE = re.compile(r"\b\w")

# Override `date` strings (whole-string matches)
_COMPACT_DATE_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")
_DMY_DATE_RE = re.compile(r"^(\d{2})[/-](\d{2})[/-](\d{4})$")
_YMD_DATE_RE = re.compile(r"^(\d{4})[/-](\d{2})[/-](\d{2})$")

# Display titles are English regardless of the process locale
_MONTH_ABBR = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
               "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def _stem(filename: str) -> str:
    return os.path.splitext(filename)[0]


def _calendar_day(y: int, m: int, d: int, rules: DateRules) -> Optional[datetime]:
    if not (rules.min_year <= y <= rules.max_year):
        return None
    try:
        return datetime(y, m, d)
    except ValueError:
        return None


# ---------- Strategies ----------
# Each takes (stem, file_times, now, rules) and returns a naive local datetime or None.

def from_filename_calendar(stem: str, file_times: Optional[FileTimes],
                           now: datetime, rules: DateRules) -> Optional[datetime]:
    for m in _YMD_RE.finditer(stem):
        y, mo, d = map(int, m.groups())
        dt = _calendar_day(y, mo, d, rules)
        if dt:
            return dt
    for m in _DMY_RE.finditer(stem):
        d, mo, y = map(int, m.groups())
        dt = _calendar_day(y, mo, d, rules)
        if dt:
            return dt
    return None


def from_filename_unix(stem: str, file_times: Optional[FileTimes],
                       now: datetime, rules: DateRules) -> Optional[datetime]:
    lower = rules.unix_min.timestamp()
    upper = now.timestamp() + rules.future_skew.total_seconds()
    for m in _UNIX_RE.finditer(stem):
        secs = int(m.group(1))
        if lower <= secs <= upper:
            return datetime.fromtimestamp(secs)
    return None


def from_file_times(stem: str, file_times: Optional[FileTimes],
                    now: datetime, rules: DateRules) -> Optional[datetime]:
    if file_times is None:
        return None
    for value in (file_times.birth, file_times.modified, file_times.changed):
        if not value:
            continue
        try:
            return datetime.fromtimestamp(value)
        except (OverflowError, OSError, ValueError):
            continue
    return None


Strategy = Callable[[str, Optional[FileTimes], datetime, DateRules], Optional[datetime]]

DATE_STRATEGIES: Tuple[Tuple[str, Strategy], ...] = (
    ("filename_calendar", from_filename_calendar),
    ("filename_unix", from_filename_unix),
    ("filesystem", from_file_times),
)


def resolve_date(filename: str, file_times: Optional[FileTimes], *,
                 now: Optional[datetime] = None, rules: DateRules = DEFAULT_RULES) -> Optional[DateResolution]:
    """Run the strategies in order and return the first hit (with its source), or None."""
    now = now or datetime.now(timezone.utc)
    stem = _stem(filename)
    for name, strategy in DATE_STRATEGIES:
        value = strategy(stem, file_times, now, rules)
        if value is not None:
            return DateResolution(value, name)
    return None


def to_millis(dt: datetime) -> int:
    return int(round(dt.timestamp() * 1000))


def infer_timestamp(filename: str, file_times: Optional[FileTimes], *,
                    now: Optional[datetime] = None, rules: DateRules = DEFAULT_RULES) -> int:
    """Epoch millis for a media file, 0 when nothing is known."""
    res = resolve_date(filename, file_times, now=now, rules=rules)
    return to_millis(res.value) if res else 0


def infer_title(filename: str, file_times: Optional[FileTimes], *,
                now: Optional[datetime] = None, rules: DateRules = DEFAULT_RULES) -> str:
    """Formatted date when one resolves, otherwise a cleaned filename, otherwise 'Untitled'."""
    res = resolve_date(filename, file_times, now=now, rules=rules)
    if res:
        return format_display_date(res.value)
    return fallback_title(filename)


def fallback_title(filename: str) -> str:
    return clean_base_name(_stem(filename)) or "Untitled"


# ---------- Titles ----------

def format_display_date(dt: datetime) -> str:
    """'Jan 5, 2024', independent of LC_TIME."""
    return f"{_MONTH_ABBR[dt.month - 1]} {dt.day}, {dt.year}"


def clean_base_name(base: str) -> str:
    """
    'IMG_beach-day_2' -> 'Beach Day 2'
    Drops a camera/app prefix, turns separator runs into single spaces,
    capitalizes the first letter of every word.
    """
    base = _PREFIX_RE.sub("", base)
    base = _SEPARATORS_RE.sub(" ", base).strip()
    if not base:
        return ""
    return _WORD_START_RE.sub(lambda m: m.group(0).upper(), base)


# ---------- Sidecar dates ----------

def _as_epoch_safe(dt: Optional[datetime]) -> Optional[datetime]:
    """dt itself when it converts to epoch millis, else None (year 1 east of UTC, etc.)."""
    if dt is None:
        return None
    try:
        to_millis(dt)
    except (OverflowError, OSError, ValueError):
        LOGGER.debug(f"Date {dt!r} cannot be expressed as epoch millis; ignoring it")
        return None
    return dt


def parse_override_date(value: str) -> Optional[datetime]:
    """
    Parse a sidecar `date` string. Accepts:
      - ISO-8601 ('2024-01-05', '2024-01-05T10:00:00', '2024-01-05T10:00:00Z')
      - yyyymmdd
      - dd-mm-yyyy / dd/mm/yyyy
      - yyyy-mm-dd / yyyy/mm/dd
    Returns a naive local datetime, or None when nothing fits or the date
    cannot be turned into an epoch timestamp.
    """
    s = str(value or "").strip()
    if not s:
        return None

    iso = s[:-1] + "+00:00" if s.endswith("Z") else s
    try:
        dt = datetime.fromisoformat(iso)
    except ValueError:
        dt = None
    if dt is not None:
        if dt.tzinfo is not None:
            try:
                dt = dt.astimezone().replace(tzinfo=None)
            except (OverflowError, OSError, ValueError):
                return None
        return _as_epoch_safe(dt)

    for pattern, order in ((_COMPACT_DATE_RE, "ymd"), (_DMY_DATE_RE, "dmy"), (_YMD_DATE_RE, "ymd")):
        m = pattern.match(s)
        if not m:
            continue
        a, b, c = map(int, m.groups())
        y, mo, d = (a, b, c) if order == "ymd" else (c, b, a)
        try:
            return _as_epoch_safe(datetime(y, mo, d))
        except ValueError:
            return None
    return None
