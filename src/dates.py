"""Date expressions and timestamp helpers.

All instants handled by the core are timezone-aware UTC datetimes. Local
wall-clock forms (``today``, ``2026-02-17``, ``2026-02-17 09:30``) are read in
the project timezone, which callers pass explicitly or which defaults to the
process-wide value from ``settings.project_timezone``.
"""
from __future__ import annotations
import logging
import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional

from errors import DateParseError

logger = logging.getLogger(__name__)

COMPACT_FORMAT = "%Y%m%dT%H%M%SZ"
SUPPORTED_FORMS = (
    "now/today/tomorrow/yesterday, +Nd/+Nh/+Nm (or -N), YYYYMMDDTHHMMSSZ, RFC3339, "
    "YYYY-MM-DD, YYYY-MM-DDTHH:MM, YYYY-MM-DD HH:MM"
)

RELATIVE_RE = re.compile(r"^(?P<sign>[+-])(?P<num>\d+)(?P<unit>[dhm])$")
COMPACT_RE = re.compile(r"^\d{8}T\d{6}Z$")
RFC3339_RE = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}[Tt ]\d{2}:\d{2}:\d{2})(?:\.(?P<frac>\d+))?(?P<offset>[Zz]|[+-]\d{2}:\d{2})$"
)
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
LOCAL_DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}$")

_UNITS = {"d": "days", "h": "hours", "m": "minutes"}


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _project_tz(tz: Optional[tzinfo]) -> tzinfo:
    if tz is not None:
        return tz
    from settings import project_timezone  # local import to avoid cycle
    return project_timezone()


def parse_date_expr(text: str, now: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """Resolve a date expression to an absolute UTC instant.

    Forms are tried in a fixed order: keywords, relative offsets, compact
    UTC stamps, RFC3339, bare dates, then local date-times.
    """
    token = text.strip()
    lower = token.lower()

    if lower == "now":
        return now
    if lower in ("today", "tomorrow", "yesterday"):
        zone = _project_tz(tz)
        local_today = now.astimezone(zone).date()
        offset = {"today": 0, "tomorrow": 1, "yesterday": -1}[lower]
        return local_midnight(local_today + timedelta(days=offset), zone)

    match = RELATIVE_RE.match(token)
    if match:
        delta = timedelta(**{_UNITS[match.group("unit")]: int(match.group("num"))})
        return now - delta if match.group("sign") == "-" else now + delta

    if COMPACT_RE.match(token):
        return parse_compact(token)

    match = RFC3339_RE.match(token)
    if match:
        # fromisoformat before 3.11 only takes 3 or 6 fraction digits
        frac = match.group("frac")
        offset = match.group("offset")
        normalized = match.group("base").replace("t", "T")
        if frac:
            normalized += "." + frac[:6].ljust(6, "0")
        normalized += "+00:00" if offset in "Zz" else offset
        try:
            return datetime.fromisoformat(normalized).astimezone(timezone.utc)
        except ValueError as exc:
            raise DateParseError(f"invalid RFC3339 timestamp: {text}") from exc

    if DATE_RE.match(token):
        try:
            day = date.fromisoformat(token)
        except ValueError as exc:
            raise DateParseError(f"invalid date: {text}") from exc
        return local_midnight(day, _project_tz(tz))

    if LOCAL_DATETIME_RE.match(token):
        try:
            naive = datetime.strptime(token.replace("T", " "), "%Y-%m-%d %H:%M")
        except ValueError as exc:
            raise DateParseError(f"invalid local date-time: {text}") from exc
        return local_to_utc(naive, _project_tz(tz))

    raise DateParseError(f"unrecognized date expression: {text!r}; supported formats: {SUPPORTED_FORMS}")


def local_midnight(day: date, tz: tzinfo) -> datetime:
    return local_to_utc(datetime.combine(day, time()), tz)


def local_to_utc(naive: datetime, tz: tzinfo) -> datetime:
    """Convert a wall-clock time in ``tz`` to UTC.

    A time inside a spring-forward gap does not exist and is rejected. A time
    inside a fall-back overlap has two candidates; the earlier instant wins.
    """
    first = naive.replace(tzinfo=tz, fold=0)
    second = naive.replace(tzinfo=tz, fold=1)
    first_utc = first.astimezone(timezone.utc)
    second_utc = second.astimezone(timezone.utc)

    if first_utc.astimezone(tz).replace(tzinfo=None) != naive and \
            second_utc.astimezone(tz).replace(tzinfo=None) != naive:
        raise DateParseError(f"local time {naive:%Y-%m-%d %H:%M} does not exist in {tz}")

    if first_utc != second_utc:
        chosen = min(first_utc, second_utc)
        logger.warning("ambiguous local time %s in %s; using earlier instant %s",
                       naive.isoformat(sep=" "), tz, format_compact(chosen))
        return chosen
    return first_utc


def format_compact(instant: datetime) -> str:
    return instant.astimezone(timezone.utc).strftime(COMPACT_FORMAT)


def parse_compact(raw: str) -> datetime:
    try:
        return datetime.strptime(raw, COMPACT_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        raise DateParseError(f"expected YYYYMMDDTHHMMSSZ timestamp, got {raw!r}") from None


def to_project_date(instant: datetime, tz: Optional[tzinfo] = None) -> date:
    return instant.astimezone(_project_tz(tz)).date()


def format_project_date(instant: Optional[datetime], tz: Optional[tzinfo] = None) -> str:
    if instant is None:
        return ''
    return to_project_date(instant, tz).isoformat()
