"""Date stamp formats: formatting, parsing and format cycling."""

import re
from datetime import date

DATE_FORMATS = ("MM/DD/YYYY", "DD/MM/YYYY", "YYYY-MM-DD", "Month DD, YYYY")
DEFAULT_DATE_FORMAT = DATE_FORMATS[0]

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)

_MONTH_NAME_RE = re.compile(r"^\s*(\w+)\s+(\d{1,2}),\s+(\d{1,4})\s*$")


def format_date(value: date, fmt: str = DEFAULT_DATE_FORMAT) -> str:
    """Render ``value`` in one of :data:`DATE_FORMATS`; unknown formats fall back to ISO."""
    if fmt == "MM/DD/YYYY":
        return f"{value.month:02d}/{value.day:02d}/{value.year}"
    if fmt == "DD/MM/YYYY":
        return f"{value.day:02d}/{value.month:02d}/{value.year}"
    if fmt == "YYYY-MM-DD":
        return f"{value.year}-{value.month:02d}-{value.day:02d}"
    if fmt == "Month DD, YYYY":
        return f"{MONTH_NAMES[value.month - 1]} {value.day}, {value.year}"
    return value.isoformat()


def parse_date(text: str | None, fmt: str | None) -> date | None:
    """Parse ``text`` written in ``fmt``. Returns None when it does not match."""
    if not text or not fmt:
        return None

    try:
        if fmt in ("MM/DD/YYYY", "DD/MM/YYYY"):
            parts = text.strip().split("/")
            if len(parts) != 3:
                return None
            first, second, year = (int(p) for p in parts)
            month, day = (first, second) if fmt == "MM/DD/YYYY" else (second, first)
            return date(year, month, day)
        if fmt == "YYYY-MM-DD":
            parts = text.strip().split("-")
            if len(parts) != 3:
                return None
            year, month, day = (int(p) for p in parts)
            return date(year, month, day)
        if fmt == "Month DD, YYYY":
            match = _MONTH_NAME_RE.match(text)
            if not match or match.group(1) not in MONTH_NAMES:
                return None
            month = MONTH_NAMES.index(match.group(1)) + 1
            return date(int(match.group(3)), month, int(match.group(2)))
    except ValueError:
        return None
    return None


def next_format(fmt: str | None) -> str:
    """Return the format after ``fmt`` in cycling order."""
    if fmt not in DATE_FORMATS:
        return DATE_FORMATS[0]
    return DATE_FORMATS[(DATE_FORMATS.index(fmt) + 1) % len(DATE_FORMATS)]


def reformat(text: str, from_format: str, to_format: str) -> str | None:
    """Re-render date ``text`` from one format into another, or None if unparseable."""
    parsed = parse_date(text, from_format)
    if parsed is None:
        return None
    return format_date(parsed, to_format)
