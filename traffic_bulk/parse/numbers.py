"""Utilities for parsing traffic figures out of rendered text."""
import re

# Number with optional thousands separators and an optional K/M/B suffix.
# A suffix directly followed by another letter ("12 months") is not a suffix.
NUMBER_WITH_SUFFIX = r"\d[\d,]*(?:\.\d+)?(?:\s?[KMBkmb](?![A-Za-z]))?"
DURATION_HMS = r"\d{2}:\d{2}:\d{2}"
PERCENTAGE = r"\d+(?:\.\d+)?\s*%"

_NUMBER_RE = re.compile(r"^(\d[\d,]*(?:\.\d+)?|\.\d+)(?:\s*([KMBkmb])(?![A-Za-z]))?")
_HMS_RE = re.compile(r"^(\d+):(\d{1,2}):(\d{1,2})$")
_MS_RE = re.compile(r"^(\d+):(\d{1,2})$")
_UNIT_RE = {
    "h": re.compile(r"(\d+)\s*h"),
    "m": re.compile(r"(\d+)\s*m(?!s)"),
    "s": re.compile(r"(\d+)\s*s"),
}
_DECIMAL_RE = re.compile(r"^\d+(?:\.\d+)?$")

MULTIPLIERS = {"": 1, "K": 1_000, "M": 1_000_000, "B": 1_000_000_000}

PAGES_PER_VISIT_RANGE = (0.1, 20.0)
BOUNCE_RATE_RANGE = (0.0, 100.0)


def parse_number_with_suffix(value: str | None) -> int | None:
    """
    Parse "12.3K" -> 12300, "4.5M" -> 4500000, "82.28B" -> 82280000000.

    Commas are thousands separators. Returns None when no leading number.
    """
    if not value:
        return None
    cleaned = value.strip().replace(",", "")
    match = _NUMBER_RE.match(cleaned)
    if not match:
        return None
    try:
        number = float(match.group(1))
    except ValueError:
        return None
    suffix = (match.group(2) or "").upper()
    return round(number * MULTIPLIERS[suffix])


def parse_duration_to_seconds(value: str | None) -> int | None:
    """
    Parse a session duration into seconds.

    Supports "00:14:24", "14:24", "1h 30m", "2m 15s" and "45s".
    A well-formed zero duration gives 0; anything unparseable gives None.
    """
    if not value:
        return None
    cleaned = value.strip().lower()

    match = _HMS_RE.match(cleaned)
    if match:
        hours, minutes, seconds = (int(g) for g in match.groups())
        return hours * 3600 + minutes * 60 + seconds

    match = _MS_RE.match(cleaned)
    if match:
        minutes, seconds = (int(g) for g in match.groups())
        return minutes * 60 + seconds

    found = False
    total = 0
    for unit, factor in (("h", 3600), ("m", 60), ("s", 1)):
        unit_match = _UNIT_RE[unit].search(cleaned)
        if unit_match:
            found = True
            total += int(unit_match.group(1)) * factor
    return total if found else None


def parse_percentage(value: str | None) -> float | None:
    """Parse "45.2%" -> 45.2."""
    if not value:
        return None
    cleaned = value.strip().rstrip("%").strip()
    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_decimal(value: str | None) -> float | None:
    """Parse a plain decimal such as "3.13"; anything with units or symbols is rejected."""
    if not value:
        return None
    cleaned = value.strip()
    if not _DECIMAL_RE.match(cleaned):
        return None
    return float(cleaned)


def format_duration(seconds: int | None) -> str | None:
    """Format seconds as HH:MM:SS."""
    if seconds is None:
        return None
    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def valid_pages_per_visit(value: float | None) -> bool:
    """Pages per visit sanity bound."""
    low, high = PAGES_PER_VISIT_RANGE
    return value is not None and low <= value <= high


def valid_bounce_rate(value: float | None) -> bool:
    """Bounce rate is a percentage."""
    low, high = BOUNCE_RATE_RANGE
    return value is not None and low <= value <= high
