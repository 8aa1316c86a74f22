"""Normalization functions for roster CSV ingestion.

Line tokenizing, whitespace cleanup, name composition and phone
canonicalization.  None of these raise on bad input: an unusable value
comes back as "" (or None for trim/normalize_space).
"""

from __future__ import annotations

import re
from typing import Iterable

DEFAULT_COUNTRY_CODE = "62"
DEFAULT_TRUNK_PREFIX = "0"
DEFAULT_MOBILE_LEAD = "8"

_NON_PHONE_CHARS = re.compile(r"[^0-9+]")
_LINE_BREAK = re.compile(r"\r?\n")


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: CSV line tokenizing
# ---------------------------------------------------------------------------

def parse_csv_line(line: str) -> list[str]:
    """Split one CSV line into trimmed fields.

    Double quotes delimit a field; ``""`` inside a quoted field is a literal
    quote.  Quote balance is not checked: an unterminated quote runs to the
    end of the line.
    """
    fields: list[str] = []
    buf: list[str] = []
    in_quote = False
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if ch == '"':
            if in_quote and i + 1 < n and line[i + 1] == '"':
                buf.append('"')
                i += 1
            else:
                in_quote = not in_quote
        elif ch == "," and not in_quote:
            fields.append("".join(buf))
            buf = []
        else:
            buf.append(ch)
        i += 1
    fields.append("".join(buf))
    return [f.strip() for f in fields]


def split_csv_lines(text: str) -> list[str]:
    """Return the non-blank lines of a CSV document, each stripped."""
    lines = _LINE_BREAK.split(text.strip())
    return [ln.strip() for ln in lines if ln.strip()]


# ---------------------------------------------------------------------------
# Rule 4: compose_name
# ---------------------------------------------------------------------------

def compose_name(parts: Iterable[str | None]) -> str:
    """Space-join the non-empty name parts (title / first / last)."""
    cleaned = [normalize_space(p) for p in parts]
    return " ".join(p for p in cleaned if p)


# ---------------------------------------------------------------------------
# Rule 5: normalize_phone
# ---------------------------------------------------------------------------

def _phone_pattern(country_code: str) -> re.Pattern[str]:
    return re.compile(rf"^\+{re.escape(country_code)}\d{{8,13}}$")


def normalize_phone(
    value: str | None,
    *,
    country_code: str = DEFAULT_COUNTRY_CODE,
    trunk_prefix: str = DEFAULT_TRUNK_PREFIX,
    mobile_lead: str = DEFAULT_MOBILE_LEAD,
) -> str:
    """Return a canonical ``+<cc>`` phone or "".

    Keeps digits and a leading '+'.  A leading trunk '0' becomes '+<cc>',
    a bare '<cc>' gains '+', a bare mobile lead digit gains '+<cc>'.  The
    result must be '+<cc>' followed by 8-13 digits.  Failing that, a
    10-13 digit number that never carried '+' is retried as '+<cc><digits>'.
    """
    v = trim(value)
    if v is None:
        return ""

    stripped = _NON_PHONE_CHARS.sub("", v)
    had_plus = stripped.startswith("+")
    digits = stripped.replace("+", "")
    cleaned = f"+{digits}" if had_plus else digits
    if not digits:
        return ""

    if cleaned.startswith(trunk_prefix):
        cleaned = f"+{country_code}{cleaned[len(trunk_prefix):]}"
    elif cleaned.startswith(country_code):
        cleaned = f"+{cleaned}"
    elif cleaned.startswith(mobile_lead):
        cleaned = f"+{country_code}{cleaned}"

    pattern = _phone_pattern(country_code)
    if pattern.match(cleaned):
        return cleaned

    if not had_plus and 10 <= len(digits) <= 13:
        fallback = f"+{country_code}{digits}"
        if pattern.match(fallback):
            return fallback

    return ""
