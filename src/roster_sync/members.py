"""roster_sync.members

Map parsed roster CSV rows onto MemberRecord values.

Two column layouts are supported:
  positional - fixed indices (identifier, name parts, phone scan start)
  header     - indices discovered by keyword-matching the header row

Layout mode "auto" tries the header first and falls back to positional
when the header does not name an identifier and at least one name column.
A header layout with no phone column scans for the phone from
phone_start_index, as positional does.

Rows that cannot produce a record (too few columns, blank identifier,
blank composed name) are skipped and counted, never raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from roster_sync.normalize import (
    DEFAULT_COUNTRY_CODE,
    compose_name,
    normalize_phone,
    parse_csv_line,
    trim,
)

log = logging.getLogger(__name__)

VALID_LAYOUT_MODES = ("auto", "positional", "header")

# Each alternative is a tuple of fragments; all fragments must occur in the
# header (case-insensitive) for that alternative to match.
Keywords = tuple[tuple[str, ...], ...]

DEFAULT_KEYWORDS: dict[str, Keywords] = {
    "identifier": (("member", "id"),),
    "title": (("title",),),
    "first_name": (("first", "name"),),
    "last_name": (("last", "name"), ("surname",)),
    "phone": (("phone",), ("mobile",), ("telephone",)),
}


class LayoutError(ValueError):
    """Raised when header mode cannot resolve the required columns."""


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MemberRecord:
    id: str
    name: str
    phone: str = ""

    @property
    def has_phone(self) -> bool:
        return bool(self.phone)


# ---------------------------------------------------------------------------
# Layout config + resolved layout
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LayoutConfig:
    """How to locate columns in the roster CSV."""

    mode: str = "auto"
    id_index: int = 0
    name_indices: tuple[int, ...] = (3, 4)
    phone_start_index: int = 5
    min_columns: int = 4
    keywords: dict[str, Keywords] = field(default_factory=lambda: dict(DEFAULT_KEYWORDS))
    country_code: str = DEFAULT_COUNTRY_CODE


@dataclass(frozen=True)
class ColumnLayout:
    """Resolved column indices for one CSV document."""

    mode: str
    id_index: int
    name_indices: tuple[int, ...]
    phone_index: int | None = None
    phone_start_index: int | None = None
    min_columns: int = 4


def match_header(headers: Sequence[str], alternatives: Keywords) -> int | None:
    """Return the index of the first header matching any alternative, or None."""
    lowered = [h.lower() for h in headers]
    for idx, header in enumerate(lowered):
        for fragments in alternatives:
            if fragments and all(f.lower() in header for f in fragments):
                return idx
    return None


def _positional_layout(config: LayoutConfig) -> ColumnLayout:
    return ColumnLayout(
        mode="positional",
        id_index=config.id_index,
        name_indices=tuple(config.name_indices),
        phone_start_index=config.phone_start_index,
        min_columns=config.min_columns,
    )


def _header_layout(headers: Sequence[str], config: LayoutConfig) -> ColumnLayout | None:
    kw = config.keywords
    id_idx = match_header(headers, kw.get("identifier", ()))
    name_idx = [
        match_header(headers, kw.get(part, ()))
        for part in ("title", "first_name", "last_name")
    ]
    name_indices = tuple(i for i in name_idx if i is not None and i != id_idx)
    if id_idx is None or not name_indices:
        return None
    phone_idx = match_header(headers, kw.get("phone", ()))
    if phone_idx is None:
        log.warning(
            "No phone column in header; scanning from column %d for phone numbers",
            config.phone_start_index,
        )
    return ColumnLayout(
        mode="header",
        id_index=id_idx,
        name_indices=name_indices,
        phone_index=phone_idx,
        phone_start_index=config.phone_start_index if phone_idx is None else None,
        min_columns=config.min_columns,
    )


def resolve_layout(headers: Sequence[str] | None, config: LayoutConfig) -> ColumnLayout:
    """Pick the column layout for a document given its header row."""
    if config.mode not in VALID_LAYOUT_MODES:
        raise LayoutError(f"unknown layout mode {config.mode!r}")
    if config.mode == "positional":
        return _positional_layout(config)

    layout = _header_layout(headers or [], config)
    if layout is not None:
        return layout
    if config.mode == "header":
        raise LayoutError(
            "header row does not name an identifier and a name column: "
            f"{list(headers or [])!r}"
        )
    log.debug("Header keywords not matched; using positional layout")
    return _positional_layout(config)


# ---------------------------------------------------------------------------
# Row -> record
# ---------------------------------------------------------------------------

def _col(row: Sequence[str], idx: int | None) -> str | None:
    if idx is None or idx < 0 or idx >= len(row):
        return None
    return trim(row[idx])


def _pick_phone(row: Sequence[str], layout: ColumnLayout, country_code: str) -> str:
    if layout.phone_index is not None:
        return normalize_phone(_col(row, layout.phone_index), country_code=country_code)
    start = layout.phone_start_index if layout.phone_start_index is not None else len(row)
    for idx in range(start, len(row)):
        phone = normalize_phone(row[idx], country_code=country_code)
        if phone:
            return phone
    return ""


def build_member(
    row: Sequence[str],
    layout: ColumnLayout,
    country_code: str = DEFAULT_COUNTRY_CODE,
) -> MemberRecord | None:
    """Return a MemberRecord for one parsed body row, or None to skip it."""
    if len(row) < layout.min_columns:
        return None
    member_id = _col(row, layout.id_index)
    if not member_id:
        return None
    name = compose_name(_col(row, i) for i in layout.name_indices)
    if not name:
        return None
    return MemberRecord(
        id=member_id,
        name=name,
        phone=_pick_phone(row, layout, country_code),
    )


# ---------------------------------------------------------------------------
# Document -> records
# ---------------------------------------------------------------------------

@dataclass
class BuildResult:
    members: list[MemberRecord]
    skipped: int
    layout: ColumnLayout
    rows_read: int = 0

    @property
    def with_phone(self) -> list[MemberRecord]:
        return [m for m in self.members if m.has_phone]


def build_members(lines: Sequence[str], config: LayoutConfig) -> BuildResult:
    """Build records from CSV lines (first line is the header).

    Raises LayoutError in header mode when the columns cannot be found.
    """
    if not lines:
        return BuildResult(members=[], skipped=0, layout=_positional_layout(config))

    headers = parse_csv_line(lines[0])
    layout = resolve_layout(headers, config)
    log.info(
        "Column layout: mode=%s id=%s name=%s phone=%s",
        layout.mode, layout.id_index, layout.name_indices,
        layout.phone_index if layout.phone_index is not None else f"{layout.phone_start_index}+",
    )

    members: list[MemberRecord] = []
    skipped = 0
    for line_no, line in enumerate(lines[1:], start=2):
        row = parse_csv_line(line)
        member = build_member(row, layout, config.country_code)
        if member is None:
            skipped += 1
            log.debug("Skipping CSV line %d (%d columns)", line_no, len(row))
            continue
        members.append(member)

    return BuildResult(
        members=members,
        skipped=skipped,
        layout=layout,
        rows_read=len(lines) - 1,
    )
