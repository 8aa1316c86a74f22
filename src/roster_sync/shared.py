"""roster_sync.shared

Per-run counters and report writing shared by the pipeline and the CLI.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


# ---------------------------------------------------------------------------
# SyncCounters
# ---------------------------------------------------------------------------

@dataclass
class SyncCounters:
    # Roster
    rows_read: int = 0
    rows_skipped: int = 0
    members_built: int = 0
    members_with_phone: int = 0
    layout_mode: str | None = None
    # Remote store
    remote_records_scanned: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_failed: int = 0
    # Export
    contacts_exported: int = 0
    export_sent: bool = False
    # Run
    dry_run: bool = False
    fatal_error: str | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.fatal_error is None

    def to_dict(self) -> dict[str, Any]:
        d = {k: v for k, v in self.__dict__.items() if k != "warnings"}
        d["warnings"] = self.warnings[:50]
        return d


# ---------------------------------------------------------------------------
# Report builder
# ---------------------------------------------------------------------------

def build_sync_report(counters: SyncCounters) -> str:
    lines = [
        "=== Roster Sync Run Report ===",
        f"dry_run            : {counters.dry_run}",
        "",
        "--- Roster ---",
        f"rows_read          : {counters.rows_read}",
        f"rows_skipped       : {counters.rows_skipped}",
        f"members_built      : {counters.members_built}",
        f"members_with_phone : {counters.members_with_phone}",
        f"layout_mode        : {counters.layout_mode}",
        "",
        "--- Remote store ---",
        f"records_scanned    : {counters.remote_records_scanned}",
        f"records_updated    : {counters.records_updated}",
        f"records_created    : {counters.records_created}",
        f"records_failed     : {counters.records_failed}",
        "",
        "--- Export ---",
        f"contacts_exported  : {counters.contacts_exported}",
        f"export_sent        : {counters.export_sent}",
    ]
    if counters.fatal_error:
        lines.append(f"fatal_error        : {counters.fatal_error}")
    if counters.warnings:
        lines += ["", "--- Warnings (first 10) ---"]
        lines += [f"  {w}" for w in counters.warnings[:10]]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    counters: SyncCounters,
    report_dir: Path,
    source: dict[str, str] | None = None,
) -> Path:
    report = {
        "run_id": run_id,
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        **(source or {}),
        "counters": counters.to_dict(),
    }
    report_path = report_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
