"""roster_sync.reconcile

Create-or-update reconciliation of roster members against the remote store.

Processing order:
  1.  Read phase: page through every remote record (retry-wrapped, paced),
      index page ids by identifier.  Exhausted retries abort the run.
  2.  Write phase, per member in CSV order:
        identifier indexed   -> update(name, phone)
        identifier unknown   -> create(name, phone, identifier)
      Exhausted retries count the row as failed and move on.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Protocol

from roster_sync.members import MemberRecord
from roster_sync.notion_client import (
    PropertyNames,
    RemotePage,
    RemoteRecord,
    build_properties,
)
from roster_sync.retry import RateLimiter, RetryPolicy
from roster_sync.shared import SyncCounters

log = logging.getLogger(__name__)


class RemoteStore(Protocol):
    def query_page(self, cursor: str | None = None) -> RemotePage:
        ...

    def find_by_identifier(self, identifier: str) -> list[RemoteRecord]:
        ...

    def create_record(self, properties: dict[str, Any]) -> str:
        ...

    def update_record(self, page_id: str, properties: dict[str, Any]) -> None:
        ...


# ---------------------------------------------------------------------------
# Read phase
# ---------------------------------------------------------------------------

def fetch_all_records(
    store: RemoteStore,
    retry: RetryPolicy,
    rate_limiter: RateLimiter,
) -> list[RemoteRecord]:
    """Return every remote record.  Propagates the error once retries run out."""
    records: list[RemoteRecord] = []
    cursor: str | None = None
    page_no = 0
    while True:
        page_no += 1
        page = retry.call(
            lambda: store.query_page(cursor),
            description=f"query page {page_no}",
        )
        records.extend(page.records)
        rate_limiter.pause()
        cursor = page.next_cursor
        if not cursor:
            break
    log.info("Fetched %d remote records in %d page(s)", len(records), page_no)
    return records


def build_identifier_index(
    records: Iterable[RemoteRecord],
    counters: SyncCounters | None = None,
) -> dict[str, str]:
    """Map identifier -> page id.  The first page seen for an identifier wins."""
    index: dict[str, str] = {}
    for rec in records:
        if not rec.identifier:
            continue
        if rec.identifier in index:
            msg = (
                f"duplicate remote identifier {rec.identifier!r}: "
                f"keeping {index[rec.identifier]}, ignoring {rec.page_id}"
            )
            log.warning(msg)
            if counters is not None:
                counters.warnings.append(msg)
            continue
        index[rec.identifier] = rec.page_id
    return index


# ---------------------------------------------------------------------------
# Write phase
# ---------------------------------------------------------------------------

def reconcile_members(
    members: Iterable[MemberRecord],
    index: dict[str, str],
    store: RemoteStore,
    names: PropertyNames,
    retry: RetryPolicy,
    rate_limiter: RateLimiter,
    counters: SyncCounters,
    dry_run: bool = False,
) -> None:
    """Issue one update or create per member; record outcomes on counters."""
    for member in members:
        page_id = index.get(member.id)

        if dry_run:
            if page_id:
                counters.records_updated += 1
            else:
                counters.records_created += 1
                index[member.id] = f"dry-run:{member.id}"
            continue

        try:
            if page_id:
                props = build_properties(member, names, include_identifier=False)
                retry.call(
                    lambda: store.update_record(page_id, props),
                    description=f"update {member.id}",
                )
                counters.records_updated += 1
            else:
                props = build_properties(member, names, include_identifier=True)
                new_id = retry.call(
                    lambda: store.create_record(props),
                    description=f"create {member.id}",
                )
                index[member.id] = new_id
                counters.records_created += 1
        except Exception as exc:
            counters.records_failed += 1
            counters.warnings.append(f"remote write failed for {member.id}: {exc}")
            log.error("Remote write failed for ID %s: %s", member.id, exc)
        finally:
            rate_limiter.pause()


def reconcile(
    members: list[MemberRecord],
    store: RemoteStore,
    names: PropertyNames,
    retry: RetryPolicy,
    rate_limiter: RateLimiter,
    counters: SyncCounters,
    dry_run: bool = False,
) -> dict[str, str]:
    """Run both phases and return the final identifier index."""
    records = fetch_all_records(store, retry, rate_limiter)
    counters.remote_records_scanned = len(records)
    index = build_identifier_index(records, counters)
    reconcile_members(
        members, index, store, names, retry, rate_limiter, counters,
        dry_run=dry_run,
    )
    log.info(
        "Remote store done: updated=%d created=%d failed=%d",
        counters.records_updated, counters.records_created, counters.records_failed,
    )
    return index
