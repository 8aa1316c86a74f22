"""roster_sync.pipeline

One complete sync run:

  1.  Fetch roster CSV                      (fatal on failure)
  2.  Parse lines -> MemberRecords          (bad rows skipped + counted)
  3.  Reconcile against the Notion database (read phase fatal, writes per-row)
  4.  Email the vCard bundle                (failure logged only)

run_sync() never raises for the expected failure kinds; it records the
error on the returned SyncCounters instead.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable

import pytz
import requests

from roster_sync.config import SyncSettings
from roster_sync.contact_export import MailgunSender, export_contacts
from roster_sync.members import LayoutError, build_members
from roster_sync.normalize import split_csv_lines
from roster_sync.notion_client import NotionApiError, NotionClient, is_transient_error
from roster_sync.reconcile import RemoteStore, reconcile
from roster_sync.retry import RateLimiter, RetryPolicy, retry_all
from roster_sync.roster_feed import RosterFetchError, fetch_roster_csv
from roster_sync.shared import SyncCounters

log = logging.getLogger(__name__)

FATAL_ERRORS = (
    RosterFetchError,
    LayoutError,
    NotionApiError,
    requests.RequestException,
)


def local_timestamp(tz_name: str, now: datetime | None = None) -> str:
    tz = pytz.timezone(tz_name)
    moment = now.astimezone(tz) if now else datetime.now(tz)
    return moment.strftime("%d/%m/%Y %H:%M:%S %Z")


def build_retry_policy(settings: SyncSettings, sleep: Callable[[float], None]) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.retry.max_attempts,
        base_delay=settings.retry.base_delay_seconds,
        is_retryable=retry_all if settings.retry.retry_all_errors else is_transient_error,
        sleep=sleep,
    )


def build_store(settings: SyncSettings, session: requests.Session) -> NotionClient:
    return NotionClient(
        settings.notion,
        property_names=settings.property_names,
        session=session,
        timeout_s=settings.http_timeout_seconds,
        page_size=settings.page_size,
    )


def run_sync(
    settings: SyncSettings,
    *,
    session: requests.Session | None = None,
    store: RemoteStore | None = None,
    sender: MailgunSender | None = None,
    sleep: Callable[[float], None] = time.sleep,
    dry_run: bool = False,
) -> SyncCounters:
    """Run the full pipeline once and return its counters."""
    counters = SyncCounters(dry_run=dry_run)
    session = session or requests.Session()
    store = store or build_store(settings, session)
    sender = sender or MailgunSender(
        settings.mail, session=session, timeout_s=settings.http_timeout_seconds,
    )
    retry = build_retry_policy(settings, sleep)
    rate_limiter = RateLimiter(delay_seconds=settings.pacing_delay_seconds, sleep=sleep)

    log.info("SYNC STARTED -> %s", local_timestamp(settings.timezone))

    try:
        csv_text = fetch_roster_csv(
            session, settings.csv_url,
            cache_bust=settings.cache_bust,
            timeout=settings.http_timeout_seconds,
        )
        lines = split_csv_lines(csv_text)
        if len(lines) <= 1:
            raise RosterFetchError("roster CSV is empty")

        built = build_members(lines, settings.layout)
        counters.rows_read = built.rows_read
        counters.rows_skipped = built.skipped
        counters.members_built = len(built.members)
        counters.members_with_phone = len(built.with_phone)
        counters.layout_mode = built.layout.mode
        log.info(
            "Found %d members (with phone: %d, skipped rows: %d)",
            counters.members_built, counters.members_with_phone, counters.rows_skipped,
        )

        reconcile(
            built.members, store, settings.property_names,
            retry, rate_limiter, counters, dry_run=dry_run,
        )
    except FATAL_ERRORS as exc:
        counters.fatal_error = f"{type(exc).__name__}: {exc}"
        log.error("FATAL ERROR: %s", exc)
        return counters

    exported, sent = export_contacts(built.members, sender, dry_run=dry_run)
    counters.contacts_exported = exported
    counters.export_sent = sent
    return counters
