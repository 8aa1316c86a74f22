"""Integration tests: reconcile() against the in-memory Notion store."""

from __future__ import annotations

import pytest

from conftest import FakeNotionStore, fail_n_times, rate_limited, validation_failed
from roster_sync.members import MemberRecord
from roster_sync.notion_client import NotionApiError, PropertyNames, is_transient_error
from roster_sync.reconcile import build_identifier_index, fetch_all_records, reconcile
from roster_sync.retry import RateLimiter, RetryPolicy, retry_all
from roster_sync.shared import SyncCounters

NAMES = PropertyNames()

BUDI = MemberRecord("M1", "Budi Santoso", "+6281234567890")
ANI = MemberRecord("M2", "Ani Wijaya", "")


def _run(store, members, *, retry=None, dry_run=False, backoffs=None, pauses=None):
    counters = SyncCounters(dry_run=dry_run)
    backoffs = backoffs if backoffs is not None else []
    pauses = pauses if pauses is not None else []
    retry = retry or RetryPolicy(is_retryable=is_transient_error, sleep=backoffs.append)
    index = reconcile(
        members, store, NAMES, retry,
        RateLimiter(delay_seconds=0.35, sleep=pauses.append),
        counters, dry_run=dry_run,
    )
    return counters, index


# ---------------------------------------------------------------------------
# Create vs update
# ---------------------------------------------------------------------------

class TestCreateOrUpdate:
    def test_existing_identifier_is_updated(self, store):
        page_id = store.seed("M1", "Old Name", "+6280000000000")
        counters, _ = _run(store, [BUDI])
        assert counters.records_updated == 1
        assert counters.records_created == 0
        assert store.name_of(page_id) == "Budi Santoso"
        assert store.phone_of(page_id) == "+6281234567890"
        assert len(store.pages) == 1

    def test_update_does_not_rewrite_identifier(self, store):
        page_id = store.seed("M1")
        _run(store, [BUDI])
        assert store.identifier_of(page_id) == "M1"
        updated = [arg for op, arg in store.calls if op == "update"]
        assert updated == [page_id]

    def test_unknown_identifier_is_created(self, store):
        counters, index = _run(store, [BUDI])
        assert counters.records_created == 1
        [page_id] = store.pages_for("M1")
        assert index["M1"] == page_id
        assert store.phone_of(page_id) == "+6281234567890"

    def test_empty_phone_written_as_null(self, store):
        page_id = store.seed("M2", "Ani", "+6281111111111")
        _run(store, [ANI])
        assert store.phone_of(page_id) is None

    def test_second_run_is_idempotent(self, store):
        _run(store, [BUDI, ANI])
        counters, _ = _run(store, [BUDI, ANI])
        assert counters.records_created == 0
        assert counters.records_updated == 2
        assert len(store.pages) == 2

    def test_duplicate_csv_identifier_updates_created_page(self, store):
        again = MemberRecord("M1", "Budi S.", "+6281234567890")
        counters, _ = _run(store, [BUDI, again])
        assert counters.records_created == 1
        assert counters.records_updated == 1
        assert len(store.pages_for("M1")) == 1

    def test_one_pause_per_write_and_per_page(self, store):
        store.seed("M1")
        pauses: list[float] = []
        _run(store, [BUDI, ANI], pauses=pauses)
        # one query page + two writes
        assert pauses == [0.35, 0.35, 0.35]


# ---------------------------------------------------------------------------
# Read phase
# ---------------------------------------------------------------------------

class TestReadPhase:
    def test_pagination_visits_every_page(self):
        store = FakeNotionStore(page_size=2)
        for i in range(5):
            store.seed(f"M{i}")
        records = fetch_all_records(
            store, RetryPolicy(sleep=lambda s: None), RateLimiter(0, sleep=lambda s: None),
        )
        assert len(records) == 5
        assert store.count("query") == 3

    def test_records_without_identifier_ignored(self, store):
        store.seed(None, "Orphan")
        counters, index = _run(store, [BUDI])
        assert counters.remote_records_scanned == 1
        assert counters.records_created == 1
        assert list(index) == ["M1"]

    def test_duplicate_remote_identifier_first_wins(self, store):
        first = store.seed("M1")
        store.seed("M1")
        counters = SyncCounters()
        index = build_identifier_index(
            fetch_all_records(store, RetryPolicy(), RateLimiter(0)), counters,
        )
        assert index == {"M1": first}
        assert any("duplicate remote identifier" in w for w in counters.warnings)

    def test_transient_query_failure_is_retried(self, store):
        store.seed("M1")
        store.fail["query"] = fail_n_times(2, rate_limited)
        backoffs: list[float] = []
        counters, _ = _run(store, [BUDI], backoffs=backoffs)
        assert counters.records_updated == 1
        assert backoffs == [1.0, 2.0]

    def test_exhausted_query_retries_abort(self, store):
        store.fail["query"] = fail_n_times(99, rate_limited)
        backoffs: list[float] = []
        with pytest.raises(NotionApiError):
            _run(store, [BUDI], backoffs=backoffs)
        assert store.count("query") == 5
        assert store.count("create") == 0
        assert backoffs == [1.0, 2.0, 3.0, 4.0]


# ---------------------------------------------------------------------------
# Write failures
# ---------------------------------------------------------------------------

class TestWriteFailures:
    def test_exhausted_write_counts_failed_and_continues(self, store):
        store.fail["create"] = fail_n_times(5, rate_limited)
        backoffs: list[float] = []
        pauses: list[float] = []
        counters, _ = _run(store, [BUDI, ANI], backoffs=backoffs, pauses=pauses)
        # BUDI uses up all five attempts; ANI's create then succeeds
        assert counters.records_failed == 1
        assert counters.records_created == 1
        assert store.count("create") == 6
        assert backoffs == [1.0, 2.0, 3.0, 4.0]
        assert store.pages_for("M2")
        assert not store.pages_for("M1")
        assert any("M1" in w for w in counters.warnings)
        # one query page, then one pause per row whether or not the write succeeded
        assert pauses == [0.35, 0.35, 0.35]

    def test_validation_error_not_retried_by_default(self, store):
        store.seed("M1")
        store.fail["update"] = fail_n_times(1, validation_failed)
        backoffs: list[float] = []
        pauses: list[float] = []
        counters, _ = _run(store, [BUDI, ANI], backoffs=backoffs, pauses=pauses)
        assert counters.records_failed == 1
        assert counters.records_created == 1
        assert store.count("update") == 1
        assert backoffs == []
        assert pauses == [0.35, 0.35, 0.35]

    def test_retry_all_errors_retries_validation(self, store):
        store.seed("M1")
        store.fail["update"] = fail_n_times(1, validation_failed)
        backoffs: list[float] = []
        retry = RetryPolicy(is_retryable=retry_all, sleep=backoffs.append)
        counters, _ = _run(store, [BUDI], retry=retry)
        assert counters.records_updated == 1
        assert store.count("update") == 2
        assert backoffs == [1.0]


# ---------------------------------------------------------------------------
# Dry run
# ---------------------------------------------------------------------------

class TestDryRun:
    def test_no_writes_issued(self, store):
        store.seed("M1")
        counters, _ = _run(store, [BUDI, ANI, ANI], dry_run=True)
        assert counters.records_updated == 2
        assert counters.records_created == 1
        assert store.count("create") == 0
        assert store.count("update") == 0
