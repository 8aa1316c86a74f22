"""Integration test fixtures.

An in-memory stand-in for the Notion database (paginated, with optional
failure injection) plus settings built through the real config loader.
No network traffic: the CSV feed and Mailgun go through MagicMock sessions.
"""

from __future__ import annotations

import itertools
from typing import Any, Callable
from unittest.mock import MagicMock

import pytest

from roster_sync.config import load_settings
from roster_sync.notion_client import (
    NotionApiError,
    PropertyNames,
    RemotePage,
    RemoteRecord,
    extract_title_text,
)

TEST_ENV = {
    "ROSTER_CSV_URL": "https://docs.example.com/pub?output=csv",
    "NOTION_TOKEN": "secret_test",
    "NOTION_DB": "db-test",
    "MAILGUN_API_KEY": "key-test",
    "MAILGUN_DOMAIN": "mg.example.org",
    "EXPORT_RECIPIENT": "admin@example.org",
}


# ---------------------------------------------------------------------------
# Fake remote store
# ---------------------------------------------------------------------------

class FakeNotionStore:
    """Dict-backed member database speaking the RemoteStore protocol.

    ``fail`` maps an operation name ("query", "create", "update") to a
    callable returning the exception to raise for that call, or None.
    """

    def __init__(self, page_size: int = 100, names: PropertyNames | None = None) -> None:
        self.names = names or PropertyNames()
        self.page_size = page_size
        self.pages: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, Any]] = []
        self.fail: dict[str, Callable[[], BaseException | None]] = {}
        self._ids = itertools.count(1)

    # -- seeding / inspection ------------------------------------------------

    def seed(self, identifier: str | None, name: str = "", phone: str | None = None) -> str:
        page_id = f"page-{next(self._ids)}"
        title = [{"plain_text": identifier}] if identifier else []
        self.pages[page_id] = {
            self.names.identifier: {"title": title},
            self.names.name: {"rich_text": [{"text": {"content": name}}]},
            self.names.phone: {"phone_number": phone},
        }
        return page_id

    def identifier_of(self, page_id: str) -> str | None:
        return extract_title_text(self.pages[page_id].get(self.names.identifier))

    def phone_of(self, page_id: str) -> str | None:
        return self.pages[page_id][self.names.phone]["phone_number"]

    def name_of(self, page_id: str) -> str:
        return self.pages[page_id][self.names.name]["rich_text"][0]["text"]["content"]

    def pages_for(self, identifier: str) -> list[str]:
        return [pid for pid in self.pages if self.identifier_of(pid) == identifier]

    def count(self, op: str) -> int:
        return sum(1 for name, _ in self.calls if name == op)

    # -- RemoteStore -----------------------------------------------------------

    def _maybe_fail(self, op: str) -> None:
        factory = self.fail.get(op)
        if factory is None:
            return
        exc = factory()
        if exc is not None:
            raise exc

    def query_page(self, cursor: str | None = None) -> RemotePage:
        self.calls.append(("query", cursor))
        self._maybe_fail("query")
        ids = list(self.pages)
        start = int(cursor) if cursor else 0
        chunk = ids[start:start + self.page_size]
        records = [
            RemoteRecord(pid, self.identifier_of(pid), self.pages[pid]) for pid in chunk
        ]
        end = start + self.page_size
        return RemotePage(records, str(end) if end < len(ids) else None)

    def find_by_identifier(self, identifier: str) -> list[RemoteRecord]:
        self.calls.append(("find", identifier))
        return [
            RemoteRecord(pid, identifier, self.pages[pid]) for pid in self.pages_for(identifier)
        ]

    def create_record(self, properties: dict[str, Any]) -> str:
        self.calls.append(("create", properties))
        self._maybe_fail("create")
        page_id = f"page-{next(self._ids)}"
        self.pages[page_id] = dict(properties)
        return page_id

    def update_record(self, page_id: str, properties: dict[str, Any]) -> None:
        self.calls.append(("update", page_id))
        self._maybe_fail("update")
        if page_id not in self.pages:
            raise NotionApiError("page not found", status_code=404, code="object_not_found")
        self.pages[page_id].update(properties)


def fail_n_times(n: int, exc_factory: Callable[[], BaseException]) -> Callable[[], BaseException | None]:
    """Failure hook that raises for the first ``n`` calls, then succeeds."""
    counter = itertools.count(1)

    def hook() -> BaseException | None:
        return exc_factory() if next(counter) <= n else None

    return hook


def rate_limited() -> NotionApiError:
    return NotionApiError("slow down", status_code=429, code="rate_limited")


def validation_failed() -> NotionApiError:
    return NotionApiError("bad phone", status_code=400, code="validation_error")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def store():
    return FakeNotionStore()


@pytest.fixture
def settings():
    return load_settings(TEST_ENV)


@pytest.fixture
def sleeps():
    """Recorded sleep durations; pass ``sleeps.append`` as the sleep hook."""
    return []


def csv_session(csv_text: str, *, status: int = 200, mail_status: int = 200) -> MagicMock:
    """Session mock serving the roster on GET and accepting Mailgun POSTs."""
    session = MagicMock()
    session.get.return_value = MagicMock(status_code=status, text=csv_text)
    session.post.return_value = MagicMock(status_code=mail_status, text="queued")
    return session
