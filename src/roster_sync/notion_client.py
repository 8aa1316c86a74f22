"""roster_sync.notion_client

Minimal Notion REST client for the member database (requests only).

Covers:
  - paginated database query (start_cursor / next_cursor)
  - targeted query on the identifier (title) property
  - page create / page update
  - error classification for the retry policy
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import requests

log = logging.getLogger(__name__)

NOTION_API_URL = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"

TRANSIENT_STATUS_CODES = frozenset({408, 409, 429, 500, 502, 503, 504})
TRANSIENT_ERROR_CODES = frozenset({
    "rate_limited",
    "conflict_error",
    "internal_server_error",
    "service_unavailable",
    "database_connection_unavailable",
    "gateway_timeout",
})


class NotionApiError(RuntimeError):
    """Non-2xx response (or malformed payload) from the Notion API."""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


def is_transient_error(exc: BaseException) -> bool:
    """True for network failures, rate limiting and server-side errors.

    Validation and auth errors are not transient.
    """
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    if isinstance(exc, NotionApiError):
        if exc.code in TRANSIENT_ERROR_CODES:
            return True
        return exc.status_code in TRANSIENT_STATUS_CODES
    return False


# ---------------------------------------------------------------------------
# Data shapes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PropertyNames:
    """Notion property names on the member database."""

    identifier: str = "Member ID"
    name: str = "First Name"
    phone: str = "Mobile Phone"


@dataclass(frozen=True)
class RemoteRecord:
    page_id: str
    identifier: str | None
    properties: dict[str, Any]


@dataclass(frozen=True)
class RemotePage:
    records: list[RemoteRecord]
    next_cursor: str | None


@dataclass(frozen=True)
class NotionCredentials:
    token: str
    database_id: str


def extract_title_text(prop: dict[str, Any] | None) -> str | None:
    """Return the plain text of a title property, or None when empty."""
    if not prop:
        return None
    parts = prop.get("title") or []
    text = "".join(
        (p.get("plain_text") or (p.get("text") or {}).get("content") or "")
        for p in parts
    ).strip()
    return text or None


def build_properties(
    member: Any,
    names: PropertyNames,
    include_identifier: bool,
) -> dict[str, Any]:
    """Property payload for a member: name, phone (null when empty), id."""
    props: dict[str, Any] = {
        names.name: {"rich_text": [{"text": {"content": member.name}}]},
        names.phone: {"phone_number": member.phone or None},
    }
    if include_identifier:
        props[names.identifier] = {"title": [{"text": {"content": member.id}}]}
    return props


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class NotionClient:
    """Notion database client.  One request per method call, no retries.

    Retrying and pacing are the caller's job (see roster_sync.retry).
    """

    def __init__(
        self,
        credentials: NotionCredentials,
        *,
        property_names: PropertyNames | None = None,
        session: requests.Session | None = None,
        base_url: str = NOTION_API_URL,
        timeout_s: int = 30,
        page_size: int = 100,
    ) -> None:
        self._creds = credentials
        self._names = property_names or PropertyNames()
        self._session = session or requests.Session()
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._page_size = page_size

    @property
    def property_names(self) -> PropertyNames:
        return self._names

    def query_page(self, cursor: str | None = None) -> RemotePage:
        body: dict[str, Any] = {"page_size": self._page_size}
        if cursor:
            body["start_cursor"] = cursor
        payload = self._request_json(
            "POST", f"/databases/{self._creds.database_id}/query", body
        )
        return self._to_page(payload)

    def find_by_identifier(self, identifier: str) -> list[RemoteRecord]:
        body = {
            "page_size": self._page_size,
            "filter": {
                "property": self._names.identifier,
                "title": {"equals": identifier},
            },
        }
        payload = self._request_json(
            "POST", f"/databases/{self._creds.database_id}/query", body
        )
        return self._to_page(payload).records

    def create_record(self, properties: dict[str, Any]) -> str:
        payload = self._request_json(
            "POST",
            "/pages",
            {"parent": {"database_id": self._creds.database_id}, "properties": properties},
        )
        page_id = payload.get("id")
        if not page_id:
            raise NotionApiError("Notion create returned a page without 'id'")
        return str(page_id)

    def update_record(self, page_id: str, properties: dict[str, Any]) -> None:
        self._request_json("PATCH", f"/pages/{page_id}", {"properties": properties})

    # ------------------------------------------------------------------ #

    def _to_page(self, payload: dict[str, Any]) -> RemotePage:
        records: list[RemoteRecord] = []
        try:
            for result in payload.get("results") or []:
                page_id = result.get("id")
                if not page_id:
                    raise NotionApiError("Notion returned a page without 'id'")
                props = result.get("properties") or {}
                records.append(
                    RemoteRecord(
                        page_id=str(page_id),
                        identifier=extract_title_text(props.get(self._names.identifier)),
                        properties=props,
                    )
                )
        except (AttributeError, KeyError, TypeError) as exc:
            raise NotionApiError(f"malformed Notion query response: {exc!r}") from exc
        next_cursor = payload.get("next_cursor") if payload.get("has_more", True) else None
        return RemotePage(records=records, next_cursor=next_cursor or None)

    def _request_json(self, method: str, path: str, body: dict[str, Any]) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._creds.token}",
            "Notion-Version": NOTION_VERSION,
            "Content-Type": "application/json",
        }
        resp = self._session.request(
            method=method,
            url=f"{self._base_url}{path}",
            json=body,
            headers=headers,
            timeout=self._timeout_s,
        )
        if 200 <= resp.status_code < 300:
            try:
                payload = resp.json()
            except ValueError as exc:
                raise NotionApiError(
                    f"Notion {method} {path} returned non-JSON body", status_code=resp.status_code,
                ) from exc
            if not isinstance(payload, dict):
                raise NotionApiError(
                    f"Notion {method} {path} returned {type(payload).__name__}, expected an object",
                    status_code=resp.status_code,
                )
            return payload

        code: str | None = None
        message = resp.text
        try:
            err = resp.json()
            code = err.get("code")
            message = err.get("message") or message
        except (ValueError, AttributeError):
            pass
        raise NotionApiError(
            f"Notion {method} {path} failed {resp.status_code}: {message}",
            status_code=resp.status_code,
            code=code,
        )
