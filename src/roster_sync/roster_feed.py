"""roster_sync.roster_feed

Fetch the published roster CSV.  Any failure here is fatal for the run.
"""

from __future__ import annotations

import logging
import time

import requests

log = logging.getLogger(__name__)


class RosterFetchError(RuntimeError):
    """The roster CSV could not be fetched or was empty."""


def cache_busted_url(url: str, now_ms: int | None = None) -> str:
    """Append ``_=<epoch ms>`` so intermediate caches serve a fresh export."""
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}_={stamp}"


def fetch_roster_csv(
    session: requests.Session,
    url: str,
    *,
    cache_bust: bool = True,
    timeout: int = 30,
) -> str:
    target = cache_busted_url(url) if cache_bust else url
    try:
        resp = session.get(target, timeout=timeout)
    except requests.RequestException as exc:
        raise RosterFetchError(f"roster fetch failed: {exc}") from exc

    if not 200 <= resp.status_code < 300:
        raise RosterFetchError(f"roster fetch failed: HTTP {resp.status_code}")

    text = resp.text or ""
    if not text.strip():
        raise RosterFetchError("roster CSV is empty")
    log.debug("Fetched roster CSV (%d bytes)", len(text))
    return text
