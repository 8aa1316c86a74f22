"""roster_sync.contact_export

vCard bundle of members with a phone number, mailed as one .vcf attachment
through the Mailgun messages API.

A send failure is logged and reported as not sent; it is never retried and
never aborts the run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import requests

from roster_sync.members import MemberRecord

log = logging.getLogger(__name__)

MAILGUN_API_URL = "https://api.mailgun.net/v3"
VCARD_MIME_TYPE = "text/vcard"


# ---------------------------------------------------------------------------
# vCard bundle
# ---------------------------------------------------------------------------

def escape_vcard_text(value: str) -> str:
    """Escape a vCard 3.0 text value (RFC 6350 section 3.4)."""
    return (
        value.replace("\\", "\\\\")
        .replace(",", "\\,")
        .replace(";", "\\;")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def build_vcard(member: MemberRecord) -> str:
    return "\n".join([
        "BEGIN:VCARD",
        "VERSION:3.0",
        f"FN:{escape_vcard_text(member.name)}",
        f"TEL;TYPE=CELL:{member.phone}",
        "END:VCARD",
    ])


def build_vcard_bundle(members: Sequence[MemberRecord]) -> str:
    """One card per member with a phone, blank line between cards."""
    cards = [build_vcard(m) for m in members if m.has_phone]
    if not cards:
        return ""
    return "\n\n".join(cards) + "\n"


# ---------------------------------------------------------------------------
# Mailgun sender
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MailSettings:
    api_key: str
    domain: str
    sender: str
    recipient: str
    attachment_name: str = "roster-contacts.vcf"
    base_url: str = MAILGUN_API_URL


class MailgunSender:
    """Send one message with one attachment.  Raises on transport / HTTP error."""

    def __init__(
        self,
        settings: MailSettings,
        *,
        session: requests.Session | None = None,
        timeout_s: int = 30,
    ) -> None:
        self._settings = settings
        self._session = session or requests.Session()
        self._timeout_s = timeout_s

    @property
    def settings(self) -> MailSettings:
        return self._settings

    def send(self, subject: str, text: str, attachment: bytes) -> None:
        s = self._settings
        resp = self._session.post(
            f"{s.base_url.rstrip('/')}/{s.domain}/messages",
            auth=("api", s.api_key),
            data={
                "from": s.sender,
                "to": s.recipient,
                "subject": subject,
                "text": text,
            },
            files=[("attachment", (s.attachment_name, attachment, VCARD_MIME_TYPE))],
            timeout=self._timeout_s,
        )
        if not 200 <= resp.status_code < 300:
            raise requests.HTTPError(
                f"Mailgun send failed {resp.status_code}: {resp.text}",
                response=resp,
            )


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def export_subject(count: int) -> str:
    return f"{count} Contacts - Import Now"


def export_contacts(
    members: Sequence[MemberRecord],
    sender: MailgunSender,
    dry_run: bool = False,
) -> tuple[int, bool]:
    """Mail the vCard bundle.  Returns (contacts_in_bundle, sent)."""
    with_phone = [m for m in members if m.has_phone]
    if not with_phone:
        log.info("No members with a phone number; skipping contact export")
        return 0, False

    count = len(with_phone)
    bundle = build_vcard_bundle(with_phone)
    if dry_run:
        log.info("[dry-run] Would email %d contacts to %s", count, sender.settings.recipient)
        return count, False

    text = f"Open the attached .vcf on your phone to import {count} contacts."
    try:
        sender.send(export_subject(count), text, bundle.encode("utf-8"))
    except requests.RequestException as exc:
        log.error("Contact export email failed: %s", exc)
        return count, False

    log.info(".vcf with %d contacts emailed to %s", count, sender.settings.recipient)
    return count, True
