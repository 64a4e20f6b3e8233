"""Envelope normalization and mailing-list gating.

The mail source hands the engine a raw mapping per message:

    {
        "id": "<abc@example.org>",
        "from": [{"address": "dev@example.org"}],
        "subject": "[BUG] Crash on startup",
        "date_sent": datetime(...),
        "headers": [{"X-Original-To": "list@example.org"}, {"X-Woof-Bug": "confirmed"}],
        "body": "plain text" | {"body": "...", "content-type": "text/plain"} | [parts],
    }

normalize_envelope() turns that into an Envelope without ever failing:
missing or malformed fields become empty values so no list message is
dropped at this stage.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import regex

# Regex timeout for security (used in match operations)
REGEX_TIMEOUT = 1.0

# Address inside angle brackets, e.g. "Woof List <list@example.org>"
BRACKETED_ADDRESS_PATTERN = regex.compile(r"^.*<(.*[^>])>.*$")

# Headers that say which list delivered the message
LIST_DELIVERY_HEADER = "X-Original-To"
LIST_ID_HEADER = "X-BeenThere"
RECIPIENT_HEADER = "To"
REFERENCES_HEADER = "References"


@dataclass(frozen=True)
class Envelope:
    """A normalized list message.

    Attributes:
        id: Message id without surrounding angle brackets
        sender: First sender address ("" if none)
        subject: Subject line ("" if none)
        date: When the message was sent, if known
        headers: Header name -> value (later duplicates win)
        references: Normalized ids from the References header
        body: Plain-text body ("" if none)
    """

    id: str
    sender: str = ""
    subject: str = ""
    date: datetime | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    references: frozenset[str] = field(default_factory=frozenset)
    body: str = ""

    def header(self, name: str) -> str | None:
        """Value of a header, or None if absent."""
        return self.headers.get(name)


def normalize_id(raw_id: str | None) -> str:
    """Strip whitespace and one pair of surrounding angle brackets."""
    if not raw_id:
        return ""
    value = str(raw_id).strip()
    if value.startswith("<"):
        value = value[1:]
    if value.endswith(">"):
        value = value[:-1]
    return value.strip()


def parse_references(value: str | None) -> frozenset[str]:
    """Split a References header into normalized message ids."""
    if not value:
        return frozenset()
    return frozenset(ref for ref in (normalize_id(token) for token in value.split()) if ref)


def first_address(senders: Any) -> str:
    """Address of the first sender in a from-list."""
    if not senders:
        return ""
    if isinstance(senders, (list, tuple)):
        senders = senders[0]
    if isinstance(senders, Mapping):
        return str(senders.get("address") or "")
    return str(senders)


def merge_headers(headers: Any) -> dict[str, str]:
    """Flatten an ordered list of single-key mappings into one mapping."""
    merged: dict[str, str] = {}
    if isinstance(headers, Mapping):
        headers = [headers]
    for entry in headers or ():
        if not isinstance(entry, Mapping):
            continue
        for name, value in entry.items():
            if value is not None:
                merged[str(name)] = str(value)
    return merged


def plain_text_body(body: Any) -> str:
    """Extract the text/plain body from the shapes a mail source may hand over."""
    if body is None:
        return ""
    if isinstance(body, str):
        return body
    if isinstance(body, Mapping):
        content_type = str(body.get("content-type") or body.get("type") or "text/plain")
        if not content_type.lower().startswith("text/plain"):
            return ""
        content = body.get("body")
        return content if isinstance(content, str) else ""
    if isinstance(body, (list, tuple)):
        for part in body:
            text = plain_text_body(part)
            if text:
                return text
    return ""


def _coerce_date(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


def normalize_envelope(raw: Mapping[str, Any]) -> Envelope:
    """Build an Envelope from a raw message mapping."""
    headers = merge_headers(raw.get("headers"))
    return Envelope(
        id=normalize_id(raw.get("id")),
        sender=first_address(raw.get("from")),
        subject=str(raw.get("subject") or ""),
        date=_coerce_date(raw.get("date_sent")),
        headers=headers,
        references=parse_references(headers.get(REFERENCES_HEADER)),
        body=plain_text_body(raw.get("body")),
    )


def bracketed_address(value: str | None) -> str | None:
    """Address between angle brackets in a recipient header, if any."""
    if not value:
        return None
    match = BRACKETED_ADDRESS_PATTERN.match(value, timeout=REGEX_TIMEOUT)
    return match.group(1) if match else None


def is_list_message(envelope: Envelope, mailing_list: str) -> bool:
    """Whether the message was delivered through the monitored list.

    Checks the delivery header, the list-identification header and the
    bracketed address of the To header against the list address.
    """
    candidates = (
        envelope.header(LIST_DELIVERY_HEADER),
        envelope.header(LIST_ID_HEADER),
        bracketed_address(envelope.header(RECIPIENT_HEADER)),
    )
    return any(value and value.strip() == mailing_list for value in candidates)
