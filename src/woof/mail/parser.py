"""Convert RFC 822 messages into the raw mapping the ingest engine consumes.

Usage:
    from woof.mail.parser import parse_message

    raw = parse_message(eml_bytes)
    engine.process_message(raw)
"""

from __future__ import annotations

import email.utils
from datetime import datetime
from email import policy
from email.message import EmailMessage, Message
from email.parser import BytesParser
from typing import Any


def _header_str(value: Any) -> str:
    # Unfold continuation lines; References is often folded
    return " ".join(str(value).split())


def _sent_at(msg: Message) -> datetime | None:
    value = msg.get("Date")
    if not value:
        return None
    try:
        return email.utils.parsedate_to_datetime(str(value))
    except (TypeError, ValueError):
        return None


def _plain_body(msg: Message) -> dict[str, str] | None:
    if isinstance(msg, EmailMessage):
        part = msg.get_body(preferencelist=("plain",))
        if part is None:
            return None
        try:
            content = part.get_content()
        except (LookupError, ValueError):
            # Unknown charset or undecodable payload
            payload = part.get_payload(decode=True) or b""
            content = payload.decode("utf-8", errors="replace")
        return {"body": content, "content-type": "text/plain"}
    return None


def message_to_raw(msg: Message) -> dict[str, Any]:
    """Build the raw envelope mapping from a parsed email message."""
    senders = email.utils.getaddresses([str(v) for v in msg.get_all("From", [])])
    return {
        "id": _header_str(msg.get("Message-ID", "")),
        "from": [{"address": address} for _, address in senders if address],
        "subject": _header_str(msg.get("Subject", "")),
        "date_sent": _sent_at(msg),
        "headers": [{name: _header_str(value)} for name, value in msg.items()],
        "body": _plain_body(msg),
    }


def parse_message(raw_bytes: bytes) -> dict[str, Any]:
    """Parse RFC 822 bytes into the raw envelope mapping."""
    msg = BytesParser(policy=policy.default).parsebytes(raw_bytes)
    return message_to_raw(msg)
