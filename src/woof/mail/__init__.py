"""Mail source: RFC 822 parsing and the IMAP listener."""

from woof.mail.imap import ImapMailSource, MailboxMonitor
from woof.mail.parser import message_to_raw, parse_message

__all__ = [
    "ImapMailSource",
    "MailboxMonitor",
    "message_to_raw",
    "parse_message",
]
