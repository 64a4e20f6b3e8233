"""Custom exception types for Woof.

Classification outcomes (rejected changes, unauthorized releases, ...) are
not exceptions: the rule engine reports them as advisory text. These types
cover the surrounding machinery instead:
- What failed (specific operation or component)
- Where it failed (file, mailbox, context)
- Why it failed (the specific condition)
"""

from pathlib import Path


class WoofError(Exception):
    """Base exception for all Woof errors."""

    pass


class ConfigValidationError(WoofError):
    """Raised when config.yaml fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class ConfigLoadError(WoofError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class PersistenceError(WoofError):
    """Raised when the record store cannot be read from or written to disk.

    Write failures are logged by the store and never unwind an in-memory
    mutation. Read failures at startup are fatal to the caller.

    Attributes:
        path: The store document that failed
    """

    def __init__(self, message: str, path: Path | None = None):
        super().__init__(message)
        self.path = path


class MailSourceError(WoofError):
    """Raised when the IMAP mailbox cannot be reached or read.

    Attributes:
        server: IMAP host the failure relates to
        folder: Folder being read, if one was selected
    """

    def __init__(self, message: str, server: str | None = None, folder: str | None = None):
        super().__init__(message)
        self.server = server
        self.folder = folder
