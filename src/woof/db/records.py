"""Record types tracked by the store.

Every record is keyed by the normalized id of the message that created it
and carries the sender, subject and date of that message. Records are
frozen: the store replaces a record wholesale on every update, so no
caller can hold a mutable reference into store state.

The on-disk shape of a record is a tagged mapping:

    {"type": "bug", "from": "dev@example.org", "subject": "...",
     "date": "2020-05-27T00:13:11+00:00", "refs": ["id1", "id2"],
     "fixed": null, "fixed_by": null, "fixed_at": null}
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Literal

RecordType = Literal["bug", "change", "release", "help", "patch"]


@dataclass(frozen=True)
class Record:
    """Fields shared by every record."""

    type: ClassVar[RecordType]

    id: str
    sender: str = ""
    subject: str = ""
    date: datetime | None = None

    @property
    def is_open(self) -> bool:
        return True


@dataclass(frozen=True)
class Bug(Record):
    """A confirmed bug, open until a reply in its thread marks it fixed."""

    type: ClassVar[RecordType] = "bug"

    refs: frozenset[str] = field(default_factory=frozenset)
    fixed: str | None = None
    fixed_by: str | None = None
    fixed_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.fixed is None


@dataclass(frozen=True)
class Change(Record):
    """A breaking change announced against one or more future versions."""

    type: ClassVar[RecordType] = "change"

    commit: str | None = None
    versions: frozenset[str] = field(default_factory=frozenset)
    released: str | None = None

    @property
    def is_open(self) -> bool:
        return self.released is None


@dataclass(frozen=True)
class Release(Record):
    """A release announced by the release manager."""

    type: ClassVar[RecordType] = "release"

    version: str = ""


@dataclass(frozen=True)
class HelpRequest(Record):
    """A call for help, pending until a reply marks it done or canceled."""

    type: ClassVar[RecordType] = "help"

    refs: frozenset[str] = field(default_factory=frozenset)
    resolved: str | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.resolved is None


@dataclass(frozen=True)
class Patch(Record):
    """A patch sent to the list, pending until a reply says it was applied."""

    type: ClassVar[RecordType] = "patch"

    refs: frozenset[str] = field(default_factory=frozenset)
    applied: str | None = None
    applied_by: str | None = None
    applied_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.applied is None


# Records whose thread is tracked through a reference set
ThreadedRecord = Bug | HelpRequest | Patch
THREADED_TYPES: tuple[type[Record], ...] = (Bug, HelpRequest, Patch)

RECORD_TYPES: dict[str, type[Record]] = {
    cls.type: cls for cls in (Bug, Change, Release, HelpRequest, Patch)
}

_SET_FIELDS = frozenset({"refs", "versions"})
_DATE_FIELDS = frozenset({"date", "fixed_at", "resolved_at", "applied_at"})


def record_to_dict(record: Record) -> dict[str, Any]:
    """Serialize a record to its tagged JSON-compatible mapping (without id)."""
    data: dict[str, Any] = {"type": record.type}
    for f in dataclasses.fields(record):
        if f.name == "id":
            continue
        value = getattr(record, f.name)
        if f.name in _SET_FIELDS:
            value = sorted(value)
        elif f.name in _DATE_FIELDS and value is not None:
            value = value.isoformat()
        data["from" if f.name == "sender" else f.name] = value
    return data


def record_from_dict(record_id: str, data: dict[str, Any]) -> Record:
    """Rebuild a record from its tagged mapping.

    Unknown keys are ignored so older or newer documents still load.

    Raises:
        ValueError: If the type tag is missing or unknown
    """
    tag = data.get("type")
    cls = RECORD_TYPES.get(tag)  # type: ignore[arg-type]
    if cls is None:
        raise ValueError(f"Record {record_id!r} has unknown type {tag!r}")

    kwargs: dict[str, Any] = {"id": record_id}
    names = {f.name for f in dataclasses.fields(cls)}
    for key, value in data.items():
        name = "sender" if key == "from" else key
        if name not in names or name == "id":
            continue
        if name in _SET_FIELDS:
            value = frozenset(value or ())
        elif name in _DATE_FIELDS and value is not None:
            value = datetime.fromisoformat(value)
        kwargs[name] = value
    return cls(**kwargs)
