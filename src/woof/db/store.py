"""Record store with transactional updates and JSON write-through.

The store owns every record. Writers serialize on a single lock; each
commit builds a new mapping with its derived reference index and
publishes both as one Snapshot, so readers (web routes, CLI reports)
never take the lock and never see an index from a different commit than
the records. After the swap the whole store is written to disk as one
JSON document.

Usage:
    from woof.db.store import RecordStore

    store = RecordStore.open("data/db.json")

    with store.transaction() as txn:
        txn.upsert(Bug(id="id1", refs=frozenset({"id1"})))
        txn.mutate("id1", lambda bug: replace(bug, fixed="id2"))

    for bug in store.unfixed_bugs():
        print(bug.subject)
"""

from __future__ import annotations

import dataclasses
import json
import os
import tempfile
import threading
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, NamedTuple

from woof.core.errors import PersistenceError
from woof.core.logging import get_logger
from woof.db.records import (
    THREADED_TYPES,
    Bug,
    Change,
    HelpRequest,
    Patch,
    Record,
    Release,
    record_from_dict,
    record_to_dict,
)

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Upsert:
    """Insert a record unless its id is already present."""

    record: Record


@dataclass(frozen=True)
class Update:
    """Replace fields of an existing record."""

    record_id: str
    changes: dict[str, Any] = field(default_factory=dict)


Mutation = Upsert | Update


def apply_mutation(records: dict[str, Record], mutation: Mutation) -> bool:
    """Apply one mutation to a working mapping in place.

    Returns:
        True if the mapping changed
    """
    if isinstance(mutation, Upsert):
        if mutation.record.id in records:
            return False
        records[mutation.record.id] = mutation.record
        return True

    current = records.get(mutation.record_id)
    if current is None:
        return False
    updated = dataclasses.replace(current, **mutation.changes)
    if updated == current:
        return False
    records[mutation.record_id] = updated
    return True


# ---------------------------------------------------------------------------
# Projections (pure functions over a record mapping)
# ---------------------------------------------------------------------------


def compute_index(records: Mapping[str, Record]) -> frozenset[str]:
    """Union of the reference sets of every threaded record."""
    refs: set[str] = set()
    for record in records.values():
        if isinstance(record, THREADED_TYPES):
            refs.update(record.refs)  # type: ignore[attr-defined]
    return frozenset(refs)


def unfixed_bugs(records: Mapping[str, Record]) -> list[Bug]:
    return [r for r in records.values() if isinstance(r, Bug) and r.is_open]


def unreleased_changes(records: Mapping[str, Record]) -> list[Change]:
    return [r for r in records.values() if isinstance(r, Change) and r.is_open]


def releases(records: Mapping[str, Record]) -> list[Release]:
    return [r for r in records.values() if isinstance(r, Release)]


def released_versions(records: Mapping[str, Record]) -> frozenset[str]:
    return frozenset(r.version for r in releases(records))


def pending_help(records: Mapping[str, Record]) -> list[HelpRequest]:
    return [r for r in records.values() if isinstance(r, HelpRequest) and r.is_open]


def unapplied_patches(records: Mapping[str, Record]) -> list[Patch]:
    return [r for r in records.values() if isinstance(r, Patch) and r.is_open]


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class Transaction:
    """Working copy of the store for one single-writer step.

    Mutations are applied to a private mapping and the reference index is
    recomputed after each apply, so later steps of the same message never
    read a stale index. Nothing is visible to readers until the store
    commits the transaction.
    """

    def __init__(self, records: Mapping[str, Record]):
        self.records: dict[str, Record] = dict(records)
        self.index: frozenset[str] = compute_index(self.records)
        self.changed = False

    def apply(self, mutations: Iterable[Mutation]) -> int:
        """Apply mutations in order and return how many changed the store."""
        applied = 0
        for mutation in mutations:
            if apply_mutation(self.records, mutation):
                applied += 1
        if applied:
            self.changed = True
            self.index = compute_index(self.records)
        return applied

    def upsert(self, record: Record) -> bool:
        return self.apply([Upsert(record)]) == 1

    def mutate(self, record_id: str, fn: Callable[[Record], Record]) -> bool:
        """Replace a record with fn(record); no-op if the id is unknown."""
        current = self.records.get(record_id)
        if current is None:
            return False
        updated = fn(current)
        if updated.id != record_id:
            raise ValueError(f"mutate() may not change a record id ({record_id!r})")
        if updated == current:
            return False
        self.records[record_id] = updated
        self.changed = True
        self.index = compute_index(self.records)
        return True


class Snapshot(NamedTuple):
    """One committed state: the records and the index derived from them."""

    records: Mapping[str, Record]
    index: frozenset[str]


class RecordStore:
    """Addressable mapping from message id to record, persisted as JSON.

    Readers never take the lock: every commit publishes a new Snapshot with
    a single assignment, so records and index always belong together.

    Attributes:
        path: JSON document the store is written to (None keeps it in memory)
        last_persist_error: Most recent write failure, cleared on success
    """

    def __init__(
        self,
        path: str | Path | None = None,
        records: Mapping[str, Record] | None = None,
    ):
        self.path = Path(path) if path is not None else None
        self._lock = threading.RLock()
        initial = dict(records or {})
        self._snapshot = Snapshot(MappingProxyType(initial), compute_index(initial))
        self.last_persist_error: PersistenceError | None = None

    @classmethod
    def open(cls, path: str | Path) -> RecordStore:
        """Load the store from disk; a missing file gives an empty store.

        Raises:
            PersistenceError: If the document exists but cannot be read
        """
        path = Path(path)
        records = load_records(path)
        logger.info("store_loaded", path=str(path), records=len(records))
        return cls(path, records)

    # -- reads ---------------------------------------------------------------

    def snapshot(self) -> Snapshot:
        """Current records and index, consistent with each other."""
        return self._snapshot

    @property
    def records(self) -> Mapping[str, Record]:
        """Read-only view of the current records."""
        return self._snapshot.records

    @property
    def index(self) -> frozenset[str]:
        """Derived reference index for the current records."""
        return self._snapshot.index

    def get(self, record_id: str) -> Record | None:
        return self.records.get(record_id)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self.records

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[Record]:
        return iter(list(self.records.values()))

    def unfixed_bugs(self) -> list[Bug]:
        return unfixed_bugs(self.records)

    def unreleased_changes(self) -> list[Change]:
        return unreleased_changes(self.records)

    def releases(self) -> list[Release]:
        return releases(self.records)

    def released_versions(self) -> frozenset[str]:
        return released_versions(self.records)

    def pending_help(self) -> list[HelpRequest]:
        return pending_help(self.records)

    def unapplied_patches(self) -> list[Patch]:
        return unapplied_patches(self.records)

    # -- writes --------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Hold the writer lock and commit all mutations at once.

        If the block raises, every pending mutation is discarded.
        """
        with self._lock:
            txn = Transaction(self.records)
            yield txn
            if txn.changed:
                self._commit(txn.records, txn.index)

    def upsert(self, record: Record) -> bool:
        """Insert a record; no-op if its id is already present."""
        with self.transaction() as txn:
            return txn.upsert(record)

    def mutate(self, record_id: str, fn: Callable[[Record], Record]) -> bool:
        """Replace an existing record with fn(record)."""
        with self.transaction() as txn:
            return txn.mutate(record_id, fn)

    def apply(self, mutations: Iterable[Mutation]) -> int:
        """Apply a batch of mutations as one atomic step."""
        with self.transaction() as txn:
            return txn.apply(mutations)

    def _commit(self, records: dict[str, Record], index: frozenset[str]) -> None:
        self._snapshot = Snapshot(MappingProxyType(records), index)
        try:
            self._persist()
            self.last_persist_error = None
        except PersistenceError as e:
            # In-memory state stays authoritative; the next commit retries
            self.last_persist_error = e
            logger.error("store_persist_failed", path=str(e.path), error=str(e))

    def _persist(self) -> None:
        if self.path is None:
            return
        document = {record_id: record_to_dict(r) for record_id, r in self.records.items()}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(document, f, indent=2, ensure_ascii=False)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(f"Failed to write store to {self.path}: {e}", self.path) from e
        logger.debug("store_persisted", path=str(self.path), records=len(document))


def load_records(path: Path) -> dict[str, Record]:
    """Read the JSON document at path into records.

    Raises:
        PersistenceError: If the file is unreadable or not a valid store document
    """
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            document = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise PersistenceError(f"Failed to read store from {path}: {e}", path) from e

    if not isinstance(document, dict):
        raise PersistenceError(
            f"Store document {path} must be a JSON object, got {type(document).__name__}",
            path,
        )

    try:
        return {
            record_id: record_from_dict(record_id, data) for record_id, data in document.items()
        }
    except (TypeError, ValueError, AttributeError) as e:
        raise PersistenceError(f"Store document {path} is malformed: {e}", path) from e
