"""Record store for Woof.

Usage:
    from woof.db import Bug, RecordStore

    store = RecordStore.open("data/db.json")
    store.upsert(Bug(id="id1", sender="dev@example.org", refs=frozenset({"id1"})))
    print(len(store.unfixed_bugs()))
"""

from woof.db.records import (
    RECORD_TYPES,
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
from woof.db.store import (
    Mutation,
    RecordStore,
    Snapshot,
    Transaction,
    Update,
    Upsert,
    compute_index,
)

__all__ = [
    # Records
    "RECORD_TYPES",
    "THREADED_TYPES",
    "Bug",
    "Change",
    "HelpRequest",
    "Patch",
    "Record",
    "Release",
    "record_from_dict",
    "record_to_dict",
    # Store
    "Mutation",
    "RecordStore",
    "Snapshot",
    "Transaction",
    "Update",
    "Upsert",
    "compute_index",
]
