"""Reference propagation across reply chains.

A reply to a tracked message should count as part of that message's
thread even when the direct parent was never tracked itself. For every
incoming list message, propagate_references() finds the references that
the store already knows (via the derived reference index) and adds the
new message id to the reference set of every record whose thread contains
one of them.

    b1 (confirmed bug)          refs(b1) = {b1}
    b2 (References: b1)    ->   refs(b1) = {b1, b2}
    b3 (References: b2)    ->   refs(b1) = {b1, b2, b3}

so a "fixed" trigger on b3 resolves b1.

The function is pure: it returns the updates and lets the store apply them.
"""

from __future__ import annotations

from collections.abc import Mapping

from woof.core.logging import get_logger
from woof.db.records import THREADED_TYPES, Record
from woof.db.store import Update

logger = get_logger(__name__)


def propagate_references(
    records: Mapping[str, Record],
    index: frozenset[str],
    message_id: str,
    references: frozenset[str],
) -> list[Update]:
    """Compute the reference-set extensions caused by one message.

    Each round takes the remaining references that appear in the index,
    extends every threaded record containing one of them, and drops the
    matched references from the working set. The working set shrinks on
    every round, so the loop ends after at most len(references) rounds.

    Args:
        records: Current records (not modified)
        index: Derived reference index for records
        message_id: Normalized id of the incoming message
        references: Normalized ids from its References header

    Returns:
        One Update per extended record; empty if nothing matched
    """
    if not message_id or not references:
        return []

    remaining = set(references)
    known = set(index)
    extended: dict[str, frozenset[str]] = {}

    while True:
        matched = remaining & known
        if not matched:
            break

        for record in records.values():
            if not isinstance(record, THREADED_TYPES):
                continue
            refs = extended.get(record.id, record.refs)  # type: ignore[attr-defined]
            if refs & matched and message_id not in refs:
                extended[record.id] = refs | {message_id}
                known.add(message_id)

        remaining -= matched

    if extended:
        logger.debug(
            "references_propagated",
            records=sorted(extended),
            references=len(references),
        )

    return [Update(record_id, {"refs": refs}) for record_id, refs in extended.items()]
