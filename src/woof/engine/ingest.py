"""Ingest engine: the single entry point for list messages.

Pipeline per message:
1. Normalize the raw envelope
2. Drop it silently unless it was delivered through the mailing list
3. Skip it if its id was seen before: it created a record, or an earlier
   delivery threaded it into a record (its id is in the reference index)
4. Propagate its id into the threads it references
5. Classify it against the propagated records
6. Commit propagation and classification mutations in one transaction

The IMAP listener, the `woof ingest` command and the tests all go
through process_message(); there is no second pipeline.

Usage:
    from woof.engine.ingest import IngestEngine

    engine = IngestEngine(store, mailing_list="list@example.org",
                          release_manager="rm@example.org")
    result = engine.process_message(raw_message)
    print(result.outcome)
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from woof.core.logging import get_logger, message_context
from woof.engine.envelope import Envelope, is_list_message, normalize_envelope
from woof.engine.propagation import propagate_references
from woof.engine.rules import DecisionKind, classify

if TYPE_CHECKING:
    from woof.config_schema import WoofConfig
    from woof.db.store import RecordStore

logger = get_logger(__name__)

IngestStatus = Literal["applied", "rejected", "noop", "ignored", "duplicate", "not_list"]


@dataclass
class IngestResult:
    """Result of ingesting a single message."""

    message_id: str
    status: IngestStatus
    kind: DecisionKind = "none"
    outcome: str | None = None
    propagated: int = 0


@dataclass
class IngestSummary:
    """Counts for a batch of messages."""

    duration_ms: int = 0
    received: int = 0
    applied: int = 0
    rejected: int = 0
    ignored: int = 0
    duplicates: int = 0
    not_list: int = 0
    results: list[IngestResult] = field(default_factory=list)


class IngestEngine:
    """Classify list messages and apply them to the record store.

    Attributes:
        _store: RecordStore that owns every record
        _mailing_list: Address of the monitored list
        _release_manager: Only sender allowed to announce releases
    """

    def __init__(self, store: RecordStore, mailing_list: str, release_manager: str):
        self._store = store
        self._mailing_list = mailing_list
        self._release_manager = release_manager

    @classmethod
    def from_config(cls, store: RecordStore, config: WoofConfig) -> IngestEngine:
        return cls(store, config.mailing_list, config.release_manager)

    @property
    def store(self) -> RecordStore:
        return self._store

    def update_config(self, config: WoofConfig) -> None:
        """Pick up list and release manager changes after a config hot-reload."""
        self._mailing_list = config.mailing_list
        self._release_manager = config.release_manager

    def process_message(self, raw: Mapping[str, Any]) -> IngestResult:
        """Run one raw message through the full pipeline.

        Never raises for message content: rejections and ordinary traffic
        come back as results. The message is applied completely or not at all.
        """
        envelope = normalize_envelope(raw)
        with message_context(envelope.id):
            return self._process(envelope)

    def _process(self, envelope: Envelope) -> IngestResult:
        if not is_list_message(envelope, self._mailing_list):
            logger.debug("message_not_from_list", sender=envelope.sender)
            return IngestResult(message_id=envelope.id, status="not_list")

        if not envelope.id:
            logger.warning("message_without_id", sender=envelope.sender)
            return IngestResult(
                message_id="",
                status="ignored",
                outcome=f"{envelope.sender} sent a message without Message-ID, ignoring",
            )

        with self._store.transaction() as txn:
            if envelope.id in txn.records or envelope.id in txn.index:
                logger.debug("message_already_seen")
                return IngestResult(message_id=envelope.id, status="duplicate")

            propagated = txn.apply(
                propagate_references(txn.records, txn.index, envelope.id, envelope.references)
            )
            decision = classify(txn.records, envelope, self._release_manager, txn.index)
            txn.apply(decision.mutations)

        result = IngestResult(
            message_id=envelope.id,
            status=decision.status,
            kind=decision.kind,
            outcome=decision.outcome,
            propagated=propagated,
        )
        self._log_result(result)
        return result

    def process_messages(self, raws: Iterable[Mapping[str, Any]]) -> IngestSummary:
        """Ingest messages in order, one at a time."""
        start_time = time.monotonic()
        summary = IngestSummary()

        for raw in raws:
            result = self.process_message(raw)
            summary.received += 1
            summary.results.append(result)
            if result.status == "applied":
                summary.applied += 1
            elif result.status == "rejected":
                summary.rejected += 1
            elif result.status == "duplicate":
                summary.duplicates += 1
            elif result.status == "not_list":
                summary.not_list += 1
            else:
                summary.ignored += 1

        summary.duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            "ingest_batch_complete",
            received=summary.received,
            applied=summary.applied,
            rejected=summary.rejected,
            duplicates=summary.duplicates,
            not_list=summary.not_list,
            duration_ms=summary.duration_ms,
        )
        return summary

    def _log_result(self, result: IngestResult) -> None:
        if result.status == "rejected":
            logger.warning("message_rejected", kind=result.kind, outcome=result.outcome)
        elif result.outcome:
            logger.info(
                "message_classified",
                kind=result.kind,
                status=result.status,
                outcome=result.outcome,
                propagated=result.propagated,
            )
        elif result.propagated:
            logger.debug("message_joined_thread", propagated=result.propagated)
