"""End-to-end tests for the ingest pipeline.

Each test drives IngestEngine.process_message() with raw messages built by
the make_message fixture and then inspects the store, the same way the
IMAP listener and the ingest command use the engine.
"""

from __future__ import annotations

import json
from pathlib import Path

from conftest import MAILING_LIST, RELEASE_MANAGER, USER, MessageFactory

from woof.db.records import Bug, Change, HelpRequest, Patch
from woof.db.store import RecordStore
from woof.engine.ingest import IngestEngine


class TestGate:
    """Messages that never reach classification."""

    def test_non_list_message_is_dropped(
        self, engine: IngestEngine, make_message: MessageFactory
    ) -> None:
        result = engine.process_message(make_message("id1", to_list=False, X_Woof_Bug="confirmed"))

        assert result.status == "not_list"
        assert len(engine.store) == 0

    def test_message_without_id_is_ignored(
        self, engine: IngestEngine, make_message: MessageFactory
    ) -> None:
        result = engine.process_message(make_message("", X_Woof_Bug="confirmed"))

        assert result.status == "ignored"
        assert "without Message-ID" in (result.outcome or "")
        assert len(engine.store) == 0

    def test_ordinary_traffic_changes_nothing(
        self, engine: IngestEngine, make_message: MessageFactory, db_path: Path
    ) -> None:
        result = engine.process_message(make_message("m1", subject="Hello"))

        assert result.status == "ignored"
        assert result.outcome is None
        assert not db_path.exists()


class TestIdempotence:
    """Replaying a message never changes the store twice."""

    def test_replayed_bug_is_duplicate(
        self, engine: IngestEngine, make_message: MessageFactory
    ) -> None:
        message = make_message("id1", subject="[BUG] Crash", X_Woof_Bug="confirmed")

        first = engine.process_message(message)
        snapshot = dict(engine.store.records)
        second = engine.process_message(message)

        assert first.status == "applied"
        assert second.status == "duplicate"
        assert dict(engine.store.records) == snapshot

    def test_replayed_release_is_duplicate_not_rejected(
        self, engine: IngestEngine, make_message: MessageFactory
    ) -> None:
        message = make_message("r1", sender=RELEASE_MANAGER, X_Woof_Release="1.0")

        engine.process_message(message)
        result = engine.process_message(message)

        assert result.status == "duplicate"
        assert len(engine.store.releases()) == 1

    def test_replayed_fix_does_not_close_later_bug_in_thread(
        self, engine: IngestEngine, make_message: MessageFactory
    ) -> None:
        fix = make_message("f1", references="<b1>", X_Woof_Bug="fixed")
        engine.process_message(make_message("b1", subject="[BUG] Crash", X_Woof_Bug="confirmed"))
        engine.process_message(fix)
        engine.process_message(make_message("b3", references="<b1>", X_Woof_Bug="confirmed"))
        snapshot = dict(engine.store.records)

        result = engine.process_message(fix)

        assert result.status == "duplicate"
        assert engine.store.get("b1").fixed == "f1"  # type: ignore[union-attr]
        assert engine.store.get("b3").fixed is None  # type: ignore[union-attr]
        assert dict(engine.store.records) == snapshot

    def test_replayed_thread_reply_is_duplicate(
        self, engine: IngestEngine, make_message: MessageFactory
    ) -> None:
        reply = make_message("r1", subject="Re: [BUG] Crash", references="<b1>")
        engine.process_message(make_message("b1", subject="[BUG] Crash", X_Woof_Bug="confirmed"))
        first = engine.process_message(reply)

        second = engine.process_message(reply)

        assert first.propagated == 1
        assert second.status == "duplicate"
        assert second.propagated == 0


class TestBugs:
    """Confirming and fixing bugs through reply threads."""

    def test_confirm_then_fix(self, engine: IngestEngine, make_message: MessageFactory) -> None:
        engine.process_message(make_message("id1", subject="[BUG] Crash", X_Woof_Bug="confirmed"))
        result = engine.process_message(
            make_message("id2", subject="Re: [BUG] Crash", references="<id1>", X_Woof_Bug="fixed")
        )

        assert result.kind == "bug_fixed"
        assert result.status == "applied"
        bug = engine.store.get("id1")
        assert isinstance(bug, Bug)
        assert bug.fixed == "id2"
        assert bug.fixed_by == USER
        assert bug.fixed_at is not None
        assert engine.store.unfixed_bugs() == []

    def test_fix_through_reply_chain(
        self, engine: IngestEngine, make_message: MessageFactory
    ) -> None:
        """b1 <- b2 <- b3: a fix replying only to b2 still closes b1."""
        engine.process_message(make_message("b1", X_Woof_Bug="confirmed"))
        joined = engine.process_message(make_message("b2", references="<b1>"))
        result = engine.process_message(make_message("b3", references="<b2>", X_Woof_Bug="fixed"))

        assert joined.status == "ignored"
        assert joined.propagated == 1
        assert result.status == "applied"
        bug = engine.store.get("b1")
        assert bug.fixed == "b3"  # type: ignore[union-attr]
        assert bug.refs == frozenset({"b1", "b2", "b3"})  # type: ignore[union-attr]

    def test_fixed_body_marker(self, engine: IngestEngine, make_message: MessageFactory) -> None:
        engine.process_message(make_message("id1", body="Confirmed, reproducible on main."))
        engine.process_message(make_message("id2", references="<id1>", body="Fixed by abc123."))

        assert engine.store.get("id1").fixed == "id2"  # type: ignore[union-attr]

    def test_confirm_inside_existing_thread(
        self, engine: IngestEngine, make_message: MessageFactory
    ) -> None:
        """A bug confirmed in a reply keeps the thread it was reported in."""
        engine.process_message(make_message("id4", subject="Question"))
        engine.process_message(make_message("id5", references="<id4>"))
        engine.process_message(
            make_message("id6", references="<id4> <id5>", X_Woof_Bug="confirmed")
        )
        engine.process_message(make_message("id7", references="<id4>", X_Woof_Bug="fixed"))

        bug = engine.store.get("id6")
        assert isinstance(bug, Bug)
        assert bug.fixed == "id7"

    def test_annotation_becomes_summary(
        self, engine: IngestEngine, make_message: MessageFactory
    ) -> None:
        engine.process_message(
            make_message("id12", subject="[BUG] x", X_Woof_Bug="This is the annotation for this bug.")
        )
        assert engine.store.get("id12").subject == "This is the annotation for this bug."  # type: ignore[union-attr]

    def test_fix_without_thread_is_ordinary_traffic(
        self, engine: IngestEngine, make_message: MessageFactory
    ) -> None:
        engine.process_message(make_message("id1", X_Woof_Bug="confirmed"))
        result = engine.process_message(make_message("id2", X_Woof_Bug="fixed"))

        assert result.status == "ignored"
        assert engine.store.get("id1").fixed is None  # type: ignore[union-attr]


class TestChangesAndReleases:
    """Breaking changes are closed by matching releases."""

    def test_release_closes_changes(
        self, engine: IngestEngine, make_message: MessageFactory
    ) -> None:
        engine.process_message(make_message("id3", X_Woof_Change="commithash 8.3"))
        engine.process_message(make_message("id10", X_Woof_Change="8.4"))
        result = engine.process_message(
            make_message("id4", sender=RELEASE_MANAGER, X_Woof_Release="8.3")
        )

        assert result.kind == "release"
        assert result.outcome == f"{RELEASE_MANAGER} released 8.3 via id4"
        change = engine.store.get("id3")
        assert isinstance(change, Change)
        assert change.released == "8.3"
        assert [c.id for c in engine.store.unreleased_changes()] == ["id10"]
        assert engine.store.released_versions() == frozenset({"8.3"})

    def test_second_release_of_same_version_rejected(
        self, engine: IngestEngine, make_message: MessageFactory
    ) -> None:
        engine.process_message(make_message("id4", sender=RELEASE_MANAGER, X_Woof_Release="8.3"))
        result = engine.process_message(
            make_message("id5", sender=RELEASE_MANAGER, X_Woof_Release="8.3")
        )

        assert result.status == "rejected"
        assert "id5" not in engine.store

    def test_change_against_released_version_rejected(
        self, engine: IngestEngine, make_message: MessageFactory
    ) -> None:
        engine.process_message(make_message("id4", sender=RELEASE_MANAGER, X_Woof_Release="8.3"))
        result = engine.process_message(make_message("id6", X_Woof_Change="abc 8.3"))

        assert result.status == "rejected"
        assert "id6" not in engine.store

    def test_release_by_other_sender_rejected(
        self, engine: IngestEngine, make_message: MessageFactory
    ) -> None:
        engine.process_message(make_message("id3", X_Woof_Change="commithash 8.3"))
        result = engine.process_message(make_message("id4", sender=USER, X_Woof_Release="8.3"))

        assert result.status == "rejected"
        assert result.outcome == f"{USER} tried to release via id4 while not being release manager"
        assert engine.store.releases() == []
        assert engine.store.get("id3").released is None  # type: ignore[union-attr]


class TestHelpAndPatches:
    """Calls for help and patches follow their reply threads."""

    def test_help_opened_and_resolved(
        self, engine: IngestEngine, make_message: MessageFactory
    ) -> None:
        engine.process_message(make_message("id8", X_Woof_Help="true"))
        engine.process_message(make_message("id9", references="<id8>", X_Woof_Help="done"))

        request = engine.store.get("id8")
        assert isinstance(request, HelpRequest)
        assert request.resolved == "id9"
        assert engine.store.pending_help() == []

    def test_patch_applied_by_header(
        self, engine: IngestEngine, make_message: MessageFactory
    ) -> None:
        engine.process_message(make_message("id13", subject="[PATCH] Add a thing"))
        engine.process_message(
            make_message("id14", subject="Re: [PATCH] Add a thing", references="<id13>", X_Woof_Patch="applied")
        )

        patch = engine.store.get("id13")
        assert isinstance(patch, Patch)
        assert patch.applied == "id14"

    def test_patch_applied_by_body(
        self, engine: IngestEngine, make_message: MessageFactory
    ) -> None:
        engine.process_message(make_message("id13", subject="[PATCH 1/2] Add a thing"))
        result = engine.process_message(
            make_message("id15", subject="Re: [PATCH 1/2] Add a thing", references="<id13>", body="Applied, thanks!")
        )

        assert result.kind == "patch_applied"
        assert engine.store.unapplied_patches() == []

    def test_review_reply_does_not_open_patch(
        self, engine: IngestEngine, make_message: MessageFactory
    ) -> None:
        engine.process_message(make_message("id13", subject="[PATCH] Add a thing"))
        engine.process_message(
            make_message("id14", subject="Re: [PATCH] Add a thing", references="<id13>")
        )

        assert [p.id for p in engine.store.unapplied_patches()] == ["id13"]
        assert engine.store.get("id13").refs == frozenset({"id13", "id14"})  # type: ignore[union-attr]


class TestPersistedState:
    """The on-disk document follows every applied message."""

    def test_document_after_fix(
        self, engine: IngestEngine, make_message: MessageFactory, db_path: Path
    ) -> None:
        engine.process_message(make_message("id1", subject="[BUG] Crash", X_Woof_Bug="confirmed"))
        engine.process_message(make_message("id2", references="<id1>", X_Woof_Bug="fixed"))

        document = json.loads(db_path.read_text())

        assert set(document) == {"id1"}
        assert document["id1"]["type"] == "bug"
        assert document["id1"]["refs"] == ["id1", "id2"]
        assert document["id1"]["fixed"] == "id2"
        assert document["id1"]["from"] == USER

    def test_state_survives_restart(
        self, engine: IngestEngine, make_message: MessageFactory, db_path: Path
    ) -> None:
        engine.process_message(make_message("id1", X_Woof_Bug="confirmed"))

        restarted = IngestEngine(
            RecordStore.open(db_path), mailing_list=MAILING_LIST, release_manager=RELEASE_MANAGER
        )
        result = restarted.process_message(make_message("id2", references="<id1>", X_Woof_Bug="fixed"))

        assert result.status == "applied"
        assert restarted.store.get("id1").fixed == "id2"  # type: ignore[union-attr]


class TestBatch:
    """process_messages() counts outcomes."""

    def test_summary_counts(self, engine: IngestEngine, make_message: MessageFactory) -> None:
        messages = [
            make_message("id1", X_Woof_Bug="confirmed"),
            make_message("id1", X_Woof_Bug="confirmed"),
            make_message("id2", sender=USER, X_Woof_Release="1.0"),
            make_message("id3", to_list=False),
            make_message("id4"),
        ]

        summary = engine.process_messages(messages)

        assert summary.received == 5
        assert summary.applied == 1
        assert summary.duplicates == 1
        assert summary.rejected == 1
        assert summary.not_list == 1
        assert summary.ignored == 1
        assert [r.message_id for r in summary.results] == ["id1", "id1", "id2", "id3", "id4"]
