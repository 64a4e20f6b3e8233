"""Rule engine: classify one list message into at most one record mutation.

Triggers are checked in a fixed order and the first match wins:

1. X-Woof-Change         -> new breaking change
2. X-Woof-Bug (confirm)  -> new bug            (or body line "Confirmed")
3. X-Woof-Bug (resolve)  -> bug(s) fixed       (or body line "Fixed")
4. X-Woof-Release        -> new release, closes matching changes
5. X-Woof-Help           -> help request opened / resolved
6. X-Woof-Patch, [PATCH] -> patch opened / applied (or body line "Applied")

classify() is pure: it reads a snapshot of the records and returns a
Decision holding the mutations to apply and an audit line describing who
attempted what. Rejections are decisions too, never exceptions.

Usage:
    from woof.engine.rules import classify

    decision = classify(store.records, envelope, release_manager="rm@example.org")
    if decision.mutations:
        store.apply(decision.mutations)
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Literal

import regex

from woof.db.records import Bug, Change, HelpRequest, Patch, Record, Release
from woof.db.store import (
    Mutation,
    Update,
    Upsert,
    compute_index,
    pending_help,
    released_versions,
    unapplied_patches,
    unfixed_bugs,
    unreleased_changes,
)
from woof.engine.envelope import REGEX_TIMEOUT, Envelope

# Trigger headers
BUG_HEADER = "X-Woof-Bug"
CHANGE_HEADER = "X-Woof-Change"
RELEASE_HEADER = "X-Woof-Release"
HELP_HEADER = "X-Woof-Help"
PATCH_HEADER = "X-Woof-Patch"

# Header values (matched case-sensitively after stripping whitespace).
# Any other non-empty value on a bug, help or patch header opens a record
# and is used as its summary.
CONFIRMED_VALUES = frozenset({"confirmed", "true", "t"})
RESOLVED_VALUES = frozenset({"fixed", "done", "closed", "close", "canceled", "cancel", "nil"})
PATCH_CLOSED_VALUES = frozenset({"applied"}) | RESOLVED_VALUES

# Body markers: plain-text body, line start, case-sensitive
CONFIRMED_BODY_PATTERN = regex.compile(r"^Confirmed", regex.MULTILINE)
FIXED_BODY_PATTERN = regex.compile(r"^Fixed", regex.MULTILINE)
APPLIED_BODY_PATTERN = regex.compile(r"^Applied", regex.MULTILINE)

# "[PATCH]", "[PATCH 2/5]", "[PATCH v3 2/5]"
PATCH_SUBJECT_PATTERN = regex.compile(r"\[PATCH(?:\s+v\d+)?(?:\s+\d+/\d+)?\]")

# Reply/forward prefixes: a reply to a patch is not a new patch
REPLY_PREFIX_PATTERN = regex.compile(r"^\s*(Re:|RE:|Fwd:|FWD:|FW:|Fw:)")

DecisionKind = Literal[
    "none", "change", "bug", "bug_fixed", "release", "help", "help_resolved", "patch",
    "patch_applied",
]
DecisionStatus = Literal["applied", "rejected", "noop", "ignored"]


@dataclass(frozen=True)
class Decision:
    """Result of classifying one message.

    Attributes:
        kind: Which branch matched ("none" for ordinary traffic)
        status: applied, rejected (validation failed), noop (branch matched
            but nothing to change), or ignored (no trigger)
        mutations: Store mutations to apply, in order
        outcome: Human-readable audit line (None for ordinary traffic)
    """

    kind: DecisionKind
    status: DecisionStatus
    mutations: tuple[Mutation, ...] = field(default_factory=tuple)
    outcome: str | None = None

    @staticmethod
    def apply(kind: DecisionKind, mutations: Sequence[Mutation], outcome: str) -> Decision:
        return Decision(kind=kind, status="applied", mutations=tuple(mutations), outcome=outcome)

    @staticmethod
    def reject(kind: DecisionKind, outcome: str) -> Decision:
        return Decision(kind=kind, status="rejected", outcome=outcome)

    @staticmethod
    def noop(kind: DecisionKind, outcome: str) -> Decision:
        return Decision(kind=kind, status="noop", outcome=outcome)

    @staticmethod
    def ignore() -> Decision:
        return Decision(kind="none", status="ignored")


# ---------------------------------------------------------------------------
# Trigger helpers
# ---------------------------------------------------------------------------


def _header_value(envelope: Envelope, name: str) -> str | None:
    value = envelope.header(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _body_has(envelope: Envelope, pattern: regex.Pattern) -> bool:
    return bool(envelope.body) and pattern.search(envelope.body, timeout=REGEX_TIMEOUT) is not None


def _opens(value: str | None, closing_values: frozenset[str]) -> bool:
    return value is not None and value not in closing_values


def _summary(value: str | None, subject: str) -> str:
    """Free text on a trigger header replaces the subject."""
    if value is None or value in CONFIRMED_VALUES:
        return subject
    return value


def is_patch_subject(subject: str) -> bool:
    """Whether a subject announces a new patch (not a reply to one)."""
    if REPLY_PREFIX_PATTERN.match(subject, timeout=REGEX_TIMEOUT):
        return False
    return PATCH_SUBJECT_PATTERN.search(subject, timeout=REGEX_TIMEOUT) is not None


def parse_change_spec(value: str) -> tuple[str | None, frozenset[str]]:
    """Split an X-Woof-Change value into (commit, versions).

    A single token is a version with no commit; with more tokens the
    first one is the commit and the rest are versions.
    """
    tokens = value.split()
    if len(tokens) == 1:
        return None, frozenset(tokens)
    if not tokens:
        return None, frozenset()
    return tokens[0], frozenset(tokens[1:])


# ---------------------------------------------------------------------------
# Branches
# ---------------------------------------------------------------------------


def _add_change(records: Mapping[str, Record], envelope: Envelope, value: str) -> Decision:
    commit, versions = parse_change_spec(value)
    known = released_versions(records)
    who, via = envelope.sender, envelope.id

    if versions & known:
        return Decision.reject(
            "change",
            f"{who} tried to add a change against a known release "
            f"({', '.join(sorted(versions & known))}), ignoring {via}",
        )
    if not versions:
        return Decision.reject(
            "change", f"{who} tried to add a change with a wrong header format, ignoring {via}"
        )

    change = Change(
        id=via,
        sender=who,
        subject=envelope.subject,
        date=envelope.date,
        commit=commit,
        versions=versions,
    )
    return Decision.apply(
        "change",
        [Upsert(change)],
        f"{who} added a change for version {', '.join(sorted(versions))} via {via}",
    )


def _add_confirmed_bug(envelope: Envelope, value: str | None) -> Decision:
    bug = Bug(
        id=envelope.id,
        sender=envelope.sender,
        subject=_summary(value, envelope.subject),
        date=envelope.date,
        refs=envelope.references | {envelope.id},
    )
    return Decision.apply("bug", [Upsert(bug)], f"{envelope.sender} added a bug via {envelope.id}")


def _close_threaded(
    open_records: Sequence[Bug | HelpRequest | Patch],
    envelope: Envelope,
    fields: tuple[str, str, str],
) -> list[Mutation]:
    closed_field, by_field, at_field = fields
    return [
        Update(
            record.id,
            {closed_field: envelope.id, by_field: envelope.sender, at_field: envelope.date},
        )
        for record in open_records
        if record.refs & envelope.references
    ]


def _add_fixed_bug(records: Mapping[str, Record], envelope: Envelope) -> Decision:
    mutations = _close_threaded(unfixed_bugs(records), envelope, ("fixed", "fixed_by", "fixed_at"))
    if not mutations:
        return Decision.noop(
            "bug_fixed", f"{envelope.sender} marked a bug fixed via {envelope.id}, no open bug matched"
        )
    return Decision.apply(
        "bug_fixed",
        mutations,
        f"{envelope.sender} marked {len(mutations)} bug(s) fixed via {envelope.id}",
    )


def _add_release(
    records: Mapping[str, Record],
    envelope: Envelope,
    version: str | None,
    release_manager: str,
) -> Decision:
    who, via = envelope.sender, envelope.id

    if who != release_manager:
        return Decision.reject(
            "release", f"{who} tried to release via {via} while not being release manager"
        )
    if not version:
        return Decision.reject(
            "release", f"{who} tried to release without a version number via {via}"
        )
    if version in released_versions(records):
        return Decision.reject(
            "release", f"{who} tried to release with a known version number via {via}"
        )

    release = Release(id=via, sender=who, subject=envelope.subject, date=envelope.date, version=version)
    mutations: list[Mutation] = [Upsert(release)]
    mutations.extend(
        Update(change.id, {"released": version})
        for change in unreleased_changes(records)
        if version in change.versions
    )
    return Decision.apply("release", mutations, f"{who} released {version} via {via}")


def _add_help(envelope: Envelope, value: str) -> Decision:
    request = HelpRequest(
        id=envelope.id,
        sender=envelope.sender,
        subject=_summary(value, envelope.subject),
        date=envelope.date,
        refs=envelope.references | {envelope.id},
    )
    return Decision.apply(
        "help", [Upsert(request)], f"{envelope.sender} added a call for help via {envelope.id}"
    )


def _resolve_help(records: Mapping[str, Record], envelope: Envelope) -> Decision:
    mutations = _close_threaded(
        pending_help(records), envelope, ("resolved", "resolved_by", "resolved_at")
    )
    if not mutations:
        return Decision.noop(
            "help_resolved",
            f"{envelope.sender} closed a call for help via {envelope.id}, none pending matched",
        )
    return Decision.apply(
        "help_resolved",
        mutations,
        f"{envelope.sender} closed {len(mutations)} call(s) for help via {envelope.id}",
    )


def _add_patch(envelope: Envelope, value: str | None) -> Decision:
    patch = Patch(
        id=envelope.id,
        sender=envelope.sender,
        subject=_summary(value, envelope.subject),
        date=envelope.date,
        refs=envelope.references | {envelope.id},
    )
    return Decision.apply("patch", [Upsert(patch)], f"{envelope.sender} sent a patch via {envelope.id}")


def _apply_patch(records: Mapping[str, Record], envelope: Envelope) -> Decision:
    mutations = _close_threaded(
        unapplied_patches(records), envelope, ("applied", "applied_by", "applied_at")
    )
    if not mutations:
        return Decision.noop(
            "patch_applied",
            f"{envelope.sender} applied a patch via {envelope.id}, no pending patch matched",
        )
    return Decision.apply(
        "patch_applied",
        mutations,
        f"{envelope.sender} marked {len(mutations)} patch(es) applied via {envelope.id}",
    )


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


def classify(
    records: Mapping[str, Record],
    envelope: Envelope,
    release_manager: str,
    index: frozenset[str] | None = None,
) -> Decision:
    """Pick the first matching trigger and compute its mutations.

    Args:
        records: Snapshot of the store, after reference propagation
        envelope: The list message being classified
        release_manager: Only sender allowed to create releases
        index: Derived reference index for records (computed if omitted)

    Returns:
        Decision for the message; Decision.ignore() for ordinary traffic
    """
    if index is None:
        index = compute_index(records)
    in_thread = bool(envelope.references & index)

    change_value = envelope.header(CHANGE_HEADER)
    if change_value is not None:
        return _add_change(records, envelope, change_value)

    bug_value = _header_value(envelope, BUG_HEADER)
    if _opens(bug_value, RESOLVED_VALUES) or (
        bug_value is None and _body_has(envelope, CONFIRMED_BODY_PATTERN)
    ):
        return _add_confirmed_bug(envelope, bug_value)

    bug_fixed = bug_value in RESOLVED_VALUES or (
        bug_value is None and _body_has(envelope, FIXED_BODY_PATTERN)
    )
    if bug_fixed and in_thread:
        return _add_fixed_bug(records, envelope)

    if envelope.header(RELEASE_HEADER) is not None:
        return _add_release(
            records, envelope, _header_value(envelope, RELEASE_HEADER), release_manager
        )

    help_value = _header_value(envelope, HELP_HEADER)
    if help_value in RESOLVED_VALUES:
        if in_thread:
            return _resolve_help(records, envelope)
    elif help_value is not None:
        return _add_help(envelope, help_value)

    patch_value = _header_value(envelope, PATCH_HEADER)
    patch_closed = patch_value in PATCH_CLOSED_VALUES or (
        patch_value is None and _body_has(envelope, APPLIED_BODY_PATTERN)
    )
    if patch_closed and in_thread:
        return _apply_patch(records, envelope)
    if _opens(patch_value, PATCH_CLOSED_VALUES) or (
        patch_value is None and is_patch_subject(envelope.subject)
    ):
        return _add_patch(envelope, patch_value)

    return Decision.ignore()
