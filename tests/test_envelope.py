"""Tests for envelope normalization and the mailing-list gate."""

from __future__ import annotations

from datetime import UTC, datetime

from conftest import MAILING_LIST, USER

from woof.engine.envelope import (
    Envelope,
    bracketed_address,
    first_address,
    is_list_message,
    merge_headers,
    normalize_envelope,
    normalize_id,
    parse_references,
    plain_text_body,
)

# =============================================================================
# Test normalize_id / parse_references
# =============================================================================


class TestNormalizeId:
    """Tests for message id normalization."""

    def test_strips_angle_brackets(self) -> None:
        assert normalize_id("<abc@example.org>") == "abc@example.org"

    def test_leaves_bare_id_alone(self) -> None:
        assert normalize_id("id1") == "id1"

    def test_strips_whitespace(self) -> None:
        assert normalize_id("  <abc@example.org> ") == "abc@example.org"

    def test_empty_and_none(self) -> None:
        assert normalize_id(None) == ""
        assert normalize_id("") == ""
        assert normalize_id("<>") == ""


class TestParseReferences:
    """Tests for References header parsing."""

    def test_splits_on_whitespace_and_normalizes(self) -> None:
        refs = parse_references("<a@x>  <b@x>\n\t<c@x>")
        assert refs == frozenset({"a@x", "b@x", "c@x"})

    def test_bare_ids(self) -> None:
        assert parse_references("id4 id0") == frozenset({"id4", "id0"})

    def test_absent_header_is_empty(self) -> None:
        assert parse_references(None) == frozenset()
        assert parse_references("   ") == frozenset()


# =============================================================================
# Test field extraction
# =============================================================================


class TestFieldExtraction:
    """Tests for sender, headers and body extraction."""

    def test_first_address_from_list_of_mappings(self) -> None:
        senders = [{"address": "a@x"}, {"address": "b@x"}]
        assert first_address(senders) == "a@x"

    def test_first_address_missing(self) -> None:
        assert first_address(None) == ""
        assert first_address([]) == ""

    def test_merge_headers_later_wins(self) -> None:
        merged = merge_headers([{"X-Woof-Bug": "confirmed"}, {"X-Woof-Bug": "fixed"}, {"To": "x"}])
        assert merged == {"X-Woof-Bug": "fixed", "To": "x"}

    def test_merge_headers_skips_garbage(self) -> None:
        assert merge_headers([None, "nope", {"A": None}, {"B": "1"}]) == {"B": "1"}

    def test_plain_text_body_shapes(self) -> None:
        assert plain_text_body("Applied") == "Applied"
        assert plain_text_body({"body": "Applied"}) == "Applied"
        assert plain_text_body({"body": "<p>x</p>", "content-type": "text/html"}) == ""
        parts = [
            {"body": "<p>x</p>", "content-type": "text/html"},
            {"body": "Fixed", "content-type": "text/plain; charset=utf-8"},
        ]
        assert plain_text_body(parts) == "Fixed"
        assert plain_text_body(None) == ""


class TestNormalizeEnvelope:
    """Tests for the full normalization step."""

    def test_full_message(self) -> None:
        sent = datetime(2020, 5, 27, tzinfo=UTC)
        envelope = normalize_envelope(
            {
                "id": "<id2@x>",
                "from": [{"address": USER}],
                "subject": "[FIXED] Fixed bug",
                "date_sent": sent,
                "headers": [
                    {"X-Original-To": MAILING_LIST},
                    {"References": "<id1@x>"},
                    {"X-Woof-Bug": "fixed"},
                ],
                "body": {"body": "Thanks!"},
            }
        )

        assert envelope.id == "id2@x"
        assert envelope.sender == USER
        assert envelope.subject == "[FIXED] Fixed bug"
        assert envelope.date == sent
        assert envelope.references == frozenset({"id1@x"})
        assert envelope.header("X-Woof-Bug") == "fixed"
        assert envelope.body == "Thanks!"

    def test_empty_message_does_not_fail(self) -> None:
        envelope = normalize_envelope({})
        assert envelope == Envelope(id="")

    def test_iso_date_string_is_parsed(self) -> None:
        envelope = normalize_envelope({"id": "a", "date_sent": "2020-05-27T00:13:11+00:00"})
        assert envelope.date == datetime(2020, 5, 27, 0, 13, 11, tzinfo=UTC)

    def test_unparseable_date_becomes_none(self) -> None:
        envelope = normalize_envelope({"id": "a", "date_sent": "last tuesday"})
        assert envelope.date is None


# =============================================================================
# Test is_list_message
# =============================================================================


class TestListGate:
    """Tests for the mailing-list membership gate."""

    def _envelope(self, **headers: str) -> Envelope:
        return Envelope(id="a", headers=headers)

    def test_delivery_header(self) -> None:
        assert is_list_message(self._envelope(**{"X-Original-To": MAILING_LIST}), MAILING_LIST)

    def test_list_id_header(self) -> None:
        assert is_list_message(self._envelope(**{"X-BeenThere": MAILING_LIST}), MAILING_LIST)

    def test_bracketed_to_header(self) -> None:
        envelope = self._envelope(To=f"Woof List <{MAILING_LIST}>")
        assert is_list_message(envelope, MAILING_LIST)

    def test_bare_to_header_is_not_enough(self) -> None:
        assert not is_list_message(self._envelope(To=MAILING_LIST), MAILING_LIST)

    def test_other_list_rejected(self) -> None:
        envelope = self._envelope(**{"X-Original-To": "other@x", "To": "Someone <me@x>"})
        assert not is_list_message(envelope, MAILING_LIST)

    def test_no_headers_rejected(self) -> None:
        assert not is_list_message(Envelope(id="a"), MAILING_LIST)

    def test_bracketed_address(self) -> None:
        assert bracketed_address("Name <a@x>") == "a@x"
        assert bracketed_address("a@x") is None
        assert bracketed_address(None) is None
