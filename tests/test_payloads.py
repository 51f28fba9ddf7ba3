"""Tests for directory payload shape detection and record normalization."""

from __future__ import annotations

import pytest

from src.teamclock.crm.payloads import (
    PayloadShape,
    SkipKind,
    SkipReason,
    classify_payload,
    display_name_of,
    is_placeholder_record,
    normalize_record,
)
from src.teamclock.identity.placeholders import is_placeholder_location
from src.teamclock.identity.schemas import FetchScope, NormalizedRecord


class TestClassifyPayload:
    @pytest.mark.parametrize(
        "payload, shape",
        [
            ([{"id": "u1"}], PayloadShape.BARE),
            ({"users": [{"id": "u1"}]}, PayloadShape.WRAPPED),
            ({"data": [{"id": "u1"}]}, PayloadShape.WRAPPED),
            ({"items": [{"id": "u1"}]}, PayloadShape.WRAPPED),
            ({"data": {"users": [{"id": "u1"}]}}, PayloadShape.NESTED),
        ],
    )
    def test_known_shapes_yield_the_users(self, payload, shape):
        detected, users = classify_payload(payload)
        assert detected == shape
        assert users == [{"id": "u1"}]

    @pytest.mark.parametrize("payload", [None, "oops", 42, {"count": 0}, {"users": "none"}])
    def test_unknown_shapes_yield_nothing(self, payload):
        assert classify_payload(payload) == (PayloadShape.UNKNOWN, [])


class TestPlaceholderLocation:
    @pytest.mark.parametrize("value", ["location", "LOCATION", "{location.id}", "{{location.id}}", " location "])
    def test_tokens_are_placeholders(self, value):
        assert is_placeholder_location(value) is True

    @pytest.mark.parametrize("value", [None, "", "loc-1", "my-location", "{{contact.id}}"])
    def test_other_values_are_not(self, value):
        assert is_placeholder_location(value) is False


class TestPlaceholderRecord:
    def test_template_tokens_in_name(self):
        assert is_placeholder_record("{{user.name}}", "a@acme.ro") is True

    def test_template_tokens_in_email(self):
        assert is_placeholder_record("Ana", "{{user.email}}") is True

    def test_test_email_heuristic(self):
        assert is_placeholder_record("QA", "Test.User@acme.ro") is True

    def test_heuristic_requires_at_sign(self):
        assert is_placeholder_record("QA", "testing") is False

    def test_heuristic_can_be_disabled(self):
        assert is_placeholder_record("Contest", "contest@acme.ro", email_heuristic=False) is False


class TestNormalizeRecord:
    def test_full_record(self):
        raw = {"id": "u1", "name": " Ana ", "email": "ana@acme.ro", "locationId": "loc-9"}

        record = normalize_record(raw, FetchScope.LOCATION, "loc-1")

        assert isinstance(record, NormalizedRecord)
        assert record.id == "u1"
        assert record.display_name == "Ana"
        assert record.source_location_id == "loc-9"
        assert record.scope == FetchScope.LOCATION
        assert record.raw == raw

    def test_scope_location_is_the_default(self):
        record = normalize_record({"id": "u1", "name": "Ana"}, FetchScope.LOCATION, "loc-1")
        assert record.source_location_id == "loc-1"

    def test_location_from_roles_object(self):
        raw = {"id": "u1", "name": "Ana", "roles": {"locationIds": ["", "loc-7"]}}
        record = normalize_record(raw, FetchScope.AGENCY, None)
        assert record.source_location_id == "loc-7"

    def test_missing_id_is_skipped(self):
        outcome = normalize_record({"name": "Ana"}, FetchScope.LOCATION, "loc-1")
        assert isinstance(outcome, SkipReason)
        assert outcome.kind == SkipKind.MISSING_ID

    def test_placeholder_is_skipped(self):
        outcome = normalize_record(
            {"id": "p1", "name": "{{contact.name}}"}, FetchScope.LOCATION, "loc-1"
        )
        assert isinstance(outcome, SkipReason)
        assert outcome.kind == SkipKind.PLACEHOLDER
        assert outcome.record_id == "p1"


class TestDisplayName:
    def test_first_and_last_name(self):
        assert display_name_of({"firstName": "Ana", "lastName": "Pop"}) == "Ana Pop"

    def test_first_name_only(self):
        assert display_name_of({"firstName": "Ana"}) == "Ana"

    def test_unknown_fallback(self):
        assert display_name_of({}) == "Unknown"
