"""Tests for the canonical entry form and HMAC computation."""

import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from scribe_audit.chain.hashing import (
    GENESIS_HASH,
    canonical_payload,
    canonical_timestamp,
    check_hashable,
    compute_entry_hash,
    recompute_hash,
)
from scribe_audit.common.exceptions import MalformedEntryError


SECRET = "test-audit-secret-version-0001"
TS = datetime(2026, 3, 14, 9, 26, 53, 589793, tzinfo=timezone.utc)


def _entry(**overrides):
    fields = {
        "id": "entry-1",
        "action": "note.created",
        "resource_type": "note",
        "resource_id": "note-1",
        "metadata_": {"template": "soap"},
        "created_at": TS,
        "secret_version": 1,
        "prev_hash": GENESIS_HASH,
        "hash": "ab" * 32,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestCanonicalTimestamp:
    def test_utc_with_microseconds(self):
        assert canonical_timestamp(TS) == "2026-03-14T09:26:53.589793Z"

    def test_naive_is_taken_as_utc(self):
        assert canonical_timestamp(TS.replace(tzinfo=None)) == canonical_timestamp(TS)

    def test_other_offsets_normalized(self):
        plus_two = TS.astimezone(timezone(timedelta(hours=2)))
        assert canonical_timestamp(plus_two) == canonical_timestamp(TS)

    def test_zero_microseconds_kept(self):
        ts = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert canonical_timestamp(ts) == "2026-01-01T00:00:00.000000Z"


class TestCanonicalPayload:
    def test_keys_sorted_compact(self):
        payload = canonical_payload("a", "b", "c", {"z": 1, "a": 2}, TS)
        assert payload == (
            '{"action":"a","created_at":"2026-03-14T09:26:53.589793Z",'
            '"metadata":{"a":2,"z":1},"resource_id":"c","resource_type":"b"}'
        )

    def test_metadata_key_order_irrelevant(self):
        one = canonical_payload("a", "b", None, {"x": 1, "y": [1, 2]}, TS)
        two = canonical_payload("a", "b", None, {"y": [1, 2], "x": 1}, TS)
        assert one == two

    def test_metadata_hashed_as_stored(self):
        data = json.loads(canonical_payload("a", "b", None, {}, TS))
        assert data["metadata"] == {}
        assert data["resource_id"] is None

    @pytest.mark.parametrize("falsy", [None, [], 0, "", False])
    def test_falsy_metadata_not_confused_with_empty_object(self, falsy):
        empty = canonical_payload("a", "b", None, {}, TS)
        assert canonical_payload("a", "b", None, falsy, TS) != empty

    def test_unicode_kept_verbatim(self):
        payload = canonical_payload("a", "b", None, {"name": "Zoë"}, TS)
        assert "Zoë" in payload

    def test_non_json_metadata_rejected(self):
        with pytest.raises(MalformedEntryError):
            canonical_payload("a", "b", None, {"when": object()}, TS)

    def test_nan_rejected(self):
        with pytest.raises(MalformedEntryError):
            canonical_payload("a", "b", None, {"score": float("nan")}, TS)


class TestComputeEntryHash:
    def test_matches_hmac_of_prev_and_canonical(self):
        canonical = canonical_payload("a", "b", None, {}, TS)
        expected = hmac.new(
            SECRET.encode(), f"{GENESIS_HASH}|{canonical}".encode(), hashlib.sha256,
        ).hexdigest()
        assert compute_entry_hash(SECRET, GENESIS_HASH, canonical) == expected

    def test_depends_on_secret(self):
        canonical = canonical_payload("a", "b", None, {}, TS)
        assert compute_entry_hash(SECRET, GENESIS_HASH, canonical) != compute_entry_hash(
            SECRET + "x", GENESIS_HASH, canonical,
        )

    def test_depends_on_prev_hash(self):
        canonical = canonical_payload("a", "b", None, {}, TS)
        assert compute_entry_hash(SECRET, GENESIS_HASH, canonical) != compute_entry_hash(
            SECRET, "1" * 64, canonical,
        )

    def test_hex_sha256_length(self):
        digest = compute_entry_hash(SECRET, GENESIS_HASH, "{}")
        assert len(digest) == 64
        int(digest, 16)


class TestRecompute:
    def test_recompute_matches_direct(self):
        entry = _entry()
        canonical = canonical_payload(
            entry.action, entry.resource_type, entry.resource_id, entry.metadata_, TS,
        )
        assert recompute_hash(SECRET, GENESIS_HASH, entry) == compute_entry_hash(
            SECRET, GENESIS_HASH, canonical,
        )

    def test_metadata_change_changes_hash(self):
        assert recompute_hash(SECRET, GENESIS_HASH, _entry()) != recompute_hash(
            SECRET, GENESIS_HASH, _entry(metadata_={"template": "dap"}),
        )

    def test_timestamp_change_changes_hash(self):
        later = TS + timedelta(microseconds=1)
        assert recompute_hash(SECRET, GENESIS_HASH, _entry()) != recompute_hash(
            SECRET, GENESIS_HASH, _entry(created_at=later),
        )

    @pytest.mark.parametrize("field", ["action", "resource_type", "secret_version", "prev_hash"])
    def test_missing_field_is_malformed(self, field):
        with pytest.raises(MalformedEntryError) as exc_info:
            check_hashable(_entry(**{field: None}))
        assert field in exc_info.value.message
        assert exc_info.value.entry_id == "entry-1"

    @pytest.mark.parametrize("metadata", [None, [], 0, "", False, ["a"]])
    def test_non_object_metadata_is_malformed(self, metadata):
        with pytest.raises(MalformedEntryError) as exc_info:
            check_hashable(_entry(metadata_=metadata))
        assert exc_info.value.entry_id == "entry-1"

    def test_empty_object_metadata_is_hashable(self):
        check_hashable(_entry(metadata_={}))
