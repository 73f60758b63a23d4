"""Tests for canonical serialization and hashing."""

from datetime import UTC, datetime

from tracevault.app.adapters import StoreTimestamp
from tracevault.audit.canonical import canonicalize, hash_canonical
from tracevault.utils.hashing import compute_sha256_text


def test_key_order_does_not_matter():
    assert canonicalize({"a": 1, "b": 2}) == canonicalize({"b": 2, "a": 1})


def test_nested_mappings_are_sorted():
    left = {"outer": {"z": [1, {"y": True, "x": None}], "a": "s"}}
    right = {"outer": {"a": "s", "z": [1, {"x": None, "y": True}]}}

    assert canonicalize(left) == canonicalize(right)
    assert canonicalize(left) == '{"outer":{"a":"s","z":[1,{"x":null,"y":true}]}}'


def test_sequence_order_is_preserved():
    assert canonicalize([1, 2]) != canonicalize([2, 1])


def test_none_and_primitives():
    assert canonicalize(None) == "null"
    assert canonicalize("café") == '"café"'
    assert canonicalize(1.5) == "1.5"
    assert canonicalize(False) == "false"


def test_timestamps_canonicalize_as_iso_strings():
    moment = datetime(2025, 1, 15, 12, 0, 0, 123000, tzinfo=UTC)
    wrapped = StoreTimestamp.from_datetime(moment)

    assert canonicalize({"t": moment}) == canonicalize({"t": wrapped})
    assert canonicalize(moment) == '"2025-01-15T12:00:00.123Z"'


def test_hash_is_stable_for_unchanged_input():
    record = {"action_type": "testcase.updated", "entity_id": "TC-1", "values": [1, 2]}

    first = hash_canonical(record)
    second = hash_canonical(record)

    assert first == second
    assert first == compute_sha256_text(canonicalize(record))
    assert len(first) == 64


def test_hash_changes_with_content():
    assert hash_canonical({"a": 1}) != hash_canonical({"a": 2})
