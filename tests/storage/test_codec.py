"""Tests for monk_journey.storage.codec — kind coercion and text forms."""

import math

import pytest

from monk_journey.storage import codec


# ── Coercion ─────────────────────────────────────────────────


def test_coerce_boolean_from_strings():
    assert codec.coerce("boolean", "true") is True
    assert codec.coerce("boolean", "TRUE") is True
    assert codec.coerce("boolean", '"true"') is True
    assert codec.coerce("boolean", "false") is False
    assert codec.coerce("boolean", "anything else") is False


def test_coerce_boolean_from_numbers():
    assert codec.coerce("boolean", 1) is True
    assert codec.coerce("boolean", 0) is False


def test_coerce_string():
    assert codec.coerce("string", "hard") == "hard"
    assert codec.coerce("string", 3) == "3"
    assert codec.coerce("string", True) == "true"
    assert codec.coerce("string", {"a": 1}) == '{"a": 1}'


def test_coerce_number():
    assert codec.coerce("number", "60") == 60
    assert codec.coerce("number", "0.75") == 0.75
    assert codec.coerce("number", '"0.5"') == 0.5
    assert codec.coerce("number", True) == 1
    assert codec.coerce("number", 2.5) == 2.5


def test_coerce_number_rejects_garbage():
    with pytest.raises(ValueError):
        codec.coerce("number", "loud")
    with pytest.raises(ValueError):
        codec.coerce("number", math.inf)
    with pytest.raises(ValueError):
        codec.coerce("number", [1, 2])


def test_coerce_passes_none_and_structured_through():
    blob = {"level": 3, "items": ["staff"]}
    assert codec.coerce("structured", blob) is blob
    assert codec.coerce(None, blob) is blob
    assert codec.coerce("number", None) is None


# ── Local literal form ───────────────────────────────────────


def test_encode_local_literals():
    assert codec.encode_local("boolean", True) == "true"
    assert codec.encode_local("boolean", "false") == "false"
    assert codec.encode_local("string", "hard") == "hard"
    assert codec.encode_local("number", 0.75) == "0.75"
    assert codec.encode_local("number", "60") == "60"
    assert codec.encode_local("structured", {"a": [1, 2]}) == '{"a": [1, 2]}'
    assert codec.encode_local(None, None) == "null"


def test_decode_local_literals():
    assert codec.decode_local("boolean", "true") is True
    assert codec.decode_local("boolean", "false") is False
    assert codec.decode_local("string", "hard") == "hard"
    assert codec.decode_local("number", "60") == 60
    assert codec.decode_local("number", "0.75") == 0.75
    assert codec.decode_local("structured", '{"a": 1}') == {"a": 1}


def test_decode_local_structured_falls_back_to_raw_text():
    assert codec.decode_local("structured", "not json") == "not json"
    assert codec.decode_local(None, "plain") == "plain"


def test_decode_local_rejects_unreadable_scalars():
    with pytest.raises(ValueError):
        codec.decode_local("boolean", "maybe")
    with pytest.raises(ValueError):
        codec.decode_local("number", "loud")


# ── Legacy repair ────────────────────────────────────────────


def test_repair_json_quoted_records():
    assert codec.repair_local("string", '"hard"') == "hard"
    assert codec.repair_local("boolean", '"true"') == "true"
    assert codec.repair_local("number", '"0.5"') == "0.5"


def test_repair_boolean_aliases():
    assert codec.repair_local("boolean", "1") == "true"
    assert codec.repair_local("boolean", "off") == "false"


def test_repair_leaves_canonical_records_alone():
    assert codec.repair_local("string", "hard") is None
    assert codec.repair_local("boolean", "true") is None
    assert codec.repair_local("number", "60") is None
    assert codec.repair_local("structured", '"anything"') is None


def test_repair_gives_up_on_garbage():
    assert codec.repair_local("boolean", "maybe") is None
    assert codec.repair_local("number", "loud") is None


# ── Remote content form ──────────────────────────────────────


def test_serialize_coerces_first():
    assert codec.serialize("number", "60") == "60"
    assert codec.serialize("boolean", "true") == "true"
    assert codec.serialize("string", 3) == '"3"'


def test_deserialize_applies_kind():
    assert codec.deserialize("boolean", '"true"') is True
    assert codec.deserialize("number", '"0.5"') == 0.5
    assert codec.deserialize("string", "hard") == "hard"


def test_deserialize_normalizes_legacy_booleans_in_blobs():
    content = '{"muted": "true", "tracks": ["false", "x"], "nested": {"on": "false"}}'
    assert codec.deserialize(None, content) == {
        "muted": True,
        "tracks": [False, "x"],
        "nested": {"on": False},
    }


def test_deserialize_keeps_non_json_text():
    assert codec.deserialize("structured", "raw text") == "raw text"


# ── Canonical comparison ─────────────────────────────────────


def test_canonical_ignores_key_order():
    assert codec.canonical({"a": 1, "b": 2}) == codec.canonical({"b": 2, "a": 1})


def test_canonical_distinguishes_values():
    assert codec.canonical({"level": 3}) != codec.canonical({"level": 5})
    assert codec.canonical(1) != codec.canonical("1")
