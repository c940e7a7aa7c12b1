"""Kind-aware value encoding shared by the local and remote stores.

Two text forms exist:

    local literal   — what the local medium holds. boolean/number/string keys
                      keep a bare literal so the raw text stays readable:
                      true, 0.75, hard. Structured keys hold JSON.
    remote content  — what a remote object holds. Always JSON, after the
                      value has been coerced to its key's kind.

Both sides coerce through `coerce()` so a value saved locally and a value
saved remotely for the same key agree on their type.

`kind=None` means the key is not in the schema; such values are handled as
structured.
"""

from __future__ import annotations

import json
import math
from typing import Any

from monk_journey.models import ValueKind

_TRUE_LITERALS = frozenset({"true", "1", "yes", "on"})
_FALSE_LITERALS = frozenset({"false", "0", "no", "off", ""})


# ---------------------------------------------------------------------------
# Coercion
# ---------------------------------------------------------------------------

def coerce(kind: ValueKind | None, value: Any) -> Any:
    """Convert `value` to the Python type of `kind`.

    Raises ValueError when the value cannot represent the kind (e.g. "abc"
    for a number key). None passes through for every kind.
    """
    if value is None or kind is None or kind == "structured":
        return value

    if kind == "boolean":
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return _unquote(value).strip().lower() == "true"
        return bool(value)

    if kind == "string":
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, str):
            return value
        if isinstance(value, (int, float)):
            return str(value)
        return json.dumps(value)

    if kind == "number":
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, (int, float)):
            return _finite(value)
        if isinstance(value, str):
            return _parse_number(_unquote(value))
        raise ValueError(f"Cannot store {type(value).__name__} in a number key")

    raise ValueError(f"Unknown value kind {kind!r}")


def _finite(number: int | float) -> int | float:
    if isinstance(number, float) and not math.isfinite(number):
        raise ValueError(f"Number keys only hold finite values, got {number!r}")
    return number


def _parse_number(text: str) -> int | float:
    text = text.strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return _finite(float(text))
    except ValueError:
        raise ValueError(f"Not a number: {text!r}") from None


def _unquote(text: str) -> str:
    """Strip one level of JSON string quoting, if present."""
    if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
        try:
            inner = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(inner, str):
            return inner
    return text


# ---------------------------------------------------------------------------
# Local literal form
# ---------------------------------------------------------------------------

def encode_local(kind: ValueKind | None, value: Any) -> str:
    """Text stored in the local medium for `value`.

    Raises ValueError / TypeError for values that cannot be encoded.
    """
    value = coerce(kind, value)
    if value is None:
        return "null"
    if kind == "boolean":
        return "true" if value else "false"
    if kind == "string":
        return value
    return json.dumps(value)


def decode_local(kind: ValueKind | None, raw: str) -> Any:
    """Inverse of encode_local.

    Structured and undeclared keys fall back to the raw text when it is not
    JSON. Declared scalar kinds raise ValueError on unreadable text.
    """
    if kind is None or kind == "structured":
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw

    if kind == "string":
        return raw

    text = raw.strip()
    if text == "null":
        return None

    if kind == "boolean":
        if text == "true":
            return True
        if text == "false":
            return False
        raise ValueError(f"Not a boolean literal: {raw!r}")

    return _parse_number(text)


def repair_local(kind: ValueKind | None, raw: str) -> str | None:
    """Canonical literal for a record written by an older encoding.

    Older builds JSON-encoded every value, leaving records such as "\"hard\""
    or "\"true\"" behind. Returns the canonical text when it differs from
    `raw`, None when the record is already canonical or cannot be repaired.
    """
    if kind is None or kind == "structured":
        return None

    text = _unquote(raw)
    if kind == "boolean":
        lowered = text.strip().lower()
        if lowered in _TRUE_LITERALS:
            canonical = "true"
        elif lowered in _FALSE_LITERALS:
            canonical = "false"
        else:
            return None
    elif kind == "number":
        try:
            canonical = json.dumps(_parse_number(text))
        except ValueError:
            return None
    else:
        canonical = text

    return canonical if canonical != raw else None


# ---------------------------------------------------------------------------
# Remote content form
# ---------------------------------------------------------------------------

def serialize(kind: ValueKind | None, value: Any) -> str:
    """JSON content written to a remote object."""
    return json.dumps(coerce(kind, value))


def deserialize(kind: ValueKind | None, content: str) -> Any:
    """Parse remote content, tolerating objects that lost their encoding.

    Non-JSON content is kept as raw text; kind coercion is applied either
    way so a hand-edited "true" still comes back as a boolean.
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        data = content

    if kind is None or kind == "structured":
        return normalize_legacy(data)
    return coerce(kind, data)


def normalize_legacy(data: Any) -> Any:
    """Turn string booleans back into booleans, recursively."""
    if data == "true":
        return True
    if data == "false":
        return False
    if isinstance(data, list):
        return [normalize_legacy(item) for item in data]
    if isinstance(data, dict):
        return {k: normalize_legacy(v) for k, v in data.items()}
    return data


def canonical(value: Any) -> str:
    """Order-independent text used to decide whether two values differ."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
