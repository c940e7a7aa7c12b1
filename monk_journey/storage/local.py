"""Local store — synchronous key/value persistence on this device.

The local store is the store of last resort: gameplay writes land here first
and must never be blocked by the network. Every operation is synchronous and
reports failures as False / None plus a log line; nothing raises to the
caller.

Values live in a text medium (one raw string per key). Two media are
provided:

    JsonFileMedium  — a single JSON object file {key: raw_text} under the
                      data directory, rewritten atomically on every change.
    MemoryMedium    — a plain dict. Used by tests and when persistence is
                      unavailable.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol

from monk_journey.keys import DEFAULT_SCHEMA
from monk_journey.models import ValueKind
from monk_journey.storage import codec

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------

class TextMedium(Protocol):
    def get_item(self, key: str) -> str | None: ...
    def set_item(self, key: str, raw: str) -> None: ...
    def remove_item(self, key: str) -> None: ...
    def keys(self) -> Iterable[str]: ...


class MemoryMedium:
    """Dict-backed medium. `disabled=True` makes every call fail like a
    browser with storage turned off."""

    def __init__(self, items: Mapping[str, str] | None = None, disabled: bool = False) -> None:
        self.items: dict[str, str] = dict(items or {})
        self.disabled = disabled

    def _check(self) -> None:
        if self.disabled:
            raise OSError("Local storage is disabled")

    def get_item(self, key: str) -> str | None:
        self._check()
        return self.items.get(key)

    def set_item(self, key: str, raw: str) -> None:
        self._check()
        self.items[key] = raw

    def remove_item(self, key: str) -> None:
        self._check()
        self.items.pop(key, None)

    def keys(self) -> list[str]:
        self._check()
        return list(self.items)


class JsonFileMedium:
    """All records in one JSON file, kept in memory and written through.

    Args:
        path:        File to read and write, created on first write.
        quota_bytes: Optional size limit for the encoded file. A write that
                     would exceed it raises QuotaExceededError and leaves the
                     previous contents in place.
    """

    def __init__(self, path: Path, quota_bytes: int | None = None) -> None:
        self._path = path
        self._quota = quota_bytes
        self._items = self._read()

    def _read(self) -> dict[str, str]:
        if not self._path.is_file():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Unreadable local storage file %s: %s", self._path, e)
            return {}
        if not isinstance(data, dict):
            logger.error("Local storage file %s is not a JSON object", self._path)
            return {}
        return {str(k): v if isinstance(v, str) else json.dumps(v) for k, v in data.items()}

    def _write(self, items: dict[str, str]) -> None:
        text = json.dumps(items, indent=2, ensure_ascii=False)
        if self._quota is not None and len(text.encode("utf-8")) > self._quota:
            raise QuotaExceededError(
                f"Local storage quota of {self._quota} bytes exceeded"
            )
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, self._path)
        self._items = items

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, raw: str) -> None:
        self._write({**self._items, key: raw})

    def remove_item(self, key: str) -> None:
        if key in self._items:
            self._write({k: v for k, v in self._items.items() if k != key})

    def keys(self) -> list[str]:
        return list(self._items)


# ---------------------------------------------------------------------------
# LocalStore
# ---------------------------------------------------------------------------

class LocalStore:
    """Typed key/value access over a text medium.

    Args:
        medium: Where raw text is kept.
        schema: Declared kind per key. Defaults to the game's schema.
    """

    def __init__(
        self,
        medium: TextMedium,
        schema: Mapping[str, ValueKind] | None = None,
    ) -> None:
        self._medium = medium
        self._schema = DEFAULT_SCHEMA if schema is None else schema

    @property
    def schema(self) -> Mapping[str, ValueKind]:
        return self._schema

    def save(self, key: str, value: Any) -> bool:
        try:
            raw = codec.encode_local(self._schema.get(key), value)
        except (TypeError, ValueError) as e:
            logger.error("Cannot encode value for key %s: %s", key, e)
            return False
        try:
            self._medium.set_item(key, raw)
        except OSError as e:
            logger.error("Error saving data for key %s: %s", key, e)
            return False
        return True

    def load(self, key: str) -> Any:
        try:
            raw = self._medium.get_item(key)
        except OSError as e:
            logger.error("Error loading data for key %s: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            return codec.decode_local(self._schema.get(key), raw)
        except ValueError as e:
            logger.error("Unreadable local record for key %s: %s", key, e)
            return None

    def delete(self, key: str) -> bool:
        try:
            self._medium.remove_item(key)
        except OSError as e:
            logger.error("Error deleting data for key %s: %s", key, e)
            return False
        return True

    def has(self, key: str) -> bool:
        try:
            return self._medium.get_item(key) is not None
        except OSError as e:
            logger.error("Error checking data for key %s: %s", key, e)
            return False

    def raw(self, key: str) -> str | None:
        """Stored text for `key`, exactly as the medium holds it."""
        try:
            return self._medium.get_item(key)
        except OSError as e:
            logger.error("Error reading raw data for key %s: %s", key, e)
            return None

    def keys(self, prefix: str | None = None) -> list[str]:
        try:
            keys = list(self._medium.keys())
        except OSError as e:
            logger.error("Error listing local keys: %s", e)
            return []
        if prefix is None:
            return keys
        return [k for k in keys if k.startswith(prefix)]

    def fix_existing_data(self) -> int:
        """Rewrite declared-kind records left in an older encoding.

        Returns the number of records rewritten.
        """
        fixed = 0
        for key in self.keys():
            kind = self._schema.get(key)
            if kind is None:
                continue
            raw = self.raw(key)
            if raw is None:
                continue
            canonical = codec.repair_local(kind, raw)
            if canonical is None:
                continue
            try:
                self._medium.set_item(key, canonical)
            except OSError as e:
                logger.error("Error repairing local record %s: %s", key, e)
                continue
            logger.warning("Repaired local record %s: %r -> %r", key, raw, canonical)
            fixed += 1
        return fixed


class QuotaExceededError(OSError):
    """Raised by a medium when a write would exceed its size limit."""
