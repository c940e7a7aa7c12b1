"""Conflict policy — which side wins when local and remote disagree.

Values are compared on their canonical JSON text after the same legacy
boolean normalization the remote store applies on load. Most keys are settings
that are cheap to lose and fix themselves on the next change, so the local
value wins silently and is pushed to the remote. Keys listed in `escalate`
(by default only the save game) are handed to the application's decision
interface, which shows both versions to the player:

    async def decide(kind: DecisionKind, first: Any, second: Any) -> Choice: ...

For kind="conflict" `first` is the local value and `second` the remote one,
and the answer is "local" or "remote". For kind="enforced_login" `first` is
the last sign-in time (epoch ms) and the answer is "sign_in" or "skip".
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Protocol

from monk_journey.keys import SAVE_DATA_KEY
from monk_journey.models import Choice, DecisionKind
from monk_journey.storage import codec

logger = logging.getLogger(__name__)

Resolution = Literal["local", "remote", "skip"]


class Decider(Protocol):
    async def __call__(self, kind: DecisionKind, first: Any, second: Any) -> Choice: ...


class ConflictPolicy:
    """Decides conflicts between a local and a remote value.

    Args:
        decide:   Decision interface for escalated keys. Without one,
                  escalated conflicts are skipped and both sides kept.
        escalate: Keys whose conflicts need the player's consent.
    """

    def __init__(
        self,
        decide: Decider | None = None,
        escalate: frozenset[str] = frozenset({SAVE_DATA_KEY}),
    ) -> None:
        self._decide = decide
        self._escalate = escalate

    @staticmethod
    def differs(local: Any, remote: Any) -> bool:
        # remote values come back legacy-normalized, so compare local the same way
        return codec.canonical(codec.normalize_legacy(local)) != codec.canonical(
            codec.normalize_legacy(remote)
        )

    async def choose(self, key: str, local: Any, remote: Any) -> Resolution:
        if key not in self._escalate:
            logger.debug("Conflict on %s resolved to the local value", key)
            return "local"

        if self._decide is None:
            logger.warning("Conflict on %s needs a decision but none can be asked, skipping", key)
            return "skip"

        try:
            choice = await self._decide("conflict", local, remote)
        except Exception:
            logger.exception("Decision interface failed for conflict on %s", key)
            return "skip"

        if choice in ("local", "remote"):
            logger.info("Conflict on %s resolved by the player: %s", key, choice)
            return choice
        logger.warning("Conflict on %s left unresolved (answer %r)", key, choice)
        return "skip"
