"""
Deterministic message ids

Every platform has a fixed namespace UUID. Combining it with the
platform's native message id through UUIDv5 gives the same canonical id
however many times (or from however many tabs) an event is observed, which
is what lets the relay and the overlays deduplicate.
"""

from __future__ import annotations

import uuid
from collections import OrderedDict
from typing import Optional

from harvest.schemas.messages import now_ms


def canonical_id(namespace: str, native_id, *, trust_native: bool = False) -> str:
    """
    Map (platform namespace, native id) to a canonical UUID string.

    Args:
        namespace: The platform's namespace UUID
        native_id: Native message id (any value with a stable ``str()``)
        trust_native: Platforms whose native ids are already UUIDs (Kick, X)
                      keep them as-is so removals keyed by the raw id match

    Returns:
        Lowercase hyphenated UUID string
    """
    name = str(native_id)
    if trust_native:
        try:
            return str(uuid.UUID(name))
        except ValueError:
            pass
    return str(uuid.uuid5(uuid.UUID(namespace), name))


def synthesized_key(*parts, timestamp: Optional[int] = None) -> str:
    """
    Build a reproducible key for events that carry no native id.

    The key is ``<timestamp ms>_<part>_<part>...``. Two distinct events
    from the same user inside the same millisecond collide; that risk is
    accepted.
    """
    ts = now_ms() if timestamp is None else timestamp
    return "_".join([str(ts), *(str(p) for p in parts)])


class EmittedIdLedger:
    """Bounded memory of ids an adapter has already sent.

    Tracks whether each id was sent as a placeholder so the final message
    for a reserved id is let through exactly once.
    """

    def __init__(self, max_size: int = 5000):
        self.max_size = max_size
        self._ids: "OrderedDict[str, bool]" = OrderedDict()

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def should_emit(self, message_id: str, is_placeholder: bool) -> bool:
        """Record an outgoing message; False means it duplicates one already sent."""
        previous = self._ids.get(message_id)
        if previous is None:
            self._remember(message_id, is_placeholder)
            return True
        if previous and not is_placeholder:
            # placeholder -> final transition
            self._remember(message_id, False)
            return True
        return False

    def _remember(self, message_id: str, is_placeholder: bool) -> None:
        self._ids[message_id] = is_placeholder
        self._ids.move_to_end(message_id)
        while len(self._ids) > self.max_size:
            self._ids.popitem(last=False)
