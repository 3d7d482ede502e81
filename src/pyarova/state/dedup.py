"""Notification deduplication cache.

The same server-side change can be observed several times (duplicate push
delivery, a poll racing the push event, replay after a reconnect).  The
cache collapses those observations so each change is surfaced at most once.
"""

from __future__ import annotations

import copy
from collections import OrderedDict
from collections.abc import Mapping, Sequence
from typing import Any, NamedTuple

from pyarova.state.events import ChangeKind, ChangeRecord, EntityKind


class DedupKey(NamedTuple):
    """Identity of a notifiable change.

    ``entity_id`` is ``None`` for singleton kinds, where only the latest
    state matters.
    """

    entity_kind: EntityKind
    entity_id: str | None = None

    @property
    def is_singleton(self) -> bool:
        return self.entity_id is None


def dedup_key(record: ChangeRecord) -> DedupKey:
    """Derive the dedup key of a record."""
    if record.entity_kind.is_singleton:
        return DedupKey(record.entity_kind)
    return DedupKey(record.entity_kind, record.entity_id)


def dedup_payload(record: ChangeRecord) -> dict[str, Any] | None:
    """Payload compared for singleton keys; ``None`` marks the entity as gone."""
    if record.change_kind == ChangeKind.DELETED:
        return None
    return record.payload


class DedupCache:
    """Tracks changes already surfaced to the user.

    :meth:`should_notify` is a single check-and-set step with no suspension
    point, so deliveries serialized on one event loop can never both pass it
    for the same change.  Not thread-safe; call it from the event loop.

    Parameters
    ----------
    capacity
        Maximum number of keys retained, oldest evicted first.  ``0`` keeps
        every key for the life of the cache.
    compare_fields
        Per singleton kind, the payload fields that decide whether a state is
        new.  Kinds not listed compare the full payload.
    """

    def __init__(
        self,
        *,
        capacity: int = 0,
        compare_fields: Mapping[EntityKind, Sequence[str]] | None = None,
    ) -> None:
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        self._capacity = capacity
        self._compare_fields = {kind: tuple(fields) for kind, fields in (compare_fields or {}).items()}
        self._entries: OrderedDict[DedupKey, dict[str, Any] | None] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def _fingerprint(self, key: DedupKey, payload: dict[str, Any] | None) -> dict[str, Any] | None:
        if payload is None:
            return None
        fields = self._compare_fields.get(key.entity_kind)
        if fields is None:
            return copy.deepcopy(payload)
        return {name: copy.deepcopy(payload.get(name)) for name in fields}

    def should_notify(self, key: DedupKey, payload: dict[str, Any] | None = None) -> bool:
        """Return ``True`` if the change identified by *key* was not surfaced yet.

        For alert keys this is ``True`` at most once per key.  For singleton
        keys the latest payload is remembered: a re-delivery of the same
        payload returns ``False``, a different payload returns ``True``.
        """
        if key.is_singleton:
            fingerprint = self._fingerprint(key, payload)
            if key in self._entries and self._entries[key] == fingerprint:
                return False
            self._entries[key] = fingerprint
            self._entries.move_to_end(key)
            self._evict()
            return True

        if key in self._entries:
            return False
        self._entries[key] = None
        self._evict()
        return True

    def _evict(self) -> None:
        if self._capacity <= 0:
            return
        while len(self._entries) > self._capacity:
            self._entries.popitem(last=False)

    def discard(self, key: DedupKey) -> None:
        """Forget *key* so its next change notifies again."""
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Discard all remembered keys."""
        self._entries.clear()
