"""Deterministic acceptance policy for incoming change records.

The transport may reorder or replay deliveries.  When rows carry a version
marker, an older version than the one already in the view is stale and
must not replace it.
"""

from __future__ import annotations

from datetime import datetime


def should_accept_record(
    *,
    current_version: datetime | None,
    incoming_version: datetime | None,
) -> bool:
    """Decide whether an incoming record may replace the current view slice.

    Policy:
    - If both versions exist: accept unless incoming is strictly older.
    - If either is missing: accept (latest delivery wins).
    """
    if current_version is None or incoming_version is None:
        return True
    return incoming_version >= current_version
