"""Ingestion layer.

This package contains the two producers that observe server state (the
snapshot poller and the push subscription manager) and the normalizer
that turns what they observe into change records.
"""

__all__: list[str] = []
