"""State layer.

This package is the single source of truth for how change records from
snapshot polling and the push change feed are merged into the client's
view, and for deciding which changes are surfaced to the user.
"""
