"""Helpers for safe debug logging.

Raw change payloads and REST requests can carry credentials (API keys,
bearer tokens, broker passwords).  :func:`redact_for_log` returns a copy
of a value with those masked so it can be emitted in DEBUG logs.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel

_REDACTED = "<redacted>"

_SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "apikey",
        "api_key",
        "authorization",
        "cookie",
        "password",
        "secret",
        "token",
    }
)
_SENSITIVE_SUFFIXES: tuple[str, ...] = ("_token", "_password", "_secret", "_key")

# Credentials that show up inside otherwise harmless strings.
_BEARER_RE = re.compile(r"(?i)\bbearer\s+[\w\-.~+/]+=*")
_JWT_RE = re.compile(r"\beyJ[\w-]+\.[\w-]+\.[\w-]+")


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return lowered in _SENSITIVE_KEYS or lowered.endswith(_SENSITIVE_SUFFIXES)


def _scrub_text(text: str, max_string: int) -> str:
    text = _BEARER_RE.sub(f"Bearer {_REDACTED}", text)
    text = _JWT_RE.sub(_REDACTED, text)
    if len(text) > max_string:
        return f"{text[:max_string]}…<truncated>"
    return text


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a redacted copy of *value* suitable for debug logs.

    Mapping keys that name a credential are masked, bearer tokens and JWTs
    embedded in strings are masked, and long strings are truncated.
    """
    if _depth > 20:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return _scrub_text(value, max_string)
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")

    if isinstance(value, Mapping):
        return {
            str(key): _REDACTED
            if _is_sensitive_key(str(key))
            else redact_for_log(item, max_string=max_string, _depth=_depth + 1)
            for key, item in value.items()
        }
    if isinstance(value, Sequence):
        return [redact_for_log(item, max_string=max_string, _depth=_depth + 1) for item in value]
    return repr(value)
