"""Client configuration for pyarova."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Callable
from typing import Any

from pyarova._constants import DEFAULT_FORECAST_TYPE
from pyarova.exceptions import ArovaConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_fields(value: str) -> tuple[str, ...] | None:
    fields = tuple(part.strip() for part in value.split(",") if part.strip())
    return fields or None


@dataclasses.dataclass(frozen=True)
class ArovaConfig:
    """Client configuration.

    Parameters
    ----------
    base_url : str
        Backend base URL (PostgREST-style API lives under ``/rest/v1``).
    api_key : str
        Public API key sent as the ``apikey`` header.
    access_token : str or None
        User access token.  Falls back to ``api_key`` for the bearer header.
    poll_interval : float
        Seconds between live-session snapshot polls.
    forecast_type : str
        Only forecasts of this type are tracked; others are out of scope.
    mqtt_enabled : bool
        Enable the MQTT change feed (push path).  When disabled only the
        poll path runs.
    mqtt_host : str
        Change-feed broker host.
    mqtt_port : int
        Change-feed broker port.
    mqtt_tls : bool
        Use TLS for the broker connection.
    mqtt_username, mqtt_password : str or None
        Broker credentials.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_topic_prefix : str
        Prefix joined with the table name to build broker topics.
    reconnect_initial_delay : float
        First resubscribe delay after a lost subscription.
    reconnect_max_delay : float
        Upper bound of the exponential resubscribe delay.
    max_reconnect_attempts : int
        Give up resubscribing after this many failed attempts.  ``0`` retries forever.
    dedup_capacity : int
        Maximum number of dedup keys kept (oldest evicted first).  ``0`` is unbounded.
    live_session_dedup_fields : tuple of str or None
        Restrict the live-session "did anything change" comparison to these
        fields.  ``None`` compares the full payload.
    request_timeout : float
        Total timeout in seconds for a single REST request.
    """

    base_url: str = "http://localhost:54321"
    api_key: str = ""
    access_token: str | None = None
    poll_interval: float = 30.0
    forecast_type: str = DEFAULT_FORECAST_TYPE
    mqtt_enabled: bool = True
    mqtt_host: str = "localhost"
    mqtt_port: int = 8883
    mqtt_tls: bool = True
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_keepalive: int = 60
    mqtt_topic_prefix: str = "arova/changes"
    reconnect_initial_delay: float = 1.0
    reconnect_max_delay: float = 60.0
    max_reconnect_attempts: int = 0
    dedup_capacity: int = 0
    live_session_dedup_fields: tuple[str, ...] | None = None
    request_timeout: float = 15.0

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            raise ArovaConfigError(f"poll_interval must be positive, got {self.poll_interval}")
        if self.reconnect_initial_delay < 0 or self.reconnect_max_delay < self.reconnect_initial_delay:
            raise ArovaConfigError(
                "reconnect delays must satisfy 0 <= reconnect_initial_delay <= reconnect_max_delay"
            )
        if self.max_reconnect_attempts < 0:
            raise ArovaConfigError("max_reconnect_attempts must be >= 0")
        if self.dedup_capacity < 0:
            raise ArovaConfigError("dedup_capacity must be >= 0")

    @property
    def bearer_token(self) -> str:
        return self.access_token or self.api_key

    @classmethod
    def from_env(cls, **overrides: Any) -> ArovaConfig:
        """Create configuration from ``AROVA_*`` environment variables.

        Explicit keyword arguments override environment values.

        Raises
        ------
        ArovaConfigError
            If a numeric variable cannot be parsed.
        """
        env = os.environ

        _ENV_CONFIG_MAP: dict[str, tuple[str, Callable[[str], Any]]] = {
            "AROVA_BASE_URL": ("base_url", str),
            "AROVA_API_KEY": ("api_key", str),
            "AROVA_ACCESS_TOKEN": ("access_token", str),
            "AROVA_POLL_INTERVAL": ("poll_interval", float),
            "AROVA_FORECAST_TYPE": ("forecast_type", str),
            "AROVA_MQTT_HOST": ("mqtt_host", str),
            "AROVA_MQTT_PORT": ("mqtt_port", int),
            "AROVA_MQTT_USERNAME": ("mqtt_username", str),
            "AROVA_MQTT_PASSWORD": ("mqtt_password", str),
            "AROVA_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
            "AROVA_MQTT_TOPIC_PREFIX": ("mqtt_topic_prefix", str),
            "AROVA_RECONNECT_INITIAL_DELAY": ("reconnect_initial_delay", float),
            "AROVA_RECONNECT_MAX_DELAY": ("reconnect_max_delay", float),
            "AROVA_MAX_RECONNECT_ATTEMPTS": ("max_reconnect_attempts", int),
            "AROVA_DEDUP_CAPACITY": ("dedup_capacity", int),
            "AROVA_LIVE_SESSION_DEDUP_FIELDS": ("live_session_dedup_fields", _env_fields),
            "AROVA_REQUEST_TIMEOUT": ("request_timeout", float),
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, (field_name, parse) in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = parse(val)
            except ValueError as exc:
                raise ArovaConfigError(f"{env_key} is invalid: {val!r}") from exc

        if "mqtt_enabled" not in overrides:
            config_kwargs["mqtt_enabled"] = _env_bool(env.get("AROVA_MQTT_ENABLED"), True)
        if "mqtt_tls" not in overrides:
            config_kwargs["mqtt_tls"] = _env_bool(env.get("AROVA_MQTT_TLS"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
