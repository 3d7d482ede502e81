"""Custom exception hierarchy for pyarova."""

from __future__ import annotations


class ArovaError(Exception):
    """Base exception for all pyarova errors."""


class ArovaConfigError(ArovaError):
    """Invalid or missing configuration."""


class ArovaTransportError(ArovaError):
    """Backend unavailable or unusable response (network, non-2xx, invalid JSON, parse failure)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


TransportError = ArovaTransportError


class MalformedPayloadError(ArovaError):
    """A change payload is structurally invalid for its entity kind."""


class SubscriptionLostError(ArovaError):
    """The push channel for a topic dropped.

    Raised by change feeds through the subscription error callback.  The
    subscription manager reacts by resubscribing with capped backoff.
    """

    def __init__(self, message: str, *, topic: str = "") -> None:
        self.topic = topic
        super().__init__(message)
