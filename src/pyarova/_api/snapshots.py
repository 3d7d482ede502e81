"""Live session snapshot endpoint (remote fetch contract)."""

from __future__ import annotations

from pydantic import ValidationError

from pyarova._constants import LIVE_SESSION_TABLE
from pyarova._transport import Transport
from pyarova.exceptions import ArovaTransportError
from pyarova.models.live_session import LiveSession
from pyarova.state.events import EntityKind

# Ask PostgREST for a single object instead of an array.
_SINGLE_OBJECT_HEADERS = {"accept": "application/vnd.pgrst.object+json"}


async def fetch_live_session(transport: Transport) -> LiveSession:
    """Fetch and parse the singleton live session row.

    Raises
    ------
    ArovaTransportError
        On network failure or when the response is not a valid row.
    """
    endpoint = f"/rest/v1/{LIVE_SESSION_TABLE}"
    decoded = await transport.request_json(
        "GET",
        endpoint,
        params={"select": "*"},
        headers=_SINGLE_OBJECT_HEADERS,
    )
    if isinstance(decoded, list):
        if len(decoded) != 1:
            raise ArovaTransportError(f"Expected one row from {endpoint}, got {len(decoded)}", endpoint=endpoint)
        decoded = decoded[0]
    if not isinstance(decoded, dict):
        raise ArovaTransportError(f"Unexpected payload from {endpoint}", endpoint=endpoint)
    try:
        return LiveSession.model_validate(decoded)
    except ValidationError as exc:
        raise ArovaTransportError(f"Unparseable row from {endpoint}", endpoint=endpoint) from exc


class RestSnapshotFetcher:
    """:class:`~pyarova.ingestion.poll.SnapshotFetcher` backed by the REST API."""

    def __init__(self, transport: Transport) -> None:
        self._transport = transport

    async def fetch_snapshot(self, kind: EntityKind) -> LiveSession:
        if kind != EntityKind.LIVE_SESSION:
            raise ValueError(f"{kind} has no snapshot endpoint")
        return await fetch_live_session(self._transport)
