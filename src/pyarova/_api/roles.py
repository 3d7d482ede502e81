"""Role check RPC (authorization boundary)."""

from __future__ import annotations

import logging

from pyarova._transport import Transport
from pyarova.exceptions import ArovaError

_logger = logging.getLogger(__name__)


async def has_role(transport: Transport, user_id: str, role: str) -> bool:
    """Ask the backend whether *user_id* holds *role*.

    Raises
    ------
    ArovaTransportError
        On network failure.
    """
    decoded = await transport.request_json(
        "POST",
        "/rest/v1/rpc/has_role",
        json_body={"_user_id": user_id, "_role": role},
    )
    return bool(decoded)


async def check_role(transport: Transport, user_id: str | None, role: str) -> bool:
    """Guard helper: ``True`` only when the check succeeds and grants *role*.

    Errors are logged and treated as a denial.
    """
    if not user_id:
        return False
    try:
        return await has_role(transport, user_id, role)
    except ArovaError:
        _logger.warning("Role check for %s failed", role, exc_info=True)
        return False
