"""HTTP transport for the PostgREST-style backend."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from pyarova._constants import USER_AGENT
from pyarova._redact import redact_for_log
from pyarova.config import ArovaConfig
from pyarova.exceptions import ArovaTransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by endpoint modules.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`RestTransport`) concrete.
    """

    async def request_json(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, str] | None = None,
        json_body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any: ...


class RestTransport:
    """HTTP transport adding the API key and bearer headers to each request."""

    def __init__(self, config: ArovaConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    def _base_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        if self._config.api_key:
            headers["apikey"] = self._config.api_key
        if self._config.bearer_token:
            headers["authorization"] = f"Bearer {self._config.bearer_token}"
        return headers

    async def request_json(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, str] | None = None,
        json_body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Raises
        ------
        ArovaTransportError
            On network failure, timeout, non-2xx status, or invalid JSON.
        """
        url = f"{self._config.base_url.rstrip('/')}{endpoint}"
        request_headers = self._base_headers()
        if headers:
            request_headers.update(headers)

        _logger.debug("%s %s headers=%s", method, url, redact_for_log(request_headers))

        try:
            async with self._http.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=request_headers,
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                if not 200 <= resp.status < 300:
                    raise ArovaTransportError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except ArovaTransportError:
            raise
        except TimeoutError as exc:
            raise ArovaTransportError(f"Request to {endpoint} timed out", endpoint=endpoint) from exc
        except aiohttp.ClientError as exc:
            raise ArovaTransportError(
                f"Request to {endpoint} failed: {exc}",
                endpoint=endpoint,
            ) from exc

        if not text.strip():
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise ArovaTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                endpoint=endpoint,
            ) from exc
