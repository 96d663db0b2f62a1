"""HTTP liveness probing."""

from __future__ import annotations

import httpx

from shipline.observability.logging import get_logger

log = get_logger(__name__)

_DEFAULT_TIMEOUT = 5.0


class HttpLivenessProber:
    """GET the endpoint; any response below 400 counts as reachable.

    Transport errors and error statuses both count as unreachable, so the
    caller's retry loop decides what happens next.
    """

    def __init__(
        self,
        timeout: float = _DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    async def probe(self, url: str) -> bool:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                response = await client.get(url)
        except httpx.TimeoutException:
            log.info("probe_timeout", url=url, timeout=self._timeout)
            return False
        except httpx.RequestError as e:
            log.info("probe_unreachable", url=url, error=str(e))
            return False

        reachable = response.status_code < 400
        log.info("probe_response", url=url, status=response.status_code, reachable=reachable)
        return reachable
