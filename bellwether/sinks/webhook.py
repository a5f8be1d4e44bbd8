"""Outbound webhook calls over httpx."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from bellwether.sinks.base import ActionError

logger = structlog.get_logger(__name__)


class WebhookClient:
    """POSTs JSON payloads; any transport error or non-2xx is an ActionError."""

    def __init__(self, timeout_secs: float = 10.0) -> None:
        self._timeout = timeout_secs
        self._http: httpx.AsyncClient | None = None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        return self._http

    async def post(self, url: str, payload: dict[str, Any]) -> int:
        try:
            resp = await self._client().post(url, json=payload)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ActionError(
                f"webhook {url} returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ActionError(f"webhook {url} failed: {exc}") from exc
        logger.debug("webhook_sent", url=url, status=resp.status_code)
        return resp.status_code

    async def close(self) -> None:
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
        self._http = None
