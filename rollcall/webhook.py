"""HTTP client forwarding check-in outcomes to an external listener."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from .feedback import CheckInOutcome

logger = logging.getLogger(__name__)


class WebhookError(RuntimeError):
    """Raised when the webhook endpoint rejects an outcome."""

    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(f"Webhook {url} answered {status_code}")
        self.url = url
        self.status_code = status_code


class WebhookNotifier:
    """Async wrapper posting each outcome as JSON to a configured URL."""

    def __init__(
        self,
        url: str,
        *,
        station_id: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self.station_id = station_id
        self._client = httpx.AsyncClient(
            headers={"Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __call__(self, outcome: CheckInOutcome) -> None:
        await self.send(outcome)

    async def send(self, outcome: CheckInOutcome) -> None:
        body = outcome.to_dict()
        if self.station_id:
            body["station_id"] = self.station_id
        response = await self._client.post(self.url, json=body)
        if response.status_code >= 400:
            raise WebhookError(self.url, response.status_code)
        logger.debug("Forwarded %s outcome to %s", outcome.kind, self.url)


__all__ = ["WebhookNotifier", "WebhookError"]
