"""Crypto Fear & Greed index client."""

from __future__ import annotations

from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from survival_bot.config import Settings
from survival_bot.utils.logging import get_logger

NEUTRAL_INDEX = 50


class FearGreedClient:
    """Best-effort sentiment source. Never raises to the caller."""

    def __init__(self, settings: Settings, http: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._logger = get_logger("survival_bot.data.sentiment")
        self._http = http or httpx.AsyncClient(timeout=settings.sentiment_timeout)
        self._owns_http = http is None

    async def fetch_index(self) -> int:
        """Fetch the latest index value, 50 (neutral) on any failure."""
        try:
            payload = await self._request()
            value = _parse_index(payload)
        except Exception as exc:  # noqa: BLE001 - sentiment must never fail the cycle.
            self._logger.warning(
                "fear_greed_fetch_failed",
                error=str(exc),
                fallback=NEUTRAL_INDEX,
            )
            return NEUTRAL_INDEX
        self._logger.info("fear_greed_fetched", value=value)
        return value

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _request(self) -> dict[str, Any]:
        response = await self._http.get(self._settings.fear_greed_url)
        response.raise_for_status()
        return response.json()


def _parse_index(payload: Any) -> int:
    """Read ``data[0].value`` and clamp it to [0, 100]."""
    if not isinstance(payload, dict):
        raise ValueError("fear_greed_payload_not_object")
    data = payload.get("data")
    if not isinstance(data, list) or not data or not isinstance(data[0], dict):
        raise ValueError("fear_greed_payload_missing_data")
    value = int(data[0].get("value"))
    return max(0, min(100, value))
