"""Discord channel client used to reach the decision oracle."""

from __future__ import annotations

import time
from typing import Any, Protocol

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from survival_bot.config import Settings
from survival_bot.errors import OracleError
from survival_bot.oracle.polling import poll_until
from survival_bot.utils.logging import get_logger, log_oracle_call

_DISCORD_API = "https://discord.com/api/v10"
_POLL_PAGE_SIZE = 10


class Oracle(Protocol):
    """Chat-style request/poll decision source."""

    async def send(self, prompt: str) -> str: ...

    async def poll_since(self, message_id: str) -> str | None: ...

    async def ask(self, prompt: str) -> str | None: ...


class _TransientOracleError(OracleError):
    """Transport failure worth retrying."""


class DiscordOracleClient:
    """Posts prompts to a channel and waits for the oracle user's reply."""

    def __init__(self, settings: Settings, http: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._logger = get_logger("survival_bot.oracle.discord_client")
        self._http = http or httpx.AsyncClient(
            base_url=_DISCORD_API,
            timeout=settings.oracle_request_timeout,
        )
        self._owns_http = http is None

    async def ask(self, prompt: str) -> str | None:
        """Send a prompt and wait (bounded) for the oracle's answer."""
        started = time.perf_counter()
        try:
            message_id = await self.send(prompt)
        except OracleError as exc:
            log_oracle_call(
                self._logger,
                channel_id=self._settings.discord_channel_id,
                success=False,
                latency_ms=(time.perf_counter() - started) * 1000,
                reason=str(exc),
            )
            raise

        reply = await self.poll_since(message_id)
        log_oracle_call(
            self._logger,
            channel_id=self._settings.discord_channel_id,
            success=reply is not None,
            latency_ms=(time.perf_counter() - started) * 1000,
            reason=None if reply is not None else "timeout",
        )
        return reply

    async def send(self, prompt: str) -> str:
        """Post the prompt and return the created message id."""
        if not self._settings.discord_bot_token:
            raise OracleError("missing_discord_bot_token")
        if not self._settings.discord_channel_id:
            raise OracleError("missing_discord_channel_id")
        try:
            payload = await self._post_message(prompt)
        except _TransientOracleError as exc:
            raise OracleError(f"discord_send_failed: {exc}") from exc

        message_id = payload.get("id")
        if not message_id:
            raise OracleError("discord_send_missing_message_id")
        self._logger.info("prompt_sent", message_id=message_id, prompt_len=len(prompt))
        return str(message_id)

    async def poll_since(self, message_id: str) -> str | None:
        """Wait for a reply from the oracle user posted after ``message_id``."""

        async def _probe(attempt: int) -> str | None:
            reply = await self._find_reply(message_id, attempt)
            if reply is None and attempt % 10 == 0:
                self._logger.info("oracle_still_waiting", attempt=attempt)
            return reply

        reply = await poll_until(
            _probe,
            interval_sec=self._settings.oracle_poll_interval_sec,
            max_attempts=self._settings.oracle_poll_max_attempts,
        )
        if reply is None:
            self._logger.warning(
                "oracle_timeout",
                waited_sec=self._settings.oracle_poll_interval_sec
                * self._settings.oracle_poll_max_attempts,
            )
        return reply

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    @retry(
        retry=retry_if_exception_type(_TransientOracleError),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _post_message(self, content: str) -> dict[str, Any]:
        try:
            response = await self._http.post(
                f"/channels/{self._settings.discord_channel_id}/messages",
                headers=self._headers(),
                json={"content": content},
            )
        except httpx.HTTPError as exc:
            raise _TransientOracleError(str(exc)) from exc

        if response.status_code >= 500 or response.status_code == 429:
            raise _TransientOracleError(f"status={response.status_code}")
        if not response.is_success:
            raise OracleError(
                f"discord_send_rejected ({response.status_code}): {response.text[:300]}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise OracleError("discord_send_invalid_json") from exc
        if not isinstance(payload, dict):
            raise OracleError("discord_send_invalid_payload")
        return payload

    async def _find_reply(self, message_id: str, attempt: int) -> str | None:
        try:
            response = await self._http.get(
                f"/channels/{self._settings.discord_channel_id}/messages",
                headers=self._headers(),
                params={"after": message_id, "limit": _POLL_PAGE_SIZE},
            )
        except httpx.HTTPError as exc:
            self._logger.warning("oracle_poll_failed", attempt=attempt, error=str(exc))
            return None

        if not response.is_success:
            self._logger.warning(
                "oracle_poll_non_success",
                attempt=attempt,
                status=response.status_code,
            )
            return None

        try:
            messages = response.json()
        except ValueError as exc:
            self._logger.warning("oracle_poll_invalid_json", attempt=attempt, error=str(exc))
            return None

        return _extract_oracle_reply(messages, self._settings.oracle_user_id)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bot {self._settings.discord_bot_token}",
            "Content-Type": "application/json",
        }


def _extract_oracle_reply(messages: Any, oracle_user_id: str) -> str | None:
    """Return the content of the first message authored by the oracle."""
    if not isinstance(messages, list):
        return None
    for message in messages:
        if not isinstance(message, dict):
            continue
        author = message.get("author")
        if not isinstance(author, dict) or str(author.get("id")) != oracle_user_id:
            continue
        content = message.get("content")
        if isinstance(content, str) and content.strip():
            return content
    return None
