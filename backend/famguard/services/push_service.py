"""Push notification delivery through the Expo push HTTP API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from famguard.core.config import settings

logger = logging.getLogger(__name__)

# Expo accepts at most 100 messages per request
MAX_MESSAGES_PER_REQUEST = 100


class PushDeliveryError(Exception):
    """Raised when the push provider cannot be reached or rejects the request."""


@dataclass
class PushResult:
    sent: int = 0
    failed: int = 0
    total: int = 0
    message: str = ""


class ExpoPushClient:
    def __init__(
        self,
        api_url: str = settings.push_api_url,
        access_token: str = settings.push_access_token,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_url = api_url
        self._access_token = access_token
        self._client = client

    async def send(self, tokens: list[str], title: str, body: str, data: dict[str, Any]) -> PushResult:
        """Send one notification to every token. Per-ticket errors are counted, not raised."""
        if not tokens:
            return PushResult(message="No push tokens found")

        result = PushResult(total=len(tokens))
        messages = [
            {
                "to": token,
                "title": title,
                "body": body,
                "data": data,
                "sound": "default",
                "priority": "high",
                "channelId": "default",
            }
            for token in tokens
        ]
        for start in range(0, len(messages), MAX_MESSAGES_PER_REQUEST):
            chunk = messages[start : start + MAX_MESSAGES_PER_REQUEST]
            tickets = await self._post(chunk)
            for ticket in tickets:
                if ticket.get("status") == "ok":
                    result.sent += 1
                else:
                    result.failed += 1
                    logger.warning("Push ticket error: %s", ticket.get("message") or ticket)
            # Missing tickets count as failures
            result.failed += max(0, len(chunk) - len(tickets))

        if result.sent == 0:
            result.message = "No notifications were delivered"
        return result

    async def _post(self, chunk: list[dict[str, Any]]) -> list[dict[str, Any]]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        try:
            if self._client is not None:
                response = await self._client.post(self._api_url, json=chunk, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=15.0) as client:
                    response = await client.post(self._api_url, json=chunk, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise PushDeliveryError(f"Push request failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise PushDeliveryError("Push provider returned invalid JSON") from exc

        tickets = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(tickets, list):
            raise PushDeliveryError("Push response missing 'data' list")
        return tickets
