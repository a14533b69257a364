"""Expo push API client."""

import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from caresync.utils.config import get_settings
from caresync.utils.error_handling import NetworkError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 100
_EXPO_TOKEN = re.compile(r"^(ExponentPushToken|ExpoPushToken)\[[^\]]+\]$")


def is_expo_push_token(token: Optional[str]) -> bool:
    return bool(token) and bool(_EXPO_TOKEN.match(token))


def build_message(token: str, title: str, body: str, data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "to": token,
        "sound": "default",
        "title": title,
        "body": body,
        "data": data,
        "priority": data.get("priority", "high"),
        "channelId": data.get("channelId", "alerts"),
    }


class ExpoPushClient:
    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, url: Optional[str] = None):
        settings = get_settings()
        self._client = http_client or httpx.AsyncClient(timeout=settings.request_timeout_seconds)
        self.url = url or settings.expo_push_url

    async def send(self, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Send messages in chunks of 100 and return the push tickets.

        Raises:
            NetworkError: The push service could not be reached or rejected a chunk
        """
        tickets: List[Dict[str, Any]] = []
        for i in range(0, len(messages), CHUNK_SIZE):
            chunk = messages[i:i + CHUNK_SIZE]
            try:
                response = await self._client.post(
                    self.url, json=chunk, headers={"Accept": "application/json", "Content-Type": "application/json"}
                )
            except httpx.HTTPError as e:
                raise NetworkError(f"Push delivery failed: {e}", "expo") from e
            if response.status_code >= 400:
                raise NetworkError(f"Push service returned HTTP {response.status_code}", "expo", response.status_code)
            chunk_tickets = response.json().get("data") or []
            for ticket in chunk_tickets:
                if ticket.get("status") == "error":
                    logger.warning(
                        "Push ticket error",
                        extra={"log_type": "push_ticket_error", "error": ticket.get("message"), "details": ticket.get("details")},
                    )
            tickets.extend(chunk_tickets)
            logger.info(f"Sent {len(chunk)} push notifications", extra={"log_type": "push_sent", "count": len(chunk)})
        return tickets
