"""Chat webhook notifications for poll results."""

from __future__ import annotations

import logging
import sys
from typing import Optional

import httpx

from ..config import HTTP_TIMEOUT

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

# Discord rejects message content longer than this
MAX_CONTENT_LENGTH = 2000


class WebhookNotifier:
    """Posts plain-text messages to a Discord-style webhook.

    Delivery is fire-and-forget: failures are logged and reported through
    the return value, never raised.
    """

    def __init__(self, webhook_url: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._webhook_url = webhook_url
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self._webhook_url)

    async def send(self, text: str) -> bool:
        if not self.enabled:
            logger.info("No webhook configured, dropping notification.")
            return False

        if len(text) > MAX_CONTENT_LENGTH:
            text = text[: MAX_CONTENT_LENGTH - 4] + "\n..."

        try:
            async with httpx.AsyncClient(timeout=HTTP_TIMEOUT, transport=self._transport) as client:
                resp = await client.post(self._webhook_url, json={"content": text})
                resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to send notification: {e}")
            return False

        logger.info(f"Notification sent ({len(text)} chars)")
        return True
