"""Notification webhook client with exponential backoff retry logic"""

import asyncio
import logging
from typing import Any, Dict

import httpx

from microloan_gateway.config import settings
from microloan_gateway.infrastructure.observability.metrics import (
    notification_failure_counter,
    notification_latency_histogram,
)

logger = logging.getLogger(__name__)


class NotificationClient:
    """Fire-and-forget delivery of email / activity-log events to the notification service"""

    def __init__(self, webhook_url: str | None = None):
        self.webhook_url = webhook_url or settings.notification_webhook_url
        self.timeout = settings.http_timeout_seconds
        self.max_retries = settings.webhook_max_retries
        self.backoff_base = settings.webhook_backoff_base

    async def send_event(self, event: str, payload: Dict[str, Any]) -> bool:
        """
        Deliver one event, retrying transient failures.

        Retry strategy:
        - Exponential backoff: 1s, 2s, 4s, 8s (base * 2^attempt)
        - Retries on HTTP errors and network failures
        - Never raises: delivery failure is logged and counted, the financial
          state that triggered the event is already committed

        Returns: True when the webhook accepted the event
        """
        if not self.webhook_url:
            return False

        body = {"event": event, **payload}
        attempt = 0
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            while attempt < self.max_retries:
                try:
                    with notification_latency_histogram.time():
                        response = await client.post(self.webhook_url, json=body)
                        response.raise_for_status()
                        return True

                except (httpx.HTTPStatusError, httpx.RequestError) as e:
                    attempt += 1
                    notification_failure_counter.inc()

                    if attempt >= self.max_retries:
                        logger.warning(
                            "Notification delivery abandoned",
                            extra={"event": event, "attempts": attempt, "error": str(e)},
                        )
                        return False

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)
        return False
