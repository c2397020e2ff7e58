# property_import/adapters/clients/feed.py
from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from ...config import Settings, settings
from ...errors import FeedUnavailableError
from .resilience import RetryPolicy, Sleep, retry_async

log = logging.getLogger(__name__)


class FeedClient:
    """
    Pulls the listing feed: a JSON array of listing objects, no auth.
    Always fetches fresh; nothing is cached between runs.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout_s: float = 30.0,
        policy: RetryPolicy | None = None,
        user_agent: str = "Imotko-Property-Import/1.0",
        http_client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.url = url
        self.timeout_s = timeout_s
        self.policy = policy or RetryPolicy(attempts=3, base_delay_s=1.0)
        self.user_agent = user_agent
        self._http = http_client
        self._sleep = sleep

    @classmethod
    def from_settings(cls, s: Settings = settings, http_client: httpx.AsyncClient | None = None) -> "FeedClient":
        return cls(
            s.IMPORT_DATA_SOURCE_URL,
            timeout_s=s.FEED_TIMEOUT_S,
            policy=RetryPolicy(attempts=s.FEED_MAX_ATTEMPTS, base_delay_s=1.0),
            user_agent=s.FEED_USER_AGENT,
            http_client=http_client,
        )

    async def _get_once(self) -> list[Any]:
        headers = {"User-Agent": self.user_agent, "Accept": "application/json"}
        if self._http is not None:
            r = await self._http.get(self.url, headers=headers, timeout=self.timeout_s)
        else:
            async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                r = await client.get(self.url, headers=headers)

        r.raise_for_status()
        data = r.json()
        if not isinstance(data, list):
            raise ValueError(f"Invalid response format: expected array, got {type(data).__name__}")
        return data

    async def fetch(self) -> list[Any]:
        log.info("Fetching listing feed from %s", self.url)
        try:
            data = await retry_async(
                self._get_once,
                policy=self.policy,
                is_retryable=lambda e: True,
                context="feed fetch",
                sleep=self._sleep,
            )
        except Exception as e:
            raise FeedUnavailableError(
                f"Failed to fetch properties after {self.policy.attempts} attempts: {e}"
            ) from e

        log.info("Fetched %d feed entries", len(data))
        return data
