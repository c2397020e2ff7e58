# property_import/adapters/clients/completion.py
from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from openai import AsyncOpenAI

from ...config import Settings, settings
from ...errors import ModelCallError
from .resilience import MinIntervalLimiter, RetryPolicy, Sleep, retry_async

log = logging.getLogger(__name__)


class CompletionService(Protocol):
    async def complete(self, prompt: str, *, temperature: float = 0.1, max_tokens: int = 100) -> str:
        raise NotImplementedError


class OpenAICompletionService:
    """
    Plain text-in/text-out over chat completions.
    SDK-level retries are off: RateLimitedCompletion owns the retry policy.
    """

    def __init__(self, *, api_key: str, model: str, timeout_s: float):
        self.model = model
        self._client = AsyncOpenAI(api_key=api_key, timeout=timeout_s, max_retries=0)

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "OpenAICompletionService":
        if not s.OPENAI_API_KEY:
            raise RuntimeError("OPENAI_API_KEY is not set")
        return cls(api_key=s.OPENAI_API_KEY, model=s.OPENAI_MODEL, timeout_s=s.MODEL_TIMEOUT_S)

    async def complete(self, prompt: str, *, temperature: float = 0.1, max_tokens: int = 100) -> str:
        resp = await self._client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return (resp.choices[0].message.content or "").strip()


def _is_retryable(e: BaseException) -> bool:
    # every failure gets the second attempt; the parse step runs after and is never retried
    return True


class RateLimitedCompletion:
    """
    Shared gateway for every model-assisted call in a run.

    One limiter instance is shared by the normalizer and the geocoder, so the
    minimum gap holds no matter which component issues the call.
    """

    def __init__(
        self,
        inner: CompletionService,
        limiter: MinIntervalLimiter,
        *,
        policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.inner = inner
        self.limiter = limiter
        self.policy = policy or RetryPolicy(attempts=2, base_delay_s=1.0, linear=True)
        self._sleep = sleep

    @classmethod
    def from_settings(cls, inner: CompletionService, s: Settings = settings) -> "RateLimitedCompletion":
        return cls(
            inner,
            MinIntervalLimiter(s.MODEL_MIN_GAP_S),
            policy=RetryPolicy(attempts=s.MODEL_MAX_ATTEMPTS, base_delay_s=s.MODEL_RETRY_DELAY_S, linear=True),
        )

    async def call(self, prompt: str, *, context: str, temperature: float = 0.1, max_tokens: int = 100) -> str:
        """Rate-limited, retried. Raises ModelCallError once attempts are exhausted."""

        async def _once() -> str:
            await self.limiter.wait()
            return await self.inner.complete(prompt, temperature=temperature, max_tokens=max_tokens)

        try:
            return await retry_async(
                _once,
                policy=self.policy,
                is_retryable=_is_retryable,
                context=f"completion call for {context}",
                sleep=self._sleep,
            )
        except Exception as e:
            raise ModelCallError(context, e) from e

    async def call_once(self, prompt: str, *, context: str, temperature: float = 0.1, max_tokens: int = 100) -> str:
        """Rate-limited single attempt (geocoding falls back instead of retrying)."""
        await self.limiter.wait()
        try:
            return await self.inner.complete(prompt, temperature=temperature, max_tokens=max_tokens)
        except Exception as e:
            raise ModelCallError(context, e) from e
