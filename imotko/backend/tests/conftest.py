# tests/conftest.py
from __future__ import annotations

from io import BytesIO
from typing import Callable

import pytest
from PIL import Image
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from property_import.adapters.clients.completion import RateLimitedCompletion
from property_import.adapters.clients.resilience import MinIntervalLimiter, RetryPolicy
from property_import.config import Settings
from property_import.models import Base


async def no_sleep(_: float) -> None:
    return None


class ScriptedCompletion:
    """
    Stand-in for the completion service: `responder(prompt)` returns the reply text,
    or an exception instance to raise.
    """

    def __init__(self, responder: Callable[[str], str | BaseException]):
        self.responder = responder
        self.prompts: list[str] = []

    async def complete(self, prompt: str, *, temperature: float = 0.1, max_tokens: int = 100) -> str:
        self.prompts.append(prompt)
        out = self.responder(prompt)
        if isinstance(out, BaseException):
            raise out
        return out


def studio_responder(prompt: str) -> str:
    """Happy-path replies for the 'Studio flat' listing."""
    if "geocoding assistant" in prompt:
        return "latitude: 41.9965\nlongitude: 21.4314"
    if "Classify the following property into ONE" in prompt:
        return "type: flat\nconfidence: 0.95"
    if "listing title" in prompt:
        return '{"mk": "Студио стан", "en": "Studio flat"}'
    if "listing description" in prompt:
        return '{"mk": "Светол стан", "en": "Bright flat"}'
    if "Extract property attributes" in prompt:
        return '{"hasBalcony": true, "floor": 3}'
    if "reference number" in prompt:
        return "null"
    if "numeric value" in prompt:
        return "null"
    if "listing type text" in prompt:
        return "for_sale"
    if "mapping a location name" in prompt:
        return "NONE"
    return "null"


def make_completion(responder: Callable[[str], str | BaseException] = studio_responder):
    inner = ScriptedCompletion(responder)
    gateway = RateLimitedCompletion(
        inner,
        MinIntervalLimiter(0),
        policy=RetryPolicy(attempts=2, base_delay_s=0, linear=True),
        sleep=no_sleep,
    )
    return inner, gateway


def image_bytes(fmt: str = "JPEG", size: tuple[int, int] = (1200, 800)) -> bytes:
    mode = "RGBA" if fmt == "PNG" else "RGB"
    img = Image.new(mode, size, (200, 120, 40) if mode == "RGB" else (200, 120, 40, 255))
    buf = BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
async def engine():
    """
    Fresh in-memory DB per test. StaticPool makes all connections share the same
    in-memory database for the lifetime of this engine fixture.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def async_session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=True)


@pytest.fixture
def import_settings() -> Settings:
    return Settings(
        _env_file=None,
        OPENAI_API_KEY="test-key",
        SUPABASE_URL="https://storage.test",
        SUPABASE_SERVICE_ROLE_KEY="service-key",
        IMPORT_DATA_SOURCE_URL="https://feed.test/delta.json",
        IMPORT_SYSTEM_USER_ID="user-1",
        IMPORT_DEFAULT_AGENCY_ID="agency-1",
        IMPORT_BATCH_DELAY_S=0,
        IMPORT_EXTRACT_REFERENCE_CODE=True,
    )
