# property_import/adapters/clients/object_storage.py
from __future__ import annotations

import time
import uuid
from typing import Protocol

import httpx

from ...config import Settings, settings
from ...errors import PermanentImageError, TransientImageError

CONTENT_TYPES: dict[str, str] = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
}


def storage_extension(fmt: str) -> str:
    fmt = fmt.lower()
    return "jpg" if fmt == "jpeg" else fmt


def build_storage_key(size_tag: str, extension: str, *, prefix: str = "properties") -> str:
    """{prefix}/{uuid4}_{epoch_ms}-{size}.{ext}; a fresh key per call."""
    filename = f"{uuid.uuid4()}_{int(time.time() * 1000)}-{size_tag}.{storage_extension(extension)}"
    return f"{prefix.strip('/')}/{filename}" if prefix else filename


class ObjectStorage(Protocol):
    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        raise NotImplementedError

    def public_url(self, key: str) -> str:
        raise NotImplementedError


class SupabaseStorage:
    """
    Supabase Storage over its REST API.

    upload:      POST {url}/storage/v1/object/{bucket}/{key}
    public url:  {url}/storage/v1/object/public/{bucket}/{key}
    """

    def __init__(
        self,
        *,
        base_url: str,
        service_key: str,
        bucket: str,
        http_client: httpx.AsyncClient,
        timeout_s: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self._key = service_key
        self._http = http_client
        self.timeout_s = timeout_s

    @classmethod
    def from_settings(cls, http_client: httpx.AsyncClient, s: Settings = settings) -> "SupabaseStorage":
        if not (s.SUPABASE_URL and s.SUPABASE_SERVICE_ROLE_KEY):
            raise RuntimeError("SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY are not set")
        return cls(
            base_url=s.SUPABASE_URL,
            service_key=s.SUPABASE_SERVICE_ROLE_KEY,
            bucket=s.STORAGE_BUCKET,
            http_client=http_client,
        )

    def _headers(self, content_type: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._key}",
            "apikey": self._key,
            "Content-Type": content_type,
            "cache-control": "max-age=3600",
            "x-upsert": "false",
        }

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        url = f"{self.base_url}/storage/v1/object/{self.bucket}/{key}"
        try:
            r = await self._http.post(url, content=data, headers=self._headers(content_type), timeout=self.timeout_s)
        except (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError) as e:
            raise TransientImageError(key, "upload", f"{type(e).__name__}: {e}") from e
        except httpx.RequestError as e:
            raise PermanentImageError(key, "upload", f"{type(e).__name__}: {e}") from e

        if r.status_code >= 500 or r.status_code == 429:
            raise TransientImageError(key, "upload", f"storage error ({r.status_code})")
        if r.status_code >= 400:
            raise PermanentImageError(key, "upload", f"storage rejected upload ({r.status_code}): {r.text[:200]}")

    def public_url(self, key: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{key}"
