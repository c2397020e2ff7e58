# property_import/service_layer/images.py
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from io import BytesIO

import httpx
from PIL import Image, UnidentifiedImageError

from ..adapters.clients.object_storage import CONTENT_TYPES, ObjectStorage, build_storage_key, storage_extension
from ..adapters.clients.resilience import RetryPolicy, Sleep, retry_async
from ..config import Settings, settings
from ..domain.types import ImageBatchResult, ImageFailure, PhotoAsset, PhotoVariant
from ..errors import ImageStageError, PermanentImageError, TransientImageError

log = logging.getLogger(__name__)

# name -> max width in px (height follows aspect ratio, never upscaled)
SIZE_VARIANTS: dict[str, int] = {"small": 300, "medium": 650, "large": 900}

# Pillow format name -> our format family
SUPPORTED_FORMATS = {"JPEG": "jpeg", "PNG": "png", "WEBP": "webp"}

PNG_COMPRESS_LEVEL = 6

DOWNLOAD_USER_AGENT = "Mozilla/5.0 (compatible; Imotko-Property-Import/1.0)"


@dataclass(frozen=True)
class TranscodedImage:
    size_tag: str
    data: bytes
    fmt: str  # jpeg|png|webp


def _is_transient(e: BaseException) -> bool:
    return isinstance(e, TransientImageError)


def _resize_to_width(img: Image.Image, width: int) -> Image.Image:
    w, h = img.size
    if w <= width:
        return img.copy()
    height = max(1, round(h * width / w))
    return img.resize((width, height), Image.Resampling.LANCZOS)


def transcode_image(url: str, data: bytes, *, quality: int = 60) -> list[TranscodedImage]:
    """
    One source image -> small/medium/large in the same format family.
    CPU bound; the pipeline runs it in a worker thread.
    """
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError, SyntaxError) as e:
        raise PermanentImageError(url, "transcode", f"unreadable image: {e}") from e

    fmt = SUPPORTED_FORMATS.get(img.format or "")
    if fmt is None:
        raise PermanentImageError(url, "transcode", f"Unsupported image format: {img.format or 'unknown'}")

    if fmt == "jpeg" and img.mode not in ("RGB", "L"):
        img = img.convert("RGB")

    out: list[TranscodedImage] = []
    for size_tag, width in SIZE_VARIANTS.items():
        resized = _resize_to_width(img, width)
        buf = BytesIO()
        try:
            if fmt == "png":
                resized.save(buf, format="PNG", compress_level=PNG_COMPRESS_LEVEL)
            elif fmt == "jpeg":
                resized.save(buf, format="JPEG", quality=quality)
            else:
                resized.save(buf, format="WEBP", quality=quality)
        except (OSError, ValueError) as e:
            raise PermanentImageError(url, "transcode", f"encode failed ({size_tag}): {e}") from e
        out.append(TranscodedImage(size_tag=size_tag, data=buf.getvalue(), fmt=fmt))

    return out


class ImagePipeline:
    """
    download -> transcode -> upload, per image URL.

    The semaphore lives on the instance and is shared by every listing in the run,
    so at most `max_concurrent` images are in flight process-wide. Inside one slot the
    work is sequential, which keeps outbound network operations under the same cap.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        storage: ObjectStorage,
        *,
        max_concurrent: int = 3,
        download_timeout_s: float = 15.0,
        policy: RetryPolicy | None = None,
        quality: int = 60,
        prefix: str = "properties",
        sleep: Sleep = asyncio.sleep,
    ):
        self.http = http_client
        self.storage = storage
        self.max_concurrent = max_concurrent
        self.download_timeout_s = download_timeout_s
        self.policy = policy or RetryPolicy(attempts=3, base_delay_s=1.0)
        self.quality = quality
        self.prefix = prefix
        self._sleep = sleep
        self._slots = asyncio.Semaphore(max_concurrent)

    @classmethod
    def from_settings(
        cls,
        http_client: httpx.AsyncClient,
        storage: ObjectStorage,
        s: Settings = settings,
    ) -> "ImagePipeline":
        return cls(
            http_client,
            storage,
            max_concurrent=s.IMAGE_MAX_CONCURRENT,
            download_timeout_s=s.IMAGE_DOWNLOAD_TIMEOUT_S,
            policy=RetryPolicy(attempts=s.IMAGE_MAX_ATTEMPTS, base_delay_s=s.IMAGE_BACKOFF_BASE_S),
            quality=s.IMAGE_QUALITY,
            prefix=s.STORAGE_PREFIX,
        )

    # -------------------------
    # Stages
    # -------------------------

    async def _download_once(self, url: str) -> bytes:
        try:
            r = await self.http.get(
                url,
                headers={"User-Agent": DOWNLOAD_USER_AGENT},
                timeout=self.download_timeout_s,
                follow_redirects=True,
            )
        except (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError) as e:
            raise TransientImageError(url, "download", f"{type(e).__name__}: {e}") from e
        except (httpx.RequestError, httpx.InvalidURL) as e:
            # unsupported scheme or malformed URL: retrying cannot help
            raise PermanentImageError(url, "download", f"{type(e).__name__}: {e}") from e

        if r.status_code in (403, 404):
            raise PermanentImageError(url, "download", f"HTTP {r.status_code}")
        if r.status_code >= 500 or r.status_code == 429:
            raise TransientImageError(url, "download", f"HTTP {r.status_code}")
        if r.status_code >= 400:
            raise PermanentImageError(url, "download", f"HTTP {r.status_code}")

        content_type = r.headers.get("content-type")
        if content_type and not content_type.lower().startswith("image/"):
            raise PermanentImageError(url, "download", f"Invalid content type: {content_type}")

        if not r.content:
            raise PermanentImageError(url, "download", "empty body")
        return r.content

    async def download_image(self, url: str) -> bytes:
        return await retry_async(
            lambda: self._download_once(url),
            policy=self.policy,
            is_retryable=_is_transient,
            context=f"download {url}",
            sleep=self._sleep,
        )

    async def upload_variant(self, variant: TranscodedImage) -> PhotoVariant:
        ext = storage_extension(variant.fmt)
        key = build_storage_key(variant.size_tag, ext, prefix=self.prefix)
        content_type = CONTENT_TYPES.get(ext, "image/jpeg")

        await retry_async(
            lambda: self.storage.upload(key, variant.data, content_type),
            policy=self.policy,
            is_retryable=_is_transient,
            context=f"upload {key}",
            sleep=self._sleep,
        )
        return PhotoVariant(size_tag=variant.size_tag, storage_key=key, public_url=self.storage.public_url(key))

    async def process_one(self, url: str) -> PhotoAsset:
        """Raises ImageStageError (stage set) for any failure of this one image."""
        stage = "download"
        try:
            async with self._slots:
                data = await self.download_image(url)
                stage = "transcode"
                variants = await asyncio.to_thread(transcode_image, url, data, quality=self.quality)
                stage = "upload"
                uploaded = [await self.upload_variant(v) for v in variants]
        except ImageStageError:
            raise
        except Exception as e:
            raise PermanentImageError(url, stage, f"{type(e).__name__}: {e}") from e

        return PhotoAsset(id=str(uuid.uuid4()), variants=tuple(uploaded))

    # -------------------------
    # Batch
    # -------------------------

    async def _process_safe(self, url: str) -> PhotoAsset | ImageFailure:
        try:
            return await self.process_one(url)
        except ImageStageError as e:
            return ImageFailure(url=url, stage=e.stage, reason=e.reason)

    async def process_all(self, urls: list[str] | tuple[str, ...]) -> ImageBatchResult:
        """
        Never raises for a bad image: failures are collected next to the photos,
        in the same order as the input URLs.
        """
        result = ImageBatchResult()
        if not urls:
            return result

        log.info("Processing %d images (max %d concurrent)", len(urls), self.max_concurrent)
        outcomes = await asyncio.gather(*(self._process_safe(u) for u in urls))

        for o in outcomes:
            if isinstance(o, ImageFailure):
                result.failures.append(o)
            else:
                result.photos.append(o)

        log.info("Images processed: %d/%d successful", len(result.photos), len(urls))
        if result.failures:
            log.warning(
                "Image failures: %s",
                [{"url": f.url, "stage": f.stage, "reason": f.reason} for f in result.failures],
            )
        return result
