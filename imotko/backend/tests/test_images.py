import asyncio
from io import BytesIO

import httpx
import pytest
from PIL import Image

from property_import.adapters.clients.object_storage import SupabaseStorage, build_storage_key
from property_import.adapters.clients.resilience import RetryPolicy
from property_import.errors import PermanentImageError
from property_import.service_layer.images import ImagePipeline, transcode_image

from conftest import image_bytes, no_sleep

STORAGE_URL = "https://storage.test"


def _pipeline(handler, **kw) -> tuple[ImagePipeline, httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    storage = SupabaseStorage(base_url=STORAGE_URL, service_key="k", bucket="imotko-prod", http_client=client)
    pipeline = ImagePipeline(
        client,
        storage,
        policy=RetryPolicy(attempts=3, base_delay_s=0),
        sleep=no_sleep,
        **kw,
    )
    return pipeline, client


def _image_response(fmt: str = "JPEG") -> httpx.Response:
    ctype = {"JPEG": "image/jpeg", "PNG": "image/png", "WEBP": "image/webp"}[fmt]
    return httpx.Response(200, content=image_bytes(fmt), headers={"content-type": ctype})


# -------------------------
# transcode
# -------------------------

def test_transcode_produces_three_widths_in_same_format():
    out = transcode_image("u", image_bytes("JPEG", (1200, 800)), quality=60)

    assert [v.size_tag for v in out] == ["small", "medium", "large"]
    widths = [Image.open(BytesIO(v.data)).size for v in out]
    assert widths == [(300, 200), (650, 433), (900, 600)]
    assert {v.fmt for v in out} == {"jpeg"}


def test_transcode_keeps_png_and_never_upscales():
    out = transcode_image("u", image_bytes("PNG", (500, 250)))
    sizes = [Image.open(BytesIO(v.data)).size for v in out]
    assert sizes == [(300, 150), (500, 250), (500, 250)]
    assert {v.fmt for v in out} == {"png"}


def test_transcode_rejects_unsupported_and_garbage():
    with pytest.raises(PermanentImageError) as ei:
        transcode_image("u", image_bytes("GIF", (100, 100)))
    assert ei.value.stage == "transcode"

    with pytest.raises(PermanentImageError):
        transcode_image("u", b"definitely not an image")


def test_storage_key_shape():
    key = build_storage_key("small", "jpeg")
    assert key.startswith("properties/")
    assert key.endswith("-small.jpg")
    assert build_storage_key("small", "jpeg") != key


# -------------------------
# processAll
# -------------------------

async def test_process_all_happy_path_uploads_three_variants():
    uploads: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "storage.test":
            uploads.append(request)
            return httpx.Response(200, json={"Key": request.url.path})
        return _image_response("WEBP")

    pipeline, client = _pipeline(handler)
    async with client:
        result = await pipeline.process_all(["https://x/1.webp"])

    assert result.failures == []
    assert len(result.photos) == 1
    photo = result.photos[0].as_json()
    assert set(photo["sizes"]) == {"small", "medium", "large"}
    assert len(photo["s3Urls"]) == 3
    assert all(k.endswith(".webp") for k in photo["s3Urls"])
    assert photo["sizes"]["small"].startswith(f"{STORAGE_URL}/storage/v1/object/public/imotko-prod/properties/")

    assert len(uploads) == 3
    assert all(r.url.path.startswith("/storage/v1/object/imotko-prod/properties/") for r in uploads)
    assert uploads[0].headers["x-upsert"] == "false"
    assert uploads[0].headers["content-type"] == "image/webp"


async def test_download_failing_all_attempts_is_recorded_not_raised():
    calls = {"n": 0}

    async def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(503)

    pipeline, client = _pipeline(handler)
    async with client:
        result = await pipeline.process_all(["https://x/broken.jpg"])

    assert result.photos == []
    assert len(result.failures) == 1
    assert result.failures[0].url == "https://x/broken.jpg"
    assert result.failures[0].stage == "download"
    assert calls["n"] == 3


async def test_not_found_and_non_image_fail_without_retry():
    calls: dict[str, int] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        calls[path] = calls.get(path, 0) + 1
        if path == "/gone.jpg":
            return httpx.Response(404)
        return httpx.Response(200, text="<html></html>", headers={"content-type": "text/html"})

    pipeline, client = _pipeline(handler)
    async with client:
        result = await pipeline.process_all(["https://x/gone.jpg", "https://x/page.jpg"])

    assert len(result.failures) == 2
    assert calls == {"/gone.jpg": 1, "/page.jpg": 1}


async def test_transient_upload_error_is_retried():
    upload_calls = {"n": 0}

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "storage.test":
            upload_calls["n"] += 1
            if upload_calls["n"] == 1:
                return httpx.Response(502)
            return httpx.Response(200, json={})
        return _image_response("JPEG")

    pipeline, client = _pipeline(handler)
    async with client:
        result = await pipeline.process_all(["https://x/1.jpg"])

    assert len(result.photos) == 1
    assert upload_calls["n"] == 4


async def test_bad_image_discards_only_that_image():
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "storage.test":
            return httpx.Response(200, json={})
        if request.url.path == "/bad.jpg":
            return httpx.Response(200, content=b"garbage", headers={"content-type": "image/jpeg"})
        return _image_response("JPEG")

    pipeline, client = _pipeline(handler)
    async with client:
        result = await pipeline.process_all(["https://x/bad.jpg", "https://x/good.jpg"])

    assert len(result.photos) == 1
    assert [(f.url, f.stage) for f in result.failures] == [("https://x/bad.jpg", "transcode")]


async def test_never_more_than_three_operations_in_flight():
    state = {"inflight": 0, "peak": 0}

    async def handler(request: httpx.Request) -> httpx.Response:
        state["inflight"] += 1
        state["peak"] = max(state["peak"], state["inflight"])
        try:
            await asyncio.sleep(0.01)
            if request.url.host == "storage.test":
                return httpx.Response(200, json={})
            return _image_response("JPEG")
        finally:
            state["inflight"] -= 1

    pipeline, client = _pipeline(handler, max_concurrent=3)
    urls = [f"https://x/{i}.jpg" for i in range(7)]
    async with client:
        result = await pipeline.process_all(urls)

    assert len(result.photos) == 7
    assert state["peak"] <= 3
    assert state["peak"] >= 2


async def test_rejected_upload_is_not_retried():
    upload_calls = {"n": 0}

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "storage.test":
            upload_calls["n"] += 1
            return httpx.Response(400, json={"error": "Duplicate"})
        return _image_response("PNG")

    pipeline, client = _pipeline(handler)
    async with client:
        result = await pipeline.process_all(["https://x/1.png"])

    assert result.photos == []
    assert result.failures[0].stage == "upload"
    assert upload_calls["n"] == 1


async def test_request_errors_discard_only_that_image():
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "storage.test":
            return httpx.Response(200, json={})
        if request.url.path == "/weird.jpg":
            raise httpx.UnsupportedProtocol("Request URL has an unsupported protocol", request=request)
        if request.url.path == "/odd.jpg":
            raise RuntimeError("handler blew up")
        return _image_response("JPEG")

    pipeline, client = _pipeline(handler)
    async with client:
        result = await pipeline.process_all(["https://x/weird.jpg", "https://x/odd.jpg", "https://x/good.jpg"])

    assert len(result.photos) == 1
    assert [(f.url, f.stage) for f in result.failures] == [
        ("https://x/weird.jpg", "download"),
        ("https://x/odd.jpg", "download"),
    ]
    assert "UnsupportedProtocol" in result.failures[0].reason


def test_transcode_rejects_decompression_bomb(monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100_000)

    with pytest.raises(PermanentImageError) as ei:
        transcode_image("u", image_bytes("PNG", (1200, 800)))
    assert ei.value.stage == "transcode"


async def test_oversized_image_discards_only_that_image(monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100_000)
    huge = image_bytes("PNG", (1200, 800))
    small = image_bytes("JPEG", (300, 200))

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "storage.test":
            return httpx.Response(200, json={})
        if request.url.path == "/huge.png":
            return httpx.Response(200, content=huge, headers={"content-type": "image/png"})
        return httpx.Response(200, content=small, headers={"content-type": "image/jpeg"})

    pipeline, client = _pipeline(handler)
    async with client:
        result = await pipeline.process_all(["https://x/huge.png", "https://x/small.jpg"])

    assert len(result.photos) == 1
    assert [(f.url, f.stage) for f in result.failures] == [("https://x/huge.png", "transcode")]


async def test_dropped_upload_connection_is_retried():
    upload_calls = {"n": 0}

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "storage.test":
            upload_calls["n"] += 1
            if upload_calls["n"] == 1:
                raise httpx.RemoteProtocolError("Server disconnected without sending a response.", request=request)
            return httpx.Response(200, json={})
        return _image_response("JPEG")

    pipeline, client = _pipeline(handler)
    async with client:
        result = await pipeline.process_all(["https://x/1.jpg"])

    assert result.failures == []
    assert len(result.photos) == 1
    assert upload_calls["n"] == 4
