import asyncio

import pytest

from gent_client.core import storage_ops
from gent_client.core.backend import HEADSHOT_PREVIEW_PATH, OUTFIT_PREVIEW_PATH
from gent_client.core.errors import BackendError
from gent_client.core.preview_cache import (
    GeneratedImageCache,
    HeadshotPreviewRequest,
    OutfitPreviewRequest,
    outfit_id,
)
from gent_client.core.storage_ops import MemoryStore


def _outfit(index=0, context="Date Night"):
    return OutfitPreviewRequest(
        context_name=context,
        outfit_index=index,
        outfit_title="Navy Knit",
        visual_spec="navy merino crewneck, grey chinos",
        head_to_toe=["navy knit", "grey chinos", "white sneakers"],
        phone="+15551234567",
    )


def test_outfit_ids_are_stable():
    assert outfit_id("Date Night", 0) == "date-night-0"
    assert outfit_id("Work / Office", 2) == "work---office-2"
    assert _outfit(1).identifier == "date-night-1"
    assert HeadshotPreviewRequest("beard", 3, "Short Boxed").identifier == "beard-3"


def test_second_generate_is_served_from_cache(store, make_backend, respond):
    backend, handler = make_backend(
        {OUTFIT_PREVIEW_PATH: lambda r: respond(200, {"success": True, "image_base64": "IMG"})}
    )
    cache = GeneratedImageCache(store, backend)
    request = _outfit()

    async def scenario():
        first = await cache.generate(request.identifier, request)
        second = await cache.generate(request.identifier, request)
        return first, second

    assert asyncio.run(scenario()) == ("IMG", "IMG")
    assert len(handler.calls) == 1
    body = handler.body()
    assert body["context_name"] == "Date Night"
    assert body["phone"] == "5551234567"


def test_concurrent_requests_share_one_generation(store, make_backend, respond):
    async def slow(request):
        await asyncio.sleep(0.05)
        return respond(200, {"success": True, "image_base64": "IMG"})

    backend, handler = make_backend({OUTFIT_PREVIEW_PATH: slow})
    cache = GeneratedImageCache(store, backend)
    request = _outfit()

    async def scenario():
        waiters = [cache.generate(request.identifier, request) for _ in range(5)]
        return await asyncio.gather(*waiters)

    assert asyncio.run(scenario()) == ["IMG"] * 5
    assert len(handler.calls) == 1
    assert not cache.is_generating(request.identifier)


def test_failure_leaves_no_entry_and_allows_retry(store, make_backend, respond):
    responses = iter(
        [
            respond(500, {"detail": "generator down"}),
            respond(200, {"success": True, "image_base64": "IMG"}),
        ]
    )
    backend, handler = make_backend({OUTFIT_PREVIEW_PATH: lambda r: next(responses)})
    cache = GeneratedImageCache(store, backend)
    request = _outfit()

    with pytest.raises(BackendError):
        asyncio.run(cache.generate(request.identifier, request))

    assert cache.get(request.identifier) is None
    assert not cache.is_generating(request.identifier)
    assert storage_ops.KEY_GENERATED_IMAGES not in store.snapshot()

    assert asyncio.run(cache.generate(request.identifier, request)) == "IMG"
    assert len(handler.calls) == 2


def test_response_without_image_is_a_failure(store, make_backend, respond):
    backend, _ = make_backend(
        {HEADSHOT_PREVIEW_PATH: lambda r: respond(200, {"success": False})}
    )
    cache = GeneratedImageCache(store, backend)
    request = HeadshotPreviewRequest("hairstyle", 0, "Textured Crop")

    with pytest.raises(BackendError):
        asyncio.run(cache.generate(request.identifier, request))
    assert cache.get(request.identifier) is None


def test_success_merges_into_stored_map(make_backend, respond):
    store = MemoryStore({storage_ops.KEY_GENERATED_IMAGES: '{"beard-0": "OLD"}'})
    backend, _ = make_backend(
        {OUTFIT_PREVIEW_PATH: lambda r: respond(200, {"success": True, "image_base64": "NEW"})}
    )
    cache = GeneratedImageCache(store, backend)
    request = _outfit(2)

    asyncio.run(cache.generate(request.identifier, request))

    stored = asyncio.run(store.get_json(storage_ops.KEY_GENERATED_IMAGES))
    assert stored == {"beard-0": "OLD", "date-night-2": "NEW"}
    assert cache.get("beard-0") == "OLD"


def test_stored_previews_skip_the_network(make_backend):
    store = MemoryStore({storage_ops.KEY_GENERATED_IMAGES: '{"date-night-0": "CACHED"}'})
    backend, handler = make_backend({})
    cache = GeneratedImageCache(store, backend)
    request = _outfit()

    assert asyncio.run(cache.generate(request.identifier, request)) == "CACHED"
    assert handler.calls == []


def test_corrupt_stored_map_is_ignored(make_backend):
    store = MemoryStore(
        {storage_ops.KEY_GENERATED_IMAGES: '{"date-night-0": 7, "beard-1": "OK"}'}
    )
    backend, _ = make_backend({})
    cache = GeneratedImageCache(store, backend)

    assert asyncio.run(cache.load()) == {"beard-1": "OK"}


def test_generation_finishing_after_clear_is_not_stored(store, make_backend, respond):
    release = None
    started = []

    async def gated(request):
        started.append(request)
        await release.wait()
        return respond(200, {"success": True, "image_base64": "OLD"})

    backend, handler = make_backend({OUTFIT_PREVIEW_PATH: gated})
    cache = GeneratedImageCache(store, backend)
    request = _outfit()

    async def scenario():
        nonlocal release
        release = asyncio.Event()
        pending = asyncio.create_task(cache.generate(request.identifier, request))
        while not started:
            await asyncio.sleep(0.01)

        await cache.clear()
        assert not cache.is_generating(request.identifier)
        release.set()
        return await pending

    assert asyncio.run(scenario()) == "OLD"
    assert cache.get(request.identifier) is None
    assert storage_ops.KEY_GENERATED_IMAGES not in store.snapshot()
    assert len(handler.calls) == 1


def test_clear_drops_memory_and_store(make_backend):
    store = MemoryStore({storage_ops.KEY_GENERATED_IMAGES: '{"beard-1": "OK"}'})
    backend, _ = make_backend({})
    cache = GeneratedImageCache(store, backend)

    async def scenario():
        await cache.load()
        await cache.clear()

    asyncio.run(scenario())
    assert cache.get("beard-1") is None
    assert store.snapshot() == {}
