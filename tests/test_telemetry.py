import asyncio
import json

import httpx

from gent_client.core.storage_ops import KEY_DISTINCT_ID, MemoryStore
from gent_client.core.telemetry import Telemetry


class CaptureSink:
    def __init__(self, status_code=200):
        self.status_code = status_code
        self.events = []

    def __call__(self, request):
        self.events.append(json.loads(request.content))
        return httpx.Response(self.status_code, json={"status": 1})


def _telemetry(store, sink, api_key="phc_test"):
    return Telemetry(
        store,
        api_key=api_key,
        host="https://posthog.test",
        transport=httpx.MockTransport(sink),
    )


def test_capture_sends_in_background():
    store = MemoryStore()
    sink = CaptureSink()
    telemetry = _telemetry(store, sink)

    async def scenario():
        await telemetry.init()
        telemetry.capture("analysis_started")
        await telemetry.flush()

    asyncio.run(scenario())

    assert store.snapshot()[KEY_DISTINCT_ID].startswith("user_")
    assert sink.events[0]["event"] == "analysis_started"
    assert sink.events[0]["api_key"] == "phc_test"
    assert sink.events[0]["properties"]["distinct_id"] == store.snapshot()[KEY_DISTINCT_ID]


def test_disabled_without_key():
    sink = CaptureSink()
    telemetry = _telemetry(MemoryStore(), sink, api_key=None)

    async def scenario():
        await telemetry.init()
        telemetry.capture("analysis_started")
        await telemetry.flush()

    asyncio.run(scenario())
    assert not telemetry.enabled
    assert sink.events == []


def test_failures_never_reach_the_caller():
    attempts = []

    def offline(request):
        attempts.append(request)
        raise httpx.ConnectError("offline", request=request)

    telemetry = Telemetry(
        MemoryStore(), api_key="phc_test", transport=httpx.MockTransport(offline)
    )

    async def scenario():
        await telemetry.init()
        telemetry.capture("analysis_completed", {"face_shape": "Oval"})
        await telemetry.flush()

    asyncio.run(scenario())
    assert len(attempts) == 1


def test_identify_then_reset_rotates_id():
    store = MemoryStore()
    sink = CaptureSink()
    telemetry = _telemetry(store, sink)

    async def scenario():
        await telemetry.init()
        anonymous = telemetry.distinct_id
        await telemetry.identify("+15551234567")
        await telemetry.flush()
        await telemetry.reset()
        return anonymous

    anonymous = asyncio.run(scenario())

    assert sink.events[0]["event"] == "$identify"
    assert sink.events[0]["properties"]["$anon_distinct_id"] == anonymous
    assert store.snapshot()[KEY_DISTINCT_ID].startswith("anon_")
