import asyncio
import json

import pytest

from gent_client.core import storage_ops
from gent_client.core.backend import ANALYZE_PATH
from gent_client.core.errors import (
    AnalysisServiceError,
    AnalysisTimeoutError,
    AttemptInProgressError,
    ImagePreparationError,
    ImageValidationError,
    MissingInputError,
    ResultPersistenceError,
)
from gent_client.core.storage_ops import JsonFileStore, MemoryStore, Slot
from gent_client.services import capture_service, profile_service
from gent_client.services.analysis_service import AnalysisOrchestrator, AnalysisPhase

ANALYSIS_BODY = {
    "identity_snapshot_v1": {
        "face_shape": "Oval",
        "body_type": "Athletic",
        "skin_tone": "Warm Medium",
        "seasonal_palette": "Autumn",
    },
    "outfit_catalog_v1": {
        "contexts": [
            {"context_name": "Date Night", "outfits": [{"title": "Navy Knit"}]},
        ]
    },
}


# ══════════════════════════════════════════════════════════════════════
# Fixtures
# ══════════════════════════════════════════════════════════════════════

@pytest.fixture
def capture_dir(tmp_path):
    return tmp_path / "captures"


def _capture(store, capture_dir, photo, slots=storage_ops.CAPTURE_SEQUENCE):
    async def scenario():
        for slot in slots:
            await capture_service.capture_slot(store, slot, photo, capture_dir)

    asyncio.run(scenario())


@pytest.fixture
def captured_store(store, capture_dir, photo):
    _capture(store, capture_dir, photo)
    return store


def _orchestrator(store, backend, capture_dir, **kwargs):
    return AnalysisOrchestrator(store, backend, capture_dir=capture_dir, **kwargs)


def _slots_empty(store):
    return asyncio.run(storage_ops.slots_empty(store))


# ══════════════════════════════════════════════════════════════════════
# Outcomes
# ══════════════════════════════════════════════════════════════════════

def test_happy_path_persists_response_verbatim(
    captured_store, capture_dir, make_backend, respond
):
    backend, handler = make_backend({ANALYZE_PATH: lambda r: respond(200, ANALYSIS_BODY)})
    orchestrator = _orchestrator(captured_store, backend, capture_dir)

    outcome = asyncio.run(orchestrator.run("+15551234567"))

    assert outcome.succeeded
    assert orchestrator.phase is AnalysisPhase.COMPLETE
    assert outcome.result == ANALYSIS_BODY
    assert handler.count(ANALYZE_PATH) == 1

    stored = captured_store.snapshot()
    assert json.loads(stored[storage_ops.KEY_ANALYSIS_RESULT]) == ANALYSIS_BODY
    assert stored[storage_ops.KEY_HAS_COMPLETED_ANALYSIS] == "true"
    assert _slots_empty(captured_store)
    assert list(capture_dir.iterdir()) == []

    body = handler.body()
    assert len(body["images"]) == 3
    assert body["phone"] == "5551234567"


def test_validation_failure_routes_back_to_face(
    captured_store, capture_dir, make_backend, respond
):
    rejection = {
        "detail": {
            "error": "IMAGE_VALIDATION_FAILED",
            "messages": ["Face not clearly visible"],
        }
    }
    backend, _ = make_backend({ANALYZE_PATH: lambda r: respond(422, rejection)})
    orchestrator = _orchestrator(captured_store, backend, capture_dir)

    outcome = asyncio.run(orchestrator.run())

    assert outcome.phase is AnalysisPhase.ERROR
    assert isinstance(outcome.error, ImageValidationError)
    assert "Face not clearly visible" in outcome.message
    assert outcome.reasons == ["Face not clearly visible"]
    assert outcome.retry_step == "face"
    assert _slots_empty(captured_store)
    assert storage_ops.KEY_HAS_COMPLETED_ANALYSIS not in captured_store.snapshot()


def test_timeout_cancels_the_request(captured_store, capture_dir, make_backend, respond):
    cancelled = []

    async def slow(request):
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            cancelled.append(True)
            raise
        return respond(200, ANALYSIS_BODY)

    backend, _ = make_backend({ANALYZE_PATH: slow})
    orchestrator = _orchestrator(captured_store, backend, capture_dir, timeout=0.2)

    outcome = asyncio.run(orchestrator.run())

    assert outcome.phase is AnalysisPhase.ERROR
    assert isinstance(outcome.error, AnalysisTimeoutError)
    assert "too long" in outcome.message
    assert cancelled == [True]
    assert _slots_empty(captured_store)
    assert storage_ops.KEY_ANALYSIS_RESULT not in captured_store.snapshot()


def test_missing_skin_makes_no_network_call(store, capture_dir, photo, make_backend, respond):
    _capture(store, capture_dir, photo, slots=(Slot.FACE, Slot.BODY))
    backend, handler = make_backend({ANALYZE_PATH: lambda r: respond(200, ANALYSIS_BODY)})
    orchestrator = _orchestrator(store, backend, capture_dir)

    outcome = asyncio.run(orchestrator.run())

    assert isinstance(outcome.error, MissingInputError)
    assert outcome.error.missing_slots == ["skin"]
    assert handler.calls == []
    assert _slots_empty(store)


def test_server_error_carries_detail(captured_store, capture_dir, make_backend, respond):
    backend, _ = make_backend(
        {ANALYZE_PATH: lambda r: respond(500, {"detail": "Model overloaded"})}
    )
    outcome = asyncio.run(_orchestrator(captured_store, backend, capture_dir).run())

    assert isinstance(outcome.error, AnalysisServiceError)
    assert outcome.error.status_code == 500
    assert outcome.message == "Model overloaded"
    assert _slots_empty(captured_store)


def test_response_without_identity_is_a_service_error(
    captured_store, capture_dir, make_backend, respond
):
    backend, _ = make_backend({ANALYZE_PATH: lambda r: respond(200, {"ok": True})})
    outcome = asyncio.run(_orchestrator(captured_store, backend, capture_dir).run())

    assert isinstance(outcome.error, AnalysisServiceError)
    assert storage_ops.KEY_ANALYSIS_RESULT not in captured_store.snapshot()


def test_unreadable_capture_is_a_preparation_error(
    store, capture_dir, make_backend, respond, tmp_path
):
    broken = tmp_path / "broken.jpg"
    broken.write_bytes(b"not an image")

    async def seed():
        for slot in storage_ops.CAPTURE_SEQUENCE:
            await storage_ops.save_slot(store, slot, str(broken))

    asyncio.run(seed())
    backend, handler = make_backend({ANALYZE_PATH: lambda r: respond(200, ANALYSIS_BODY)})

    outcome = asyncio.run(_orchestrator(store, backend, capture_dir).run())

    assert isinstance(outcome.error, ImagePreparationError)
    assert handler.calls == []
    assert _slots_empty(store)


def test_encoder_crash_is_wrapped(captured_store, capture_dir, make_backend, respond):
    async def explode(reference):
        raise RuntimeError("codec missing")

    backend, handler = make_backend({ANALYZE_PATH: lambda r: respond(200, ANALYSIS_BODY)})
    orchestrator = _orchestrator(captured_store, backend, capture_dir, encoder=explode)

    outcome = asyncio.run(orchestrator.run())

    assert isinstance(outcome.error, ImagePreparationError)
    assert handler.calls == []


class FailingResultStore(MemoryStore):
    def __init__(self, failing_key):
        super().__init__()
        self.failing_key = failing_key

    async def set_item(self, key, value):
        if key == self.failing_key:
            raise OSError("disk full")
        await super().set_item(key, value)


def test_result_write_failure_never_sets_the_flag(capture_dir, photo, make_backend, respond):
    store = FailingResultStore(storage_ops.KEY_ANALYSIS_RESULT)
    _capture(store, capture_dir, photo)
    backend, _ = make_backend({ANALYZE_PATH: lambda r: respond(200, ANALYSIS_BODY)})

    outcome = asyncio.run(_orchestrator(store, backend, capture_dir).run())

    assert isinstance(outcome.error, ResultPersistenceError)
    assert storage_ops.KEY_HAS_COMPLETED_ANALYSIS not in store.snapshot()
    assert _slots_empty(store)


def test_flag_write_failure_is_reported(capture_dir, photo, make_backend, respond):
    store = FailingResultStore(storage_ops.KEY_HAS_COMPLETED_ANALYSIS)
    _capture(store, capture_dir, photo)
    backend, _ = make_backend({ANALYZE_PATH: lambda r: respond(200, ANALYSIS_BODY)})

    outcome = asyncio.run(_orchestrator(store, backend, capture_dir).run())

    assert isinstance(outcome.error, ResultPersistenceError)
    assert _slots_empty(store)


class ExplodingBackend:
    async def analyze(self, images, phone, timeout):
        raise KeyError("unexpected")


def test_unexpected_failure_becomes_error_phase(captured_store, capture_dir):
    orchestrator = _orchestrator(captured_store, ExplodingBackend(), capture_dir)

    outcome = asyncio.run(orchestrator.run())

    assert outcome.phase is AnalysisPhase.ERROR
    assert isinstance(outcome.error, AnalysisServiceError)
    assert _slots_empty(captured_store)


# ══════════════════════════════════════════════════════════════════════
# Single attempt and restart
# ══════════════════════════════════════════════════════════════════════

def test_second_attempt_while_in_flight_is_rejected(
    captured_store, capture_dir, make_backend, respond
):
    release = None

    async def gated(request):
        await release.wait()
        return respond(200, ANALYSIS_BODY)

    backend, handler = make_backend({ANALYZE_PATH: gated})
    orchestrator = _orchestrator(captured_store, backend, capture_dir)

    async def scenario():
        nonlocal release
        release = asyncio.Event()
        first = asyncio.create_task(orchestrator.run())
        while not handler.calls:
            await asyncio.sleep(0.01)

        with pytest.raises(AttemptInProgressError):
            await orchestrator.run()

        release.set()
        return await first

    outcome = asyncio.run(scenario())

    assert outcome.succeeded
    assert handler.count(ANALYZE_PATH) == 1


def test_restart_returns_face_and_resets_phase(
    captured_store, capture_dir, make_backend, respond
):
    backend, _ = make_backend({ANALYZE_PATH: lambda r: respond(503, {})})
    orchestrator = _orchestrator(captured_store, backend, capture_dir)
    asyncio.run(orchestrator.run())

    assert orchestrator.phase is AnalysisPhase.ERROR
    assert orchestrator.restart() == "face"
    assert orchestrator.phase is AnalysisPhase.IDLE
    assert orchestrator.last_outcome is None


def test_restart_refused_while_in_flight(store):
    orchestrator = AnalysisOrchestrator(store, backend=None)
    orchestrator.phase = AnalysisPhase.ANALYZING

    with pytest.raises(AttemptInProgressError):
        orchestrator.restart()


class ResultRejectingFileStore(JsonFileStore):
    """File store whose disk refuses any write carrying an analysis result."""

    def _persist(self, data):
        if storage_ops.KEY_ANALYSIS_RESULT in data:
            raise OSError("disk full")
        super()._persist(data)


def test_failed_result_write_leaves_nothing_readable(
    tmp_path, capture_dir, photo, make_backend, respond
):
    store = ResultRejectingFileStore(str(tmp_path / "store.json"))
    _capture(store, capture_dir, photo)
    backend, _ = make_backend({ANALYZE_PATH: lambda r: respond(200, ANALYSIS_BODY)})

    outcome = asyncio.run(_orchestrator(store, backend, capture_dir).run())

    assert isinstance(outcome.error, ResultPersistenceError)
    assert storage_ops.KEY_ANALYSIS_RESULT not in store.snapshot()
    assert asyncio.run(profile_service.load_analysis_result(store, backend)) is None
    assert _slots_empty(store)


def test_cancelled_attempt_ends_in_error_and_clears_slots(
    captured_store, capture_dir, make_backend, respond
):
    started = []

    async def hanging(request):
        started.append(request)
        await asyncio.sleep(30)
        return respond(200, ANALYSIS_BODY)

    backend, _ = make_backend({ANALYZE_PATH: hanging})
    orchestrator = _orchestrator(captured_store, backend, capture_dir)

    async def scenario():
        attempt = asyncio.create_task(orchestrator.run())
        while not started:
            await asyncio.sleep(0.01)
        attempt.cancel()
        with pytest.raises(asyncio.CancelledError):
            await attempt

    asyncio.run(scenario())

    assert orchestrator.phase is AnalysisPhase.ERROR
    assert not orchestrator.in_flight
    assert _slots_empty(captured_store)
    assert storage_ops.KEY_HAS_COMPLETED_ANALYSIS not in captured_store.snapshot()
    assert orchestrator.restart() == "face"
