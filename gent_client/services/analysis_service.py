"""Analysis orchestrator: three captured photos to one persisted result."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from gent_client.config import ANALYSIS_TIMEOUT_SECONDS, logger
from gent_client.core import storage_ops
from gent_client.core.backend import BackendClient
from gent_client.core.errors import (
    AnalysisError,
    AnalysisServiceError,
    AttemptInProgressError,
    ImagePreparationError,
    ImageValidationError,
    MissingInputError,
    ResultPersistenceError,
)
from gent_client.core.image_prep import encode_reference
from gent_client.core.storage_ops import CAPTURE_SEQUENCE, KeyValueStore, Slot
from gent_client.core.telemetry import Telemetry

IDENTITY_KEY = "identity_snapshot_v1"
COMPLETE_MESSAGE = "Identity unlocked!"


def _log(level: int, message: str, **context: Any) -> None:
    """Helper to emit structured logs with contextual metadata."""
    logger.log(level, "%s | context=%s", message, context)


class AnalysisPhase(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    ERROR = "error"


IN_FLIGHT_PHASES = (AnalysisPhase.PREPARING, AnalysisPhase.ANALYZING)


@dataclass(slots=True)
class AnalysisOutcome:
    """Terminal state of one attempt."""

    phase: AnalysisPhase
    message: str
    result: Optional[Dict[str, Any]] = None
    error: Optional[AnalysisError] = None
    reasons: List[str] = field(default_factory=list)
    retry_step: Optional[str] = None
    processing_time_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.phase is AnalysisPhase.COMPLETE


class AnalysisOrchestrator:
    """
    Drives one attempt at a time through
    Idle -> Preparing -> Analyzing -> Complete | Error.

    Capture slots are cleared on every terminal path. There is no automatic
    retry; ``restart`` returns the first capture step.
    """

    def __init__(
        self,
        store: KeyValueStore,
        backend: BackendClient,
        telemetry: Optional[Telemetry] = None,
        timeout: float = ANALYSIS_TIMEOUT_SECONDS,
        capture_dir: Optional[Path] = None,
        encoder: Callable[[str], Awaitable[str]] = encode_reference,
    ):
        self.store = store
        self.backend = backend
        self.telemetry = telemetry
        self.timeout = timeout
        self.capture_dir = capture_dir
        self.encoder = encoder
        self.phase = AnalysisPhase.IDLE
        self.last_outcome: Optional[AnalysisOutcome] = None

    @property
    def in_flight(self) -> bool:
        return self.phase in IN_FLIGHT_PHASES

    def _set_phase(self, phase: AnalysisPhase) -> None:
        _log(logging.DEBUG, "analysis_phase", phase=phase.value)
        self.phase = phase

    async def run(self, phone: Optional[str] = None) -> AnalysisOutcome:
        """
        Run one analysis attempt.

        Args:
            phone: Optional user identifier forwarded to the backend

        Returns:
            AnalysisOutcome in phase COMPLETE or ERROR

        Raises:
            AttemptInProgressError: Another attempt has not reached a terminal state
        """
        if self.in_flight:
            raise AttemptInProgressError("An analysis attempt is already running")

        start_time = time.time()
        self._set_phase(AnalysisPhase.PREPARING)
        _log(logging.INFO, "analysis_started", has_phone=bool(phone))
        self._capture("analysis_started")

        try:
            slots = await storage_ops.read_slots(self.store)
            missing = [slot.value for slot, uri in slots.items() if not uri]
            if missing:
                raise MissingInputError(missing)

            images = await self._prepare_images(slots)

            self._set_phase(AnalysisPhase.ANALYZING)
            result = await self.backend.analyze(images, phone, timeout=self.timeout)
            if not isinstance(result.get(IDENTITY_KEY), dict):
                raise AnalysisServiceError()

            await self._persist(result)
            outcome = self._complete(result, start_time)

        except AnalysisError as exc:
            outcome = self._fail(exc, start_time)
        except Exception as exc:
            logger.error("Unexpected analysis failure", exc_info=True)
            outcome = self._fail(AnalysisServiceError(), start_time, cause=exc)
        finally:
            # cancelled attempts still end in a re-enterable state
            if self.in_flight:
                self._set_phase(AnalysisPhase.ERROR)
            await self._cleanup()

        self.last_outcome = outcome
        return outcome

    def restart(self) -> str:
        """Leave a terminal state and return the first capture step."""
        if self.in_flight:
            raise AttemptInProgressError("Cannot restart while an attempt is running")
        self._set_phase(AnalysisPhase.IDLE)
        self.last_outcome = None
        return CAPTURE_SEQUENCE[0].value

    async def _prepare_images(self, slots: Dict[Slot, Optional[str]]) -> List[str]:
        """Encode all three captures concurrently, in face, body, skin order."""
        try:
            return list(
                await asyncio.gather(
                    *(self.encoder(slots[slot]) for slot in CAPTURE_SEQUENCE)
                )
            )
        except ImagePreparationError:
            raise
        except Exception as exc:
            raise ImagePreparationError() from exc

    async def _persist(self, result: Dict[str, Any]) -> None:
        """Write the result blob, then the completion flag last."""
        try:
            await self.store.set_json(storage_ops.KEY_ANALYSIS_RESULT, result)
        except Exception as exc:
            _log(logging.ERROR, "result_write_failed", error=str(exc))
            raise ResultPersistenceError() from exc

        try:
            await self.store.set_flag(storage_ops.KEY_HAS_COMPLETED_ANALYSIS, True)
        except Exception as exc:
            _log(logging.ERROR, "completion_flag_write_failed", error=str(exc))
            raise ResultPersistenceError() from exc

    async def _cleanup(self) -> None:
        try:
            await storage_ops.clear_slots(self.store, self.capture_dir)
            _log(logging.DEBUG, "capture_slots_cleared")
        except Exception as exc:
            _log(logging.ERROR, "capture_slot_cleanup_failed", error=str(exc))

    def _complete(self, result: Dict[str, Any], start_time: float) -> AnalysisOutcome:
        self._set_phase(AnalysisPhase.COMPLETE)
        elapsed = int((time.time() - start_time) * 1000)
        identity = result.get(IDENTITY_KEY) or {}

        _log(
            logging.INFO,
            "analysis_completed",
            processing_time_ms=elapsed,
            has_outfit_catalog=bool(result.get("outfit_catalog_v1")),
        )
        self._capture(
            "analysis_completed",
            {
                "face_shape": identity.get("face_shape"),
                "body_type": identity.get("body_type"),
                "skin_tone": identity.get("skin_tone"),
                "seasonal_palette": identity.get("seasonal_palette"),
            },
        )
        return AnalysisOutcome(
            phase=AnalysisPhase.COMPLETE,
            message=COMPLETE_MESSAGE,
            result=result,
            processing_time_ms=elapsed,
        )

    def _fail(
        self,
        error: AnalysisError,
        start_time: float,
        cause: Optional[BaseException] = None,
    ) -> AnalysisOutcome:
        self._set_phase(AnalysisPhase.ERROR)
        elapsed = int((time.time() - start_time) * 1000)
        reasons = error.reasons if isinstance(error, ImageValidationError) else []

        _log(
            logging.WARNING,
            "analysis_failed",
            kind=type(error).__name__,
            user_message=error.user_message,
            cause=str(cause) if cause else None,
            processing_time_ms=elapsed,
        )
        if isinstance(error, ImageValidationError):
            self._capture(
                "analysis_failed_invalid_image",
                {"image_type": Slot.FACE.value, "reason": " | ".join(reasons)},
            )

        return AnalysisOutcome(
            phase=AnalysisPhase.ERROR,
            message=error.user_message,
            error=error,
            reasons=reasons,
            retry_step=CAPTURE_SEQUENCE[0].value,
            processing_time_ms=elapsed,
        )

    def _capture(self, event: str, properties: Optional[Dict[str, Any]] = None) -> None:
        if self.telemetry:
            self.telemetry.capture(event, properties)
