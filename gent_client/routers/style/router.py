"""FastAPI router for capture, analysis, status and preview endpoints."""

from typing import Dict, Optional, Type

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from gent_client.config import logger
from gent_client.core.errors import (
    AnalysisError,
    AnalysisServiceError,
    AnalysisTimeoutError,
    AttemptInProgressError,
    BackendError,
    ImagePreparationError,
    ImageValidationError,
    MissingInputError,
    RequestTimeoutError,
    ResultPersistenceError,
)
from gent_client.core.preview_cache import HeadshotPreviewRequest, OutfitPreviewRequest
from gent_client.core.storage_ops import Slot
from gent_client.core.stylist_chat import ChatMessage, ChatSession
from gent_client.services import capture_service, membership_service, profile_service
from gent_client.services.analysis_service import AnalysisOutcome
from gent_client.services.context import AppServices

from ..auth.dependencies import get_services, get_signed_in_session
from .dependencies import get_optional_phone
from .models import (
    AnalysisErrorDetail,
    AnalysisResponse,
    CaptureResponse,
    ChatRequest,
    ChatResponse,
    HeadshotPreviewBody,
    OutfitPreviewBody,
    PreviewResponse,
    RestartResponse,
    ResultResponse,
    StatusResponse,
    UnlockRequest,
    UnlockResponse,
)

router = APIRouter(prefix="/api/v1/style", tags=["Style"])

ANALYSIS_STATUS_CODES: Dict[Type[AnalysisError], int] = {
    MissingInputError: 400,
    ImagePreparationError: 422,
    ImageValidationError: 422,
    AnalysisTimeoutError: 504,
    AnalysisServiceError: 502,
    ResultPersistenceError: 500,
}


def _analysis_http_error(outcome: AnalysisOutcome) -> HTTPException:
    status_code = ANALYSIS_STATUS_CODES.get(type(outcome.error), 502)
    detail = AnalysisErrorDetail(
        phase=outcome.phase.value,
        message=outcome.message,
        reasons=outcome.reasons,
        retry_step=outcome.retry_step,
    )
    return HTTPException(status_code=status_code, detail=detail.model_dump())


def _preview_http_error(identifier: str, exc: BackendError) -> HTTPException:
    logger.warning(
        "Preview generation failed",
        extra={"identifier": identifier, "error": str(exc)},
    )
    status_code = 504 if isinstance(exc, RequestTimeoutError) else 502
    return HTTPException(status_code=status_code, detail=f"Preview generation failed: {exc}")


@router.post("/capture/{slot}", response_model=CaptureResponse)
async def capture(
    slot: Slot,
    image: UploadFile = File(..., description="Captured photo"),
    services: AppServices = Depends(get_services),
) -> CaptureResponse:
    """Store one capture and return the next step."""
    if services.orchestrator.in_flight:
        raise HTTPException(status_code=409, detail="Analysis in progress")

    data = await image.read()
    if not data:
        raise HTTPException(status_code=400, detail="Empty image upload")

    try:
        step = await capture_service.capture_slot(
            services.store, slot, data, services.capture_dir
        )
    except ImagePreparationError as exc:
        raise HTTPException(status_code=422, detail=exc.user_message)

    return CaptureResponse(success=True, slot=slot.value, next_step=step)


@router.post("/analyze", response_model=AnalysisResponse)
async def analyze(
    services: AppServices = Depends(get_services),
    phone: Optional[str] = Depends(get_optional_phone),
) -> AnalysisResponse:
    """Run one analysis attempt over the three captured photos."""
    try:
        outcome = await services.orchestrator.run(phone)
    except AttemptInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc))

    if not outcome.succeeded:
        raise _analysis_http_error(outcome)

    return AnalysisResponse(
        phase=outcome.phase.value,
        message=outcome.message,
        result=outcome.result or {},
        processing_time_ms=outcome.processing_time_ms,
    )


@router.post("/analysis/restart", response_model=RestartResponse)
async def restart_analysis(services: AppServices = Depends(get_services)) -> RestartResponse:
    try:
        return RestartResponse(next_step=services.orchestrator.restart())
    except AttemptInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.get("/status", response_model=StatusResponse)
async def get_status(
    services: AppServices = Depends(get_services),
    phone: Optional[str] = Depends(get_optional_phone),
) -> StatusResponse:
    """Resolved premium / tier / analysis-complete flags. Falls back to cache."""
    snapshot = await services.resolver.resolve(phone)
    return StatusResponse(**snapshot.to_dict())


@router.get("/result", response_model=ResultResponse)
async def get_result(
    services: AppServices = Depends(get_services),
    phone: Optional[str] = Depends(get_optional_phone),
) -> ResultResponse:
    result = await profile_service.load_analysis_result(
        services.store, services.backend, phone
    )
    if not result:
        raise HTTPException(status_code=404, detail="No analysis result")

    return ResultResponse(**profile_service.with_outfit_ids(result))


@router.get("/analysis-mode")
async def get_analysis_mode(services: AppServices = Depends(get_services)) -> dict:
    """Regeneration quota reported by the backend."""
    mode = await membership_service.analysis_mode(services.store, services.backend)
    if mode is None:
        raise HTTPException(status_code=404, detail="Analysis mode unavailable")
    return mode


@router.get("/previews/{identifier}", response_model=PreviewResponse)
async def get_preview(
    identifier: str, services: AppServices = Depends(get_services)
) -> PreviewResponse:
    """A cached preview. 404 while missing, including during generation."""
    image = services.cache.get(identifier)
    if not image:
        detail = (
            "Preview is generating"
            if services.cache.is_generating(identifier)
            else "Preview not found"
        )
        raise HTTPException(status_code=404, detail=detail)
    return PreviewResponse(identifier=identifier, image_base64=image)


@router.post("/previews/outfit", response_model=PreviewResponse)
async def generate_outfit_preview(
    payload: OutfitPreviewBody,
    services: AppServices = Depends(get_services),
    phone: Optional[str] = Depends(get_optional_phone),
) -> PreviewResponse:
    request = OutfitPreviewRequest(
        context_name=payload.context_name,
        outfit_index=payload.outfit_index,
        outfit_title=payload.outfit_title,
        visual_spec=payload.visual_spec,
        head_to_toe=payload.head_to_toe,
        phone=phone,
    )
    try:
        image = await services.cache.generate(request.identifier, request)
    except BackendError as exc:
        raise _preview_http_error(request.identifier, exc)

    return PreviewResponse(identifier=request.identifier, image_base64=image)


@router.post("/previews/headshot", response_model=PreviewResponse)
async def generate_headshot_preview(
    payload: HeadshotPreviewBody,
    services: AppServices = Depends(get_services),
    phone: Optional[str] = Depends(get_optional_phone),
) -> PreviewResponse:
    request = HeadshotPreviewRequest(
        style_type=payload.style_type,
        index=payload.index,
        name=payload.name,
        description=payload.description,
        phone=phone,
    )
    try:
        image = await services.cache.generate(request.identifier, request)
    except BackendError as exc:
        raise _preview_http_error(request.identifier, exc)

    return PreviewResponse(identifier=request.identifier, image_base64=image)


@router.post("/unlock", response_model=UnlockResponse)
async def unlock(
    payload: UnlockRequest, services: AppServices = Depends(get_services)
) -> UnlockResponse:
    """Unlock premium with the purchase email."""
    logger.info("Premium unlock requested")
    outcome = await membership_service.unlock_premium(
        services.store, services.backend, payload.email
    )
    if not outcome.success:
        raise HTTPException(status_code=400, detail=outcome.error)

    return UnlockResponse(
        success=True,
        membership_tier=outcome.membership_tier,
        next_step=outcome.next_step,
    )


@router.post("/reset")
async def reset_analysis(
    services: AppServices = Depends(get_services),
    _session=Depends(get_signed_in_session),
) -> dict:
    """Delete the analysis on the backend and on the device."""
    if services.orchestrator.in_flight:
        raise HTTPException(status_code=409, detail="Analysis in progress")

    try:
        await membership_service.force_reset(
            services.store, services.backend, services.cache, services.capture_dir
        )
    except BackendError as exc:
        logger.error("Force reset failed", extra={"error": str(exc)})
        raise HTTPException(status_code=502, detail=f"Reset failed: {exc}")

    return {"success": True, "message": "Analysis reset", "next_step": "analysis-intro"}


@router.post("/chat", response_model=ChatResponse)
async def chat(
    payload: ChatRequest,
    services: AppServices = Depends(get_services),
    phone: Optional[str] = Depends(get_optional_phone),
) -> ChatResponse:
    """One stylist chat turn. The caller owns the conversation history."""
    session = ChatSession(services.backend, phone)
    session.messages = [
        ChatMessage(role=turn.role, content=turn.content) for turn in payload.history
    ]

    reply = await session.send(payload.message)
    if reply is None:
        raise HTTPException(status_code=400, detail="Message is empty")

    return ChatResponse(role=reply.role, content=reply.content, is_error=reply.is_error)


@router.get("/health")
async def health_check() -> dict:
    return {"status": "healthy", "service": "style"}
