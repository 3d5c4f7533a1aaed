"""FastAPI router providing phone sign-in endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from gent_client.config import logger
from gent_client.services.context import AppServices

from .dependencies import get_services
from .models import (
    MessageResponse,
    SendCodeRequest,
    SessionResponse,
    VerifyCodeRequest,
    VerifyCodeResponse,
)

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


@router.post("/send-code", response_model=MessageResponse)
async def send_code(
    payload: SendCodeRequest,
    services: AppServices = Depends(get_services),
) -> MessageResponse:
    """Send a verification code to the given phone number."""
    logger.info("Send code request", extra={"verifier": services.session.verifier.name})

    result = await services.session.request_code(payload.phone, payload.first_name)
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error)

    return MessageResponse(success=True, message="Verification code sent")


@router.post("/verify-code", response_model=VerifyCodeResponse)
async def verify_code(
    payload: VerifyCodeRequest,
    services: AppServices = Depends(get_services),
) -> VerifyCodeResponse:
    """Confirm the code and sign the user in."""
    try:
        result = await services.session.confirm_code(payload.code, services.backend)
    except Exception as exc:
        logger.error("Code verification failed", extra={"error": str(exc)})
        raise HTTPException(status_code=500, detail=f"Verification failed: {exc}")

    if not result.success:
        raise HTTPException(status_code=400, detail=result.error)

    return VerifyCodeResponse(
        success=True, message="Phone number verified", user=result.user or {}
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(services: AppServices = Depends(get_services)) -> MessageResponse:
    """Sign out. Analysis results stay on the device."""
    await services.session.teardown()
    return MessageResponse(success=True, message="Logout successful")


@router.get("/session", response_model=SessionResponse)
async def get_session(services: AppServices = Depends(get_services)) -> SessionResponse:
    session = services.session
    return SessionResponse(
        authenticated=session.authenticated,
        phone=session.phone,
        first_name=session.first_name,
        verifier=session.verifier.name,
    )
