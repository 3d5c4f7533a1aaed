"""Pydantic models for phone sign-in endpoints."""

from typing import Optional

from pydantic import BaseModel, Field


class SendCodeRequest(BaseModel):
    """Request payload for sending a verification code."""

    phone: str = Field(..., min_length=4, description="Phone number, with or without +")
    first_name: Optional[str] = Field(None, max_length=100)


class VerifyCodeRequest(BaseModel):
    """Request payload for confirming a verification code."""

    code: str = Field(..., description="6-digit code received by SMS")


class MessageResponse(BaseModel):
    """Generic success response with message."""

    success: bool
    message: str


class VerifyCodeResponse(BaseModel):
    success: bool
    message: str
    user: dict = Field(default_factory=dict)


class SessionResponse(BaseModel):
    """Signed-in state of the local session."""

    authenticated: bool
    phone: Optional[str] = None
    first_name: Optional[str] = None
    verifier: str
