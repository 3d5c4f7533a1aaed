"""Pydantic models used by the style router."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CaptureResponse(BaseModel):
    success: bool
    slot: str
    next_step: str = Field(..., description="body, skin or processing")


class AnalysisResponse(BaseModel):
    """Terminal state of a successful analysis attempt."""

    phase: str
    message: str
    result: Dict[str, Any]
    processing_time_ms: int


class AnalysisErrorDetail(BaseModel):
    """Error body for a failed attempt; the UI restarts at ``retry_step``."""

    phase: str
    message: str
    reasons: List[str] = Field(default_factory=list)
    retry_step: Optional[str] = None


class RestartResponse(BaseModel):
    next_step: str


class StatusResponse(BaseModel):
    is_premium: bool
    membership_tier: str
    has_completed_analysis: bool


class ResultResponse(BaseModel):
    identity_snapshot_v1: Dict[str, Any]
    outfit_catalog_v1: Optional[Dict[str, Any]] = None


class OutfitPreviewBody(BaseModel):
    context_name: str
    outfit_index: int = Field(..., ge=0)
    outfit_title: str
    visual_spec: str = ""
    head_to_toe: List[str] = Field(default_factory=list)


class HeadshotPreviewBody(BaseModel):
    style_type: str = Field(..., pattern="^(hairstyle|beard)$")
    index: int = Field(..., ge=0)
    name: str
    description: str = ""


class PreviewResponse(BaseModel):
    identifier: str
    image_base64: str


class UnlockRequest(BaseModel):
    email: str


class UnlockResponse(BaseModel):
    success: bool
    membership_tier: str
    next_step: str


class ChatTurn(BaseModel):
    role: str = Field(..., pattern="^(user|assistant)$")
    content: str


class ChatRequest(BaseModel):
    message: str
    history: List[ChatTurn] = Field(default_factory=list)


class ChatResponse(BaseModel):
    role: str
    content: str
    is_error: bool = False
