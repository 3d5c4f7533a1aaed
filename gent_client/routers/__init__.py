"""Router package exposing all API routers."""

from fastapi import APIRouter

from .auth.router import router as auth_router
from .style.router import router as style_router

router = APIRouter()
router.include_router(style_router)
router.include_router(auth_router)

__all__ = ["router", "auth_router", "style_router"]
