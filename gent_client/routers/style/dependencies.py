"""FastAPI dependencies shared across style endpoints."""

from typing import Optional

from fastapi import Depends

from gent_client.services.context import AppServices

from ..auth.dependencies import get_services


async def get_optional_phone(
    services: AppServices = Depends(get_services),
) -> Optional[str]:
    """Phone of the signed-in user, or None for an anonymous session."""
    session = services.session
    if not session.authenticated:
        return None
    return session.phone
