"""Session-related FastAPI dependencies."""

from fastapi import Depends, HTTPException, Request

from gent_client.core.session import AppSession
from gent_client.services.context import AppServices


def get_services(request: Request) -> AppServices:
    """The services container built in the app lifespan."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Client services not ready")
    return services


def get_signed_in_session(services: AppServices = Depends(get_services)) -> AppSession:
    """Require a signed-in session with a known phone number."""
    session = services.session
    if not session.authenticated or not session.phone:
        raise HTTPException(status_code=401, detail="Sign in required")
    return session
