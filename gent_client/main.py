from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gent_client.config import logger
from gent_client.services.context import AppServices, build_services

from .routers import router


def create_app(services: Optional[AppServices] = None) -> FastAPI:
    """Build the local HTTP shell. Injected services are used as-is."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        app.state.services = services or await build_services()
        try:
            yield
        finally:
            if owned:
                await app.state.services.close()

    app = FastAPI(
        title="Gent Style Client",
        description="Local shell for capture, analysis, status and preview flows",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.include_router(router)

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    logger.info("Gent style client initialized successfully")
    return app


app = create_app()
