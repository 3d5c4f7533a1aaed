"""Wiring for the client: one container built at start, closed at shutdown."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

from gent_client.config import (
    ANALYSIS_TIMEOUT_SECONDS,
    AUTH_PROVIDER,
    BACKEND_URL,
    CAPTURE_DIR,
    FIREBASE_API_KEY,
    POSTHOG_API_KEY,
    STORE_PATH,
    logger,
)
from gent_client.core.auth import PhoneVerifier, select_verifier
from gent_client.core.backend import BackendClient
from gent_client.core.preview_cache import GeneratedImageCache
from gent_client.core.session import AppSession
from gent_client.core.status_resolver import StatusResolver
from gent_client.core.storage_ops import JsonFileStore, KeyValueStore
from gent_client.core.telemetry import Telemetry
from gent_client.services.analysis_service import AnalysisOrchestrator


@dataclass
class AppServices:
    store: KeyValueStore
    backend: BackendClient
    telemetry: Telemetry
    session: AppSession
    resolver: StatusResolver
    cache: GeneratedImageCache
    orchestrator: AnalysisOrchestrator
    capture_dir: Path

    async def close(self) -> None:
        await self.telemetry.flush()
        logger.info("Client services closed")


async def build_services(
    store: Optional[KeyValueStore] = None,
    backend: Optional[BackendClient] = None,
    verifier: Optional[PhoneVerifier] = None,
    capture_dir: Optional[Path] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    posthog_api_key: Optional[str] = POSTHOG_API_KEY,
    analysis_timeout: float = ANALYSIS_TIMEOUT_SECONDS,
) -> AppServices:
    """
    Build every service from configuration, letting callers inject parts.

    Args:
        store: Durable store; defaults to the JSON file at GENT_STORE_PATH
        backend: Backend client; defaults to one on BACKEND_URL
        verifier: Phone verifier; defaults to ``select_verifier``
        capture_dir: Directory for resized captures
        transport: httpx transport shared by default-built HTTP clients
        posthog_api_key: Telemetry key; None disables telemetry
        analysis_timeout: Analysis deadline in seconds

    Returns:
        AppServices with the session restored and cached previews loaded
    """
    store = store or JsonFileStore(STORE_PATH)
    backend = backend or BackendClient(BACKEND_URL, transport=transport)
    capture_dir = Path(capture_dir or CAPTURE_DIR)

    telemetry = Telemetry(store, api_key=posthog_api_key, transport=transport)
    await telemetry.init()

    verifier = verifier or select_verifier(
        backend, AUTH_PROVIDER, FIREBASE_API_KEY, transport=transport
    )
    session = await AppSession.start(store, verifier, telemetry)

    cache = GeneratedImageCache(store, backend, telemetry)
    await cache.load()

    orchestrator = AnalysisOrchestrator(
        store,
        backend,
        telemetry,
        timeout=analysis_timeout,
        capture_dir=capture_dir,
    )

    logger.info(
        "Client services ready",
        extra={"backend": backend.base_url, "telemetry": telemetry.enabled},
    )
    return AppServices(
        store=store,
        backend=backend,
        telemetry=telemetry,
        session=session,
        resolver=StatusResolver(store, backend),
        cache=cache,
        orchestrator=orchestrator,
        capture_dir=capture_dir,
    )
