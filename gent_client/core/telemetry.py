"""
Product analytics beacon (PostHog capture API) OR silent no-op.
Events are one-way: callers never await them and failures never propagate.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

import httpx

from gent_client.config import POSTHOG_API_KEY, POSTHOG_HOST, logger
from gent_client.core.storage_ops import KEY_DISTINCT_ID, KeyValueStore

CAPTURE_TIMEOUT_SECONDS = 10.0
LIBRARY_NAME = "gent-client"


class Telemetry:
    def __init__(
        self,
        store: KeyValueStore,
        api_key: Optional[str] = POSTHOG_API_KEY,
        host: str = POSTHOG_HOST,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self.api_key = api_key
        self.host = host.rstrip("/")
        self.distinct_id: Optional[str] = None
        self._transport = transport
        self._pending: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def init(self) -> None:
        """Load the stored distinct id, creating one on first run."""
        try:
            stored = await self.store.get_item(KEY_DISTINCT_ID)
            if not stored:
                stored = f"user_{uuid.uuid4().hex[:13]}"
                await self.store.set_item(KEY_DISTINCT_ID, stored)
            self.distinct_id = stored
        except Exception as e:
            logger.warning(f"Telemetry init failed: {e}")

    async def identify(self, user_id: str, properties: Optional[Dict[str, Any]] = None) -> None:
        previous = self.distinct_id
        self.distinct_id = user_id
        try:
            await self.store.set_item(KEY_DISTINCT_ID, user_id)
        except Exception as e:
            logger.warning(f"Telemetry identify failed to persist id: {e}")
        self.capture(
            "$identify",
            {"$anon_distinct_id": previous, "$set": properties or {}},
        )

    async def reset(self) -> None:
        self.distinct_id = f"anon_{uuid.uuid4().hex[:13]}"
        try:
            await self.store.set_item(KEY_DISTINCT_ID, self.distinct_id)
        except Exception as e:
            logger.warning(f"Telemetry reset failed to persist id: {e}")

    def capture(self, event: str, properties: Optional[Dict[str, Any]] = None) -> None:
        """Schedule an event send and return immediately."""
        if not self.enabled or not self.distinct_id:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        payload = {
            "api_key": self.api_key,
            "event": event,
            "properties": {
                "distinct_id": self.distinct_id,
                "$lib": LIBRARY_NAME,
                **(properties or {}),
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        task = loop.create_task(self._send(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, payload: Dict[str, Any]) -> None:
        try:
            async with httpx.AsyncClient(
                timeout=CAPTURE_TIMEOUT_SECONDS, transport=self._transport
            ) as client:
                await client.post(f"{self.host}/capture/", json=payload)
        except Exception as e:
            logger.debug(f"Telemetry capture dropped ({payload['event']}): {e}")

    async def flush(self) -> None:
        """Wait for scheduled sends; used at shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
