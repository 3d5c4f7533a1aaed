"""
Generated preview image cache.

One entry per stable identifier, kept in memory and merge-written to the
durable store. Concurrent requests for the same identifier share a single
in-flight generation.
"""

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from gent_client.config import logger
from gent_client.core import storage_ops
from gent_client.core.backend import (
    HEADSHOT_PREVIEW_PATH,
    OUTFIT_PREVIEW_PATH,
    BackendClient,
    backend_phone,
)
from gent_client.core.storage_ops import KeyValueStore
from gent_client.core.telemetry import Telemetry

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def outfit_id(context_name: str, index: int) -> str:
    """Stable identifier for the ``index``-th outfit of a context."""
    return f"{_NON_ALNUM.sub('-', context_name.lower())}-{index}"


def headshot_id(style_type: str, index: int) -> str:
    return f"{style_type}-{index}"


@dataclass
class OutfitPreviewRequest:
    context_name: str
    outfit_index: int
    outfit_title: str
    visual_spec: str = ""
    head_to_toe: List[str] = field(default_factory=list)
    phone: Optional[str] = None

    endpoint = OUTFIT_PREVIEW_PATH

    @property
    def identifier(self) -> str:
        return outfit_id(self.context_name, self.outfit_index)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "visual_spec": self.visual_spec,
            "context_name": self.context_name,
            "outfit_index": self.outfit_index,
            "outfit_title": self.outfit_title,
            "head_to_toe": self.head_to_toe,
            "phone": backend_phone(self.phone),
        }


@dataclass
class HeadshotPreviewRequest:
    style_type: str  # "hairstyle" | "beard"
    index: int
    name: str
    description: str = ""
    phone: Optional[str] = None

    endpoint = HEADSHOT_PREVIEW_PATH

    @property
    def identifier(self) -> str:
        return headshot_id(self.style_type, self.index)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "style_type": self.style_type,
            "name": self.name,
            "description": self.description,
            "phone": backend_phone(self.phone),
        }


class GeneratedImageCache:
    def __init__(
        self,
        store: KeyValueStore,
        backend: BackendClient,
        telemetry: Optional[Telemetry] = None,
    ):
        self.store = store
        self.backend = backend
        self.telemetry = telemetry
        self._images: Dict[str, str] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._loaded = False
        # bumped by clear(); generations started before it never write back
        self._epoch = 0

    async def load(self) -> Dict[str, str]:
        """Read stored previews once. Entries that are not strings are ignored."""
        if not self._loaded:
            stored = await self.store.get_json(storage_ops.KEY_GENERATED_IMAGES) or {}
            for key, value in stored.items():
                if isinstance(value, str) and value:
                    self._images.setdefault(key, value)
            self._loaded = True
        return dict(self._images)

    def get(self, identifier: str) -> Optional[str]:
        return self._images.get(identifier)

    def is_generating(self, identifier: str) -> bool:
        return identifier in self._inflight

    async def generate(self, identifier: str, request: Any) -> str:
        """
        Return the preview for ``identifier``, generating it at most once.

        Args:
            identifier: Stable outfit/style identifier
            request: An OutfitPreviewRequest or HeadshotPreviewRequest

        Returns:
            Base64 image payload

        Raises:
            BackendError: Generation failed; nothing is cached
        """
        await self.load()

        cached = self._images.get(identifier)
        if cached:
            logger.debug(f"Preview cache hit: {identifier}")
            return cached

        task = self._inflight.get(identifier)
        if task is None:
            task = asyncio.get_running_loop().create_task(
                self._generate(identifier, request)
            )
            self._inflight[identifier] = task
        else:
            logger.debug(f"Joining in-flight preview generation: {identifier}")

        # A cancelled waiter must not cancel the shared generation
        return await asyncio.shield(task)

    async def _generate(self, identifier: str, request: Any) -> str:
        epoch = self._epoch
        task = asyncio.current_task()
        try:
            logger.info(f"Generating preview: {identifier}")
            try:
                image = await self.backend.generate_preview(
                    request.endpoint, request.to_payload()
                )
            except Exception as e:
                logger.warning(f"Preview generation failed for {identifier}: {e}")
                raise

            if epoch != self._epoch:
                logger.info(f"Cache cleared during generation; not storing {identifier}")
                return image

            self._images[identifier] = image
            try:
                await self.store.merge_json(
                    storage_ops.KEY_GENERATED_IMAGES, {identifier: image}
                )
            except Exception as e:
                logger.warning(f"Failed to persist preview {identifier}: {e}")
        finally:
            if self._inflight.get(identifier) is task:
                del self._inflight[identifier]

        if self.telemetry:
            self.telemetry.capture("outfit_image_generated", {"identifier": identifier})
        return image

    async def clear(self) -> None:
        """Drop every preview. In-flight generations finish but are not stored."""
        self._epoch += 1
        self._inflight.clear()
        self._images.clear()
        await self.store.remove_item(storage_ops.KEY_GENERATED_IMAGES)
