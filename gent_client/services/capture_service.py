"""Capture steps: face, then body, then skin, then processing."""

import asyncio
from pathlib import Path
from typing import Optional, Union

from gent_client.config import logger
from gent_client.core import storage_ops
from gent_client.core.image_prep import resize_capture
from gent_client.core.storage_ops import CAPTURE_SEQUENCE, KeyValueStore, Slot

PROCESSING_STEP = "processing"


def next_step(slot: Slot) -> str:
    """Where the flow goes after ``slot`` has been captured."""
    position = CAPTURE_SEQUENCE.index(slot)
    if position + 1 < len(CAPTURE_SEQUENCE):
        return CAPTURE_SEQUENCE[position + 1].value
    return PROCESSING_STEP


async def capture_slot(
    store: KeyValueStore,
    slot: Slot,
    image: Union[bytes, str, Path],
    capture_dir: Union[str, Path],
) -> str:
    """
    Resize a captured photo, keep only its local path in the slot.

    Args:
        store: Key-value store holding the slot references
        slot: Which capture this is
        image: Raw bytes from the camera or a path to the photo
        capture_dir: Directory for resized captures

    Returns:
        The next step name (``body``, ``skin`` or ``processing``)

    Raises:
        ImagePreparationError: The photo could not be decoded or written
    """
    previous: Optional[str] = await store.get_item(slot.storage_key)
    uri = await asyncio.to_thread(resize_capture, image, capture_dir, slot.value)
    await storage_ops.save_slot(store, slot, uri)

    if previous and previous != uri:
        storage_ops.discard_capture_file(previous, Path(capture_dir))

    step = next_step(slot)
    logger.info(f"{slot.value} captured, next step: {step}")
    return step
