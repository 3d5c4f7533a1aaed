"""
Storage operations module for device-local state.
Handles the durable key-value store and the three ephemeral capture slots.
"""

import json
import os
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from gent_client.config import logger


# -------------------------
# Persisted keys
# -------------------------
KEY_AUTHENTICATED = "sgc_authenticated"
KEY_PHONE = "sgc_phone"
KEY_FIRST_NAME = "user_first_name"
KEY_IS_PREMIUM = "sgc_is_premium"
KEY_IS_VERIFIED = "sgc_is_verified"
KEY_EMAIL = "sgc_email"
KEY_EMAIL_VERIFIED = "sgc_email_verified"
KEY_MEMBERSHIP_TIER = "sgc_membership_tier"
KEY_HAS_COMPLETED_ANALYSIS = "sgc_has_completed_analysis"
KEY_ANALYSIS_RESULT = "sgc_brain_result"
KEY_GENERATED_IMAGES = "sgc_generated_images"
KEY_DISTINCT_ID = "posthog_distinct_id"

# Cleared at logout. Analysis data survives.
SESSION_KEYS = (
    KEY_AUTHENTICATED,
    KEY_PHONE,
    KEY_IS_PREMIUM,
    KEY_IS_VERIFIED,
    KEY_EMAIL,
    KEY_FIRST_NAME,
    KEY_MEMBERSHIP_TIER,
)

ANALYSIS_KEYS = (
    KEY_HAS_COMPLETED_ANALYSIS,
    KEY_ANALYSIS_RESULT,
    KEY_GENERATED_IMAGES,
)


class Slot(str, Enum):
    """Capture categories, in capture order."""

    FACE = "face"
    BODY = "body"
    SKIN = "skin"

    @property
    def storage_key(self) -> str:
        return f"sgc_image_{self.value}_uri"


CAPTURE_SEQUENCE = (Slot.FACE, Slot.BODY, Slot.SKIN)


class KeyValueStore(ABC):
    """Async string key-value store, modelled on the device's local storage."""

    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def multi_remove(self, keys: Iterable[str]) -> None:
        ...

    @abstractmethod
    async def clear(self) -> None:
        ...

    async def remove_item(self, key: str) -> None:
        await self.multi_remove([key])

    async def get_flag(self, key: str) -> bool:
        return (await self.get_item(key)) == "true"

    async def set_flag(self, key: str, value: bool) -> None:
        await self.set_item(key, "true" if value else "false")

    async def get_json(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the stored JSON object, or None when absent or unreadable."""
        raw = await self.get_item(key)
        if raw is None:
            return None

        try:
            value = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Discarding unreadable JSON under key: {key}")
            return None

        if not isinstance(value, dict):
            logger.warning(f"Discarding non-object JSON under key: {key}")
            return None

        return value

    async def set_json(self, key: str, value: Dict[str, Any]) -> None:
        await self.set_item(key, json.dumps(value))

    async def merge_json(self, key: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Merge ``updates`` into the stored object instead of replacing it."""
        current = await self.get_json(key) or {}
        current.update(updates)
        await self.set_json(key, current)
        return current


class MemoryStore(KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        data = dict(self._data)
        data[key] = value
        self._commit(data)

    async def multi_remove(self, keys: Iterable[str]) -> None:
        data = dict(self._data)
        for key in keys:
            data.pop(key, None)
        self._commit(data)

    async def clear(self) -> None:
        self._commit({})

    def snapshot(self) -> Dict[str, str]:
        return dict(self._data)

    def _commit(self, data: Dict[str, str]) -> None:
        # a failed write leaves the previous contents readable
        self._persist(data)
        self._data = data

    def _persist(self, data: Dict[str, str]) -> None:
        pass


class JsonFileStore(MemoryStore):
    """Memory store with write-through to a single JSON file."""

    def __init__(self, path: str):
        self.path = Path(path)
        super().__init__(self._load())

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read key-value store {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.error(f"Key-value store {self.path} is not an object; starting empty")
            return {}

        return {str(k): str(v) for k, v in data.items()}

    def _persist(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data), encoding="utf-8")
        os.replace(tmp_path, self.path)


# -------------------------
# Ephemeral capture slots
# -------------------------
async def save_slot(store: KeyValueStore, slot: Slot, uri: str) -> None:
    """Store a capture reference. Last write wins."""
    await store.set_item(slot.storage_key, uri)
    logger.debug(f"Stored {slot.value} capture reference")


async def read_slots(store: KeyValueStore) -> Dict[Slot, Optional[str]]:
    return {slot: await store.get_item(slot.storage_key) for slot in CAPTURE_SEQUENCE}


async def slots_empty(store: KeyValueStore) -> bool:
    slots = await read_slots(store)
    return all(uri is None for uri in slots.values())


async def clear_slots(
    store: KeyValueStore, capture_dir: Optional[Path] = None
) -> None:
    """
    Drop all three capture references.

    Args:
        store: Key-value store holding the references
        capture_dir: When given, referenced files inside this directory are deleted too
    """
    slots = await read_slots(store)
    await store.multi_remove([slot.storage_key for slot in CAPTURE_SEQUENCE])

    if capture_dir is None:
        return

    for uri in slots.values():
        if uri:
            discard_capture_file(uri, capture_dir)


def discard_capture_file(uri: str, capture_dir: Path) -> None:
    """Delete a capture file, but only one that lives under ``capture_dir``."""
    root = Path(capture_dir).resolve()
    path = Path(uri.removeprefix("file://")).resolve()
    if root not in path.parents:
        return
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Failed to delete capture {path}: {e}")
