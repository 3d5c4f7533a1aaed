"""Premium unlock, analysis reset and regeneration quota."""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from gent_client.config import logger
from gent_client.core import storage_ops
from gent_client.core.backend import BackendClient
from gent_client.core.errors import BackendError
from gent_client.core.preview_cache import GeneratedImageCache
from gent_client.core.status_resolver import TIER_TRANSFORMATION
from gent_client.core.storage_ops import KeyValueStore
from gent_client.services import profile_service

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

INVALID_EMAIL_MESSAGE = "Please enter a valid email address"
NOT_A_MEMBER_MESSAGE = "Please use your registered email ID which you used for purchase"
UNLOCK_FAILED_MESSAGE = "Failed to unlock premium access."
CONNECTION_ERROR_MESSAGE = "Connection error. Please try again."

NEXT_RESULTS = "results"
NEXT_ANALYSIS_INTRO = "analysis-intro"


@dataclass
class UnlockOutcome:
    success: bool
    error: Optional[str] = None
    membership_tier: Optional[str] = None
    next_step: Optional[str] = None


async def unlock_premium(
    store: KeyValueStore, backend: BackendClient, email: str
) -> UnlockOutcome:
    """
    Verify a purchase email and unlock premium locally.

    Routes to results when a completed analysis is cached, else to the
    analysis intro.
    """
    email = email.lower().strip()
    if not EMAIL_PATTERN.match(email):
        return UnlockOutcome(success=False, error=INVALID_EMAIL_MESSAGE)

    try:
        membership = await backend.check_membership(email)
        if not membership.get("is_member"):
            return UnlockOutcome(success=False, error=NOT_A_MEMBER_MESSAGE)

        unlocked = await backend.unlock_premium(email)
    except BackendError as e:
        logger.error(f"Premium unlock failed: {e}")
        return UnlockOutcome(success=False, error=CONNECTION_ERROR_MESSAGE)

    if not unlocked.get("success"):
        return UnlockOutcome(
            success=False, error=unlocked.get("message") or UNLOCK_FAILED_MESSAGE
        )

    plan = (membership.get("membership") or {}).get("plan")
    tier = unlocked.get("membership_tier") or plan or TIER_TRANSFORMATION

    await store.set_flag(storage_ops.KEY_IS_PREMIUM, True)
    await store.set_item(storage_ops.KEY_EMAIL, email)
    await store.set_flag(storage_ops.KEY_EMAIL_VERIFIED, True)
    await store.set_item(storage_ops.KEY_MEMBERSHIP_TIER, tier)

    phone = await store.get_item(storage_ops.KEY_PHONE)
    if phone:
        try:
            await backend.update_membership(phone, tier)
        except BackendError as e:
            logger.warning(f"Failed to update tier in backend: {e}")

    has_result = await profile_service.read_local_result(store) is not None
    next_step = NEXT_RESULTS if has_result else NEXT_ANALYSIS_INTRO

    logger.info("Premium unlocked", extra={"tier": tier, "next_step": next_step})
    return UnlockOutcome(success=True, membership_tier=tier, next_step=next_step)


async def analysis_mode(
    store: KeyValueStore, backend: BackendClient
) -> Optional[Dict[str, Any]]:
    """Regeneration quota for the stored user, or None when unknown."""
    phone = await store.get_item(storage_ops.KEY_PHONE)
    if not phone:
        return None
    try:
        return await backend.analysis_mode(phone)
    except BackendError as e:
        logger.info(f"Analysis mode unavailable: {e}")
        return None


async def force_reset(
    store: KeyValueStore,
    backend: BackendClient,
    cache: GeneratedImageCache,
    capture_dir: Optional[Path] = None,
) -> None:
    """
    Wipe the user's analysis on the backend, then locally.

    Raises:
        BackendError: No stored phone, or the backend refused the reset
    """
    phone = await store.get_item(storage_ops.KEY_PHONE)
    if not phone:
        raise BackendError("No phone number found")

    await backend.force_reset(phone)

    await store.multi_remove(storage_ops.ANALYSIS_KEYS)
    await storage_ops.clear_slots(store, capture_dir)
    await cache.clear()
    logger.info("Analysis reset")
