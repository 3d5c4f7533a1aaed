"""
User status resolution.

Local cache is read first and is the answer if every remote fetch fails.
The primary ``/api/user/status`` record replaces cached premium and tier;
the legacy ``/api/auth/user-status`` flags are OR-ed on top. Remote results
are merged together so the order they arrive in does not matter.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional

from gent_client.config import logger
from gent_client.core import storage_ops
from gent_client.core.backend import BackendClient
from gent_client.core.storage_ops import KeyValueStore

TIER_FREE = "free"
TIER_TRANSFORMATION = "transformation"
TIER_LIFESTYLE = "lifestyle"
PREMIUM_TIERS = frozenset({TIER_TRANSFORMATION, TIER_LIFESTYLE})


@dataclass(frozen=True)
class StatusSnapshot:
    is_premium: bool = False
    membership_tier: str = TIER_FREE
    has_completed_analysis: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_premium": self.is_premium,
            "membership_tier": self.membership_tier,
            "has_completed_analysis": self.has_completed_analysis,
        }


@dataclass(frozen=True)
class PrimaryStatus:
    is_premium: bool
    membership_tier: str

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> Optional["PrimaryStatus"]:
        """Return None unless the backend recognised the user."""
        if not data.get("found"):
            return None
        tier = data.get("membership_tier") or TIER_FREE
        premium = bool(data.get("is_premium")) or tier in PREMIUM_TIERS
        return cls(is_premium=premium, membership_tier=str(tier))


@dataclass(frozen=True)
class LegacyStatus:
    is_premium: bool
    has_completed_analysis: bool

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "LegacyStatus":
        return cls(
            is_premium=bool(data.get("is_premium")),
            has_completed_analysis=bool(data.get("has_completed_analysis")),
        )


def merge_status(
    cached: StatusSnapshot,
    primary: Optional[PrimaryStatus] = None,
    legacy: Optional[LegacyStatus] = None,
) -> StatusSnapshot:
    """Combine cache and remote observations. Any source asserting true wins."""
    premium = primary.is_premium if primary else cached.is_premium
    tier = primary.membership_tier if primary else cached.membership_tier
    complete = cached.has_completed_analysis

    if legacy:
        premium = premium or legacy.is_premium
        complete = complete or legacy.has_completed_analysis

    return StatusSnapshot(
        is_premium=premium,
        membership_tier=tier,
        has_completed_analysis=complete,
    )


async def read_cached_status(store: KeyValueStore) -> StatusSnapshot:
    tier = await store.get_item(storage_ops.KEY_MEMBERSHIP_TIER)
    return StatusSnapshot(
        is_premium=await store.get_flag(storage_ops.KEY_IS_PREMIUM),
        membership_tier=tier or TIER_FREE,
        has_completed_analysis=await store.get_flag(storage_ops.KEY_HAS_COMPLETED_ANALYSIS),
    )


class StatusResolver:
    def __init__(self, store: KeyValueStore, backend: BackendClient):
        self.store = store
        self.backend = backend

    async def resolve(self, phone: Optional[str] = None) -> StatusSnapshot:
        """Produce one snapshot for gating premium UI. Never raises on network failure."""
        cached = await read_cached_status(self.store)
        phone = phone or await self.store.get_item(storage_ops.KEY_PHONE)

        primary_result, legacy_result = await asyncio.gather(
            self._fetch_primary(phone),
            self.backend.get_legacy_status(),
            return_exceptions=True,
        )

        primary: Optional[PrimaryStatus] = None
        if isinstance(primary_result, BaseException):
            logger.info(f"Primary status unavailable, using cache: {primary_result}")
        elif primary_result is not None:
            primary = PrimaryStatus.from_response(primary_result)

        legacy: Optional[LegacyStatus] = None
        if isinstance(legacy_result, BaseException):
            logger.info(f"Legacy status unavailable, using cache: {legacy_result}")
        else:
            legacy = LegacyStatus.from_response(legacy_result)

        snapshot = merge_status(cached, primary, legacy)
        await self._persist(snapshot, primary, legacy)

        logger.debug(f"Resolved status: {snapshot.to_dict()}")
        return snapshot

    async def _fetch_primary(self, phone: Optional[str]) -> Optional[Dict[str, Any]]:
        if not phone:
            return None
        return await self.backend.get_user_status(phone)

    async def _persist(
        self,
        snapshot: StatusSnapshot,
        primary: Optional[PrimaryStatus],
        legacy: Optional[LegacyStatus],
    ) -> None:
        try:
            if primary:
                await self.store.set_item(
                    storage_ops.KEY_MEMBERSHIP_TIER, snapshot.membership_tier
                )
            if primary or legacy:
                await self.store.set_flag(storage_ops.KEY_IS_PREMIUM, snapshot.is_premium)
            if legacy:
                await self.store.set_flag(
                    storage_ops.KEY_HAS_COMPLETED_ANALYSIS,
                    snapshot.has_completed_analysis,
                )
        except Exception as e:
            logger.warning(f"Failed to persist resolved status: {e}")
