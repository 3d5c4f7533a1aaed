"""
Application session context.

Created at app start with ``AppSession.start``, passed explicitly to whatever
needs the signed-in user, and torn down at logout with ``teardown``.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from gent_client.config import logger
from gent_client.core import storage_ops
from gent_client.core.auth import PhoneVerifier, VerificationResult, format_phone
from gent_client.core.backend import BackendClient
from gent_client.core.errors import BackendError
from gent_client.core.storage_ops import KeyValueStore
from gent_client.core.telemetry import Telemetry

CODE_PATTERN = re.compile(r"^\d{6}$")


@dataclass
class AppSession:
    store: KeyValueStore
    verifier: PhoneVerifier
    telemetry: Optional[Telemetry] = None
    authenticated: bool = False
    phone: Optional[str] = None
    first_name: Optional[str] = None
    uid: Optional[str] = None
    _pending_phone: Optional[str] = field(default=None, repr=False)

    @classmethod
    async def start(
        cls,
        store: KeyValueStore,
        verifier: PhoneVerifier,
        telemetry: Optional[Telemetry] = None,
    ) -> "AppSession":
        """Restore the signed-in state persisted by a previous run."""
        session = cls(store=store, verifier=verifier, telemetry=telemetry)
        session.authenticated = await store.get_flag(storage_ops.KEY_AUTHENTICATED)
        session.phone = await store.get_item(storage_ops.KEY_PHONE)
        session.first_name = await store.get_item(storage_ops.KEY_FIRST_NAME)

        if session.authenticated and session.phone and telemetry:
            await telemetry.identify(session.phone)

        logger.info(
            "Session started",
            extra={"authenticated": session.authenticated, "verifier": verifier.name},
        )
        return session

    async def request_code(
        self, phone: str, first_name: Optional[str] = None
    ) -> VerificationResult:
        if first_name and first_name.strip():
            self.first_name = first_name.strip()
            await self.store.set_item(storage_ops.KEY_FIRST_NAME, self.first_name)

        result = await self.verifier.request_code(phone)
        if result.success:
            self._pending_phone = format_phone(phone)
        return result

    async def confirm_code(
        self, code: str, backend: BackendClient
    ) -> VerificationResult:
        """
        Confirm a verification code and persist the signed-in state.

        Args:
            code: The 6-digit code the user received
            backend: Used to sync Firebase-verified users to the backend

        Returns:
            VerificationResult; ``user`` carries the backend profile when known
        """
        code = code.strip()
        if not CODE_PATTERN.match(code):
            return VerificationResult(
                success=False, error="Please enter the complete 6-digit code"
            )

        result = await self.verifier.confirm_code(code)
        if not result.success:
            return result

        user = dict(result.user or {})
        phone = self._pending_phone or user.get("phoneNumber") or ""
        profile: Dict[str, Any] = user

        if self.verifier.syncs_backend_user:
            try:
                synced = await backend.sync_firebase_user(phone, user.get("uid") or "")
                profile = {**user, **(synced.get("user") or {})}
            except BackendError as e:
                logger.warning(f"Backend user sync failed: {e}")

        await self.store.set_flag(storage_ops.KEY_AUTHENTICATED, True)
        await self.store.set_item(storage_ops.KEY_PHONE, phone)
        await self.store.set_flag(storage_ops.KEY_IS_PREMIUM, bool(profile.get("is_premium")))
        await self.store.set_flag(storage_ops.KEY_IS_VERIFIED, True)
        await self.store.set_flag(
            storage_ops.KEY_HAS_COMPLETED_ANALYSIS,
            bool(profile.get("has_completed_analysis")),
        )

        self.authenticated = True
        self.phone = phone
        self.uid = user.get("uid")
        self._pending_phone = None

        if self.telemetry:
            self.telemetry.capture("signup_completed", {"phone": phone})
            await self.telemetry.identify(phone)

        logger.info("User signed in", extra={"verifier": self.verifier.name})
        return VerificationResult(success=True, user=profile)

    async def teardown(self) -> None:
        """Sign out: drop session keys only, analysis data stays on device."""
        await self.store.multi_remove(storage_ops.SESSION_KEYS)
        self.verifier.reset()
        if self.telemetry:
            await self.telemetry.reset()

        self.authenticated = False
        self.phone = None
        self.first_name = None
        self.uid = None
        self._pending_phone = None
        logger.info("Session torn down")
