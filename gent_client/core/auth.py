"""
Phone verification module.
One interface, two variants: Firebase Identity Toolkit (REST) and the
backend's own OTP endpoints. ``select_verifier`` picks one at startup.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from gent_client.config import AUTH_PROVIDER, FIREBASE_API_KEY, logger
from gent_client.core.backend import BackendClient
from gent_client.core.errors import BackendError

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
FIREBASE_TIMEOUT_SECONDS = 15.0

NO_CODE_SENT_MESSAGE = "No OTP was sent. Please request a new code."

SEND_ERROR_MESSAGES = {
    "INVALID_PHONE_NUMBER": "Invalid phone number format. Please check and try again.",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "Too many attempts. Please try again later.",
    "QUOTA_EXCEEDED": "SMS quota exceeded. Please try again later.",
    "MISSING_CLIENT_IDENTIFIER": "App verification failed. Please try again.",
    "CAPTCHA_CHECK_FAILED": "App verification failed. Please try again.",
    "MISSING_RECAPTCHA_TOKEN": "App verification failed. Please try again.",
}
DEFAULT_SEND_ERROR = "Failed to send OTP. Please try again."

CONFIRM_ERROR_MESSAGES = {
    "INVALID_CODE": "Invalid verification code. Please check and try again.",
    "CODE_EXPIRED": "Code has expired. Please request a new one.",
    "SESSION_EXPIRED": "Session expired. Please request a new code.",
    "INVALID_SESSION_INFO": "Session expired. Please request a new code.",
}
DEFAULT_CONFIRM_ERROR = "Invalid code. Please try again."


def format_phone(phone: str) -> str:
    """Ensure the number carries a country code prefix."""
    cleaned = phone.strip().replace(" ", "")
    return cleaned if cleaned.startswith("+") else f"+{cleaned}"


@dataclass
class VerificationResult:
    success: bool
    user: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class PhoneVerifier(ABC):
    """Capability set: request a code for a phone, then confirm it."""

    name = "abstract"
    # Firebase users still need a backend record after confirmation
    syncs_backend_user = False

    @abstractmethod
    async def request_code(self, phone: str) -> VerificationResult:
        ...

    @abstractmethod
    async def confirm_code(self, code: str) -> VerificationResult:
        ...

    @abstractmethod
    def reset(self) -> None:
        ...


class FirebasePhoneVerifier(PhoneVerifier):
    name = "firebase"
    syncs_backend_user = True

    def __init__(
        self,
        api_key: str,
        recaptcha_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.recaptcha_token = recaptcha_token
        self._transport = transport
        self._session_info: Optional[str] = None

    async def _call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with httpx.AsyncClient(
            timeout=FIREBASE_TIMEOUT_SECONDS, transport=self._transport
        ) as client:
            response = await asyncio.wait_for(
                client.post(
                    f"{IDENTITY_TOOLKIT_URL}/accounts:{method}",
                    params={"key": self.api_key},
                    json=payload,
                ),
                timeout=FIREBASE_TIMEOUT_SECONDS,
            )

        try:
            body = response.json()
        except ValueError:
            body = {}

        if not response.is_success:
            error = body.get("error", {}) if isinstance(body, dict) else {}
            code = str(error.get("message", "")).split(" ")[0].split(":")[0]
            raise BackendError(code or f"HTTP {response.status_code}", response.status_code)

        return body

    async def request_code(self, phone: str) -> VerificationResult:
        formatted = format_phone(phone)
        payload: Dict[str, Any] = {"phoneNumber": formatted}
        if self.recaptcha_token:
            payload["recaptchaToken"] = self.recaptcha_token

        try:
            body = await self._call("sendVerificationCode", payload)
        except BackendError as exc:
            logger.error(f"Firebase sendVerificationCode failed: {exc}")
            self._session_info = None
            return VerificationResult(
                success=False, error=SEND_ERROR_MESSAGES.get(str(exc), DEFAULT_SEND_ERROR)
            )
        except (asyncio.TimeoutError, httpx.HTTPError) as exc:
            logger.error(f"Firebase sendVerificationCode unreachable: {exc}")
            self._session_info = None
            return VerificationResult(success=False, error=DEFAULT_SEND_ERROR)

        self._session_info = body.get("sessionInfo")
        logger.info(f"OTP sent via Firebase to: {formatted}")
        return VerificationResult(success=True)

    async def confirm_code(self, code: str) -> VerificationResult:
        if not self._session_info:
            return VerificationResult(success=False, error=NO_CODE_SENT_MESSAGE)

        try:
            body = await self._call(
                "signInWithPhoneNumber",
                {"sessionInfo": self._session_info, "code": code},
            )
        except BackendError as exc:
            logger.warning(f"Firebase code confirmation failed: {exc}")
            return VerificationResult(
                success=False,
                error=CONFIRM_ERROR_MESSAGES.get(str(exc), DEFAULT_CONFIRM_ERROR),
            )
        except (asyncio.TimeoutError, httpx.HTTPError) as exc:
            logger.error(f"Firebase signInWithPhoneNumber unreachable: {exc}")
            return VerificationResult(success=False, error=DEFAULT_CONFIRM_ERROR)

        self._session_info = None
        logger.info("OTP verified successfully via Firebase")
        return VerificationResult(
            success=True,
            user={"uid": body.get("localId"), "phoneNumber": body.get("phoneNumber")},
        )

    def reset(self) -> None:
        self._session_info = None


class BackendOtpVerifier(PhoneVerifier):
    name = "backend"

    def __init__(self, backend: BackendClient, default_country_code: str = "+1"):
        self.backend = backend
        self.default_country_code = default_country_code
        self._phone: Optional[str] = None

    def _split(self, phone: str) -> tuple[str, str]:
        formatted = format_phone(phone)
        if formatted.startswith(self.default_country_code):
            return self.default_country_code, formatted[len(self.default_country_code):]
        return self.default_country_code, formatted.lstrip("+")

    async def request_code(self, phone: str) -> VerificationResult:
        country_code, national = self._split(phone)
        try:
            data = await self.backend.send_otp(national, country_code)
        except BackendError as exc:
            logger.error(f"Backend send-otp failed: {exc}")
            return VerificationResult(success=False, error=DEFAULT_SEND_ERROR)

        if not data.get("success"):
            return VerificationResult(success=False, error=data.get("error") or DEFAULT_SEND_ERROR)

        self._phone = format_phone(phone)
        logger.info(f"OTP sent via backend to: {self._phone}")
        return VerificationResult(success=True)

    async def confirm_code(self, code: str) -> VerificationResult:
        if not self._phone:
            return VerificationResult(success=False, error=NO_CODE_SENT_MESSAGE)

        try:
            data = await self.backend.verify_otp(self._phone, code)
        except BackendError as exc:
            logger.warning(f"Backend verify-otp failed: {exc}")
            return VerificationResult(success=False, error=str(exc) or DEFAULT_CONFIRM_ERROR)

        if not data.get("success"):
            return VerificationResult(success=False, error=DEFAULT_CONFIRM_ERROR)

        user = dict(data.get("user") or {})
        user.setdefault("phoneNumber", self._phone)
        self._phone = None
        return VerificationResult(success=True, user=user)

    def reset(self) -> None:
        self._phone = None


def select_verifier(
    backend: BackendClient,
    provider: str = AUTH_PROVIDER,
    firebase_api_key: Optional[str] = FIREBASE_API_KEY,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> PhoneVerifier:
    """Pick the verification variant for this runtime."""
    provider = (provider or "auto").lower()

    if provider == "firebase" or (provider == "auto" and firebase_api_key):
        if not firebase_api_key:
            raise ValueError("AUTH_PROVIDER=firebase requires FIREBASE_API_KEY")
        logger.info("Phone verification: Firebase")
        return FirebasePhoneVerifier(firebase_api_key, transport=transport)

    if provider not in ("auto", "backend"):
        raise ValueError(f"Unknown AUTH_PROVIDER: {provider}")

    logger.info("Phone verification: backend OTP")
    return BackendOtpVerifier(backend)
