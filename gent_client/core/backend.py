"""
HTTP client for the style backend.

Every call opens a short-lived ``httpx.AsyncClient`` and is bounded by
``asyncio.wait_for`` so a missed deadline cancels the request in flight.
"""

import asyncio
from typing import Any, Dict, List, Optional

import httpx

from gent_client.config import (
    BACKEND_URL,
    CHAT_TIMEOUT_SECONDS,
    PREVIEW_TIMEOUT_SECONDS,
    STATUS_TIMEOUT_SECONDS,
    logger,
)
from gent_client.core.errors import (
    AnalysisServiceError,
    AnalysisTimeoutError,
    BackendError,
    ImageValidationError,
    NetworkUnavailableError,
    RequestTimeoutError,
)

ANALYZE_PATH = "/api/sgc-brain/analyze"
ANALYSIS_STATUS_PATH = "/api/sgc-brain/status"
ANALYSIS_MODE_PATH = "/api/sgc-brain/analysis-mode"
FORCE_RESET_PATH = "/api/sgc-brain/force-reset"
OUTFIT_PREVIEW_PATH = "/api/sgc-brain/generate-single-image"
HEADSHOT_PREVIEW_PATH = "/api/sgc-brain/generate-headshot-image"
USER_STATUS_PATH = "/api/user/status"
LEGACY_STATUS_PATH = "/api/auth/user-status"
CHAT_PATH = "/api/ai-stylist/chat"
SEND_OTP_PATH = "/api/auth/send-otp"
VERIFY_OTP_PATH = "/api/auth/verify-otp"
FIREBASE_USER_PATH = "/api/auth/firebase-user"
CHECK_MEMBERSHIP_PATH = "/api/auth/check-membership"
UNLOCK_PREMIUM_PATH = "/api/auth/unlock-premium"
UPDATE_MEMBERSHIP_PATH = "/api/user/update-membership"

VALIDATION_FAILED_MARKER = "IMAGE_VALIDATION_FAILED"
DEFAULT_REQUEST_TIMEOUT = 15.0

_TIMEOUT_ERRORS = (asyncio.TimeoutError, httpx.TimeoutException)


def backend_phone(phone: Optional[str]) -> Optional[str]:
    """Strip the country prefix the backend does not store (``+1``, then ``+``)."""
    if not phone:
        return None
    cleaned = phone.strip()
    if cleaned.startswith("+1"):
        cleaned = cleaned[2:]
    return cleaned.lstrip("+") or None


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _detail_message(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    detail = body.get("detail")
    if isinstance(detail, str):
        return detail
    if isinstance(detail, dict) and isinstance(detail.get("message"), str):
        return detail["message"]
    for key in ("message", "error"):
        if isinstance(body.get(key), str):
            return body[key]
    return None


def _analysis_failure(response: httpx.Response) -> Exception:
    """Map a non-2xx analysis response to the matching error."""
    body = _safe_json(response)
    detail = body.get("detail") if isinstance(body, dict) else None

    if isinstance(detail, dict) and detail.get("error") == VALIDATION_FAILED_MARKER:
        messages = detail.get("messages") or []
        if isinstance(messages, str):
            messages = [messages]
        return ImageValidationError(messages)

    return AnalysisServiceError(_detail_message(body), status_code=response.status_code)


class BackendClient:
    """Thin async wrapper over the backend's HTTP+JSON contract."""

    def __init__(
        self,
        base_url: str = BACKEND_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        status_timeout: float = STATUS_TIMEOUT_SECONDS,
        preview_timeout: float = PREVIEW_TIMEOUT_SECONDS,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.status_timeout = status_timeout
        self.preview_timeout = preview_timeout
        self.request_timeout = request_timeout
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=self._transport,
        )

    async def _send(
        self, method: str, path: str, timeout: float, **kwargs: Any
    ) -> httpx.Response:
        async with self._client(timeout) as client:
            return await asyncio.wait_for(
                client.request(method, path, **kwargs), timeout=timeout
            )

    async def _post_json(
        self, path: str, payload: Dict[str, Any], timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """POST and return the JSON object body, raising BackendError otherwise."""
        timeout = timeout or self.request_timeout
        try:
            response = await self._send("POST", path, timeout, json=payload)
        except _TIMEOUT_ERRORS as exc:
            raise RequestTimeoutError(f"Request to {path} timed out after {timeout}s") from exc
        except httpx.RequestError as exc:
            raise BackendError(f"Network error calling {path}: {exc}") from exc

        body = _safe_json(response)
        if not response.is_success:
            message = _detail_message(body) or f"HTTP {response.status_code}"
            raise BackendError(message, status_code=response.status_code)

        if not isinstance(body, dict):
            raise BackendError(f"Malformed response from {path}", status_code=response.status_code)

        return body

    # -------------------------
    # Analysis
    # -------------------------
    async def analyze(
        self, images: List[str], phone: Optional[str], timeout: float
    ) -> Dict[str, Any]:
        """
        Submit the three encoded photos for analysis.

        Args:
            images: Base64 payloads in face, body, skin order
            phone: Optional user identifier
            timeout: Total deadline in seconds; the request is cancelled when exceeded

        Returns:
            The decoded response body

        Raises:
            AnalysisTimeoutError: Deadline exceeded
            ImageValidationError: Backend rejected the photos
            AnalysisServiceError: Any other failure or a malformed body
        """
        payload = {"images": images, "phone": backend_phone(phone)}

        logger.info(f"Submitting {len(images)} image(s) for analysis")
        try:
            response = await self._send("POST", ANALYZE_PATH, timeout, json=payload)
        except _TIMEOUT_ERRORS as exc:
            logger.warning(f"Analysis request cancelled after {timeout}s")
            raise AnalysisTimeoutError() from exc
        except httpx.RequestError as exc:
            logger.error(f"Network error calling analysis: {exc}")
            raise AnalysisServiceError(
                "Unable to reach the analysis service. Please check your connection and try again."
            ) from exc

        if not response.is_success:
            logger.warning(f"Analysis returned HTTP {response.status_code}")
            raise _analysis_failure(response)

        body = _safe_json(response)
        if not isinstance(body, dict):
            raise AnalysisServiceError(status_code=response.status_code)

        return body

    async def fetch_analysis(self, phone: str) -> Dict[str, Any]:
        return await self._post_json(ANALYSIS_STATUS_PATH, {"phone": backend_phone(phone)})

    async def analysis_mode(self, phone: str) -> Dict[str, Any]:
        return await self._post_json(ANALYSIS_MODE_PATH, {"phone": backend_phone(phone)})

    async def force_reset(self, phone: str) -> Dict[str, Any]:
        return await self._post_json(
            FORCE_RESET_PATH, {"phone": backend_phone(phone), "confirm": True}
        )

    # -------------------------
    # Status
    # -------------------------
    async def _fetch_status(self, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = await self._send("GET", path, self.status_timeout, **kwargs)
        except _TIMEOUT_ERRORS as exc:
            raise NetworkUnavailableError(f"{path} timed out") from exc
        except httpx.HTTPError as exc:
            raise NetworkUnavailableError(f"{path} unreachable: {exc}") from exc

        if not response.is_success:
            raise NetworkUnavailableError(f"{path} returned HTTP {response.status_code}")

        body = _safe_json(response)
        if not isinstance(body, dict):
            raise NetworkUnavailableError(f"{path} returned a malformed body")
        return body

    async def get_user_status(self, phone: str) -> Dict[str, Any]:
        return await self._fetch_status(
            USER_STATUS_PATH, params={"phone": backend_phone(phone)}
        )

    async def get_legacy_status(self) -> Dict[str, Any]:
        return await self._fetch_status(LEGACY_STATUS_PATH)

    # -------------------------
    # Previews and chat
    # -------------------------
    async def generate_preview(self, path: str, payload: Dict[str, Any]) -> str:
        """Request one generated preview image and return its base64 payload."""
        body = await self._post_json(path, payload, timeout=self.preview_timeout)
        image = body.get("image_base64")
        if not body.get("success") or not image:
            raise BackendError(
                _detail_message(body) or "Preview generation returned no image"
            )
        return image

    async def chat(
        self,
        message: str,
        history: List[Dict[str, str]],
        phone: Optional[str],
        timeout: float = CHAT_TIMEOUT_SECONDS,
    ) -> str:
        body = await self._post_json(
            CHAT_PATH,
            {"message": message, "history": history, "phone": backend_phone(phone)},
            timeout=timeout,
        )
        reply = body.get("response")
        if not isinstance(reply, str):
            raise BackendError("Chat response missing text")
        return reply

    # -------------------------
    # Auth and membership
    # -------------------------
    async def send_otp(self, phone: str, country_code: str) -> Dict[str, Any]:
        return await self._post_json(
            SEND_OTP_PATH, {"phone": phone, "country_code": country_code}
        )

    async def verify_otp(self, phone: str, otp: str) -> Dict[str, Any]:
        return await self._post_json(VERIFY_OTP_PATH, {"phone": phone, "otp": otp})

    async def sync_firebase_user(self, phone: str, firebase_uid: str) -> Dict[str, Any]:
        return await self._post_json(
            FIREBASE_USER_PATH, {"phone": phone, "firebase_uid": firebase_uid}
        )

    async def check_membership(self, email: str) -> Dict[str, Any]:
        return await self._post_json(CHECK_MEMBERSHIP_PATH, {"email": email})

    async def unlock_premium(self, email: str) -> Dict[str, Any]:
        return await self._post_json(UNLOCK_PREMIUM_PATH, {"email": email})

    async def update_membership(self, phone: str, tier: str) -> Dict[str, Any]:
        return await self._post_json(
            UPDATE_MEMBERSHIP_PATH, {"phone": backend_phone(phone), "tier": tier}
        )
