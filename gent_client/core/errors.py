"""Error taxonomy shared by the analysis pipeline and backend helpers."""

from typing import Iterable, List, Optional

DEFAULT_ANALYSIS_MESSAGE = "Something went wrong. Please try again."


class AnalysisError(Exception):
    """Base class for failures that end an analysis attempt.

    ``user_message`` is what the presentation layer shows next to the
    retry affordance.
    """

    default_message = DEFAULT_ANALYSIS_MESSAGE

    def __init__(self, message: Optional[str] = None):
        self.user_message = message or self.default_message
        super().__init__(self.user_message)


class MissingInputError(AnalysisError):
    default_message = "Missing images. Please complete all scans."

    def __init__(self, missing_slots: Iterable[str], message: Optional[str] = None):
        self.missing_slots: List[str] = list(missing_slots)
        super().__init__(message)


class ImagePreparationError(AnalysisError):
    default_message = "We couldn't process your photos. Please retake them."


class ImageValidationError(AnalysisError):
    default_message = "Image validation failed. Please retake your photos."

    def __init__(self, reasons: Iterable[str]):
        self.reasons: List[str] = [str(reason) for reason in reasons if reason]
        super().__init__("\n\n".join(self.reasons) or None)


class AnalysisTimeoutError(AnalysisError):
    default_message = "Analysis took too long. Please try again."


class AnalysisServiceError(AnalysisError):
    default_message = "Analysis failed. Please try again."

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ResultPersistenceError(AnalysisError):
    default_message = "We couldn't save your results. Please try again."


class AttemptInProgressError(Exception):
    """Raised when an analysis attempt is started while another is running."""


class NetworkUnavailableError(Exception):
    """A status or membership fetch failed; callers fall back to cache."""


class BackendError(Exception):
    """Non-analysis backend call failed (previews, membership, OTP)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RequestTimeoutError(BackendError):
    """A backend call exceeded its client-side deadline and was cancelled."""
