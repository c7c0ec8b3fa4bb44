"""
Error codes and exception types shared by the admission layer, the stores
and the generation pipeline.
"""
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(str, Enum):
    # Client / admission
    INVALID_REQUEST = "INVALID_REQUEST"
    DUPLICATE_REQUEST = "DUPLICATE_REQUEST"
    RATE_LIMITED = "RATE_LIMITED"

    # Batch-fatal
    OPENAI_ERROR = "OPENAI_ERROR"
    ELEVEN_LABS_ERROR = "ELEVEN_LABS_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"
    NO_PINS_GENERATED = "NO_PINS_GENERATED"

    # Partial failures
    PARTIAL_CONTENT_FAILURE = "PARTIAL_CONTENT_FAILURE"
    PARTIAL_AUDIO_FAILURE = "PARTIAL_AUDIO_FAILURE"


def job_error(
    code: ErrorCode,
    message: str,
    *,
    retryable: bool = True,
    failed_pins: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Build the persisted error payload stored on a job."""
    err: Dict[str, Any] = {"code": code.value, "message": message, "retryable": retryable}
    if failed_pins is not None:
        err["failedPins"] = list(failed_pins)
    return err


def classify_fatal_error(exc: BaseException) -> ErrorCode:
    """Pick an error code for an exception that escaped the per-pin scope."""
    message = str(exc)
    if "OpenAI" in message:
        return ErrorCode.OPENAI_ERROR
    if "Eleven Labs" in message or "ElevenLabs" in message:
        return ErrorCode.ELEVEN_LABS_ERROR
    return ErrorCode.STORAGE_ERROR


# ----- Provider errors (always pin-scoped) -----

class ContentGenerationError(RuntimeError):
    pass


class NarrationError(RuntimeError):
    pass


# ----- Store errors -----

class JobNotFoundError(LookupError):
    pass


class JobStateError(RuntimeError):
    """Raised when a terminal job would be mutated."""


class CollectionNotFoundError(LookupError):
    pass


# ----- Admission errors (rendered as JSON by main.py) -----

class AdmissionError(Exception):
    status_code = 400
    code = ErrorCode.INVALID_REQUEST

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def payload(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "code": self.code.value}
        body.update(self.extra)
        return body

    def headers(self) -> Optional[Dict[str, str]]:
        return None


class InvalidRequestError(AdmissionError):
    status_code = 400
    code = ErrorCode.INVALID_REQUEST


class DuplicateRequestError(AdmissionError):
    status_code = 409
    code = ErrorCode.DUPLICATE_REQUEST


class RateLimitedError(AdmissionError):
    status_code = 429
    code = ErrorCode.RATE_LIMITED

    def headers(self) -> Optional[Dict[str, str]]:
        retry_after = self.extra.get("retryAfter")
        if retry_after is None:
            return None
        return {"Retry-After": str(retry_after)}
