"""Application error types rendered as `{"error": code, ...}` JSON bodies."""

from __future__ import annotations

from typing import Any, Dict, Optional


class AppError(Exception):
    """Base error carrying an HTTP status, a stable code and extra response fields."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        if code:
            self.code = code
        self.message = message or self.code
        self.extra = dict(extra or {})
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code}
        payload.update(self.extra)
        return payload


class Unauthorized(AppError):
    status_code = 401
    code = "unauthorized"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Session verification failed: {reason}", extra={"reason": reason})


class Forbidden(AppError):
    status_code = 403
    code = "not_subscribed"

    def __init__(self, channel: str) -> None:
        super().__init__(f"Subscription to {channel} is required", extra={"channel": channel})


class InsufficientCredits(AppError):
    status_code = 402
    code = "no_credits"

    def __init__(self, credits: int = 0) -> None:
        super().__init__("Not enough credits", extra={"credits": credits})


class PromptRequired(AppError):
    status_code = 400
    code = "prompt_required"


class PromptTooLong(AppError):
    status_code = 400
    code = "prompt_too_long"

    def __init__(self, max_length: int) -> None:
        super().__init__("Prompt is too long", extra={"max_length": max_length})


class InvalidAspectRatio(AppError):
    status_code = 400
    code = "bad_aspect_ratio"

    def __init__(self, allowed: list) -> None:
        super().__init__("Unsupported aspect ratio", extra={"allowed": allowed})


class PackNotFound(AppError):
    status_code = 400
    code = "unknown_pack"


class RateLimited(AppError):
    status_code = 429
    code = "rate_limited"

    def __init__(self, scope: str, retry_after: int) -> None:
        super().__init__(
            f"Too many {scope} requests",
            extra={"scope": scope, "retry_after": retry_after},
        )


class ConfigurationError(AppError):
    """A required setting is missing; raised before any side effect."""

    status_code = 500

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message, code=code)


class InvoiceError(AppError):
    status_code = 500
    code = "invoice_failed"


class GenerationError(AppError):
    """Unexpected failure while submitting or polling; the debit has been refunded."""

    status_code = 500
    code = "gen_error"

    def __init__(self, message: str) -> None:
        super().__init__(message, extra={"message": message})


class ProviderError(GenerationError):
    """Image provider answered with a non-success response."""


class GenerationFailed(AppError):
    """Provider reported the task as FAILED; the debit has been refunded."""

    status_code = 500
    code = "gen_failed"

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Generation task {task_id} failed", extra={"task_id": task_id})
