"""
Error taxonomy for the payment handlers.

Every error maps to an HTTP status and renders as ``{"error": ..., "detail": ...}``.
``error`` is the short, user-facing string; ``detail`` is machine-oriented and
never carries secrets (see ``redact_secrets``).
"""

import re
from typing import Any, Dict, Optional

_SECRET_PATTERNS = (
    re.compile(r"\b(?:sk|rk)_(?:live|test)_[A-Za-z0-9]+"),
    re.compile(r"\b(?:pi|seti)_[A-Za-z0-9]+_secret_[A-Za-z0-9]+"),
    re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._\-]+"),
)


def redact_secrets(text: Optional[str]) -> Optional[str]:
    """Strip API keys, client secrets and bearer tokens from gateway messages."""
    if not text:
        return text
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub("[redacted]", text)
    return text


class PaymentsError(Exception):
    status_code = 500
    error = "Payment processing failed"
    code = "internal_error"

    def __init__(self, detail: Optional[str] = None, *, error: Optional[str] = None):
        self.detail = redact_secrets(detail) if detail else None
        if error:
            self.error = error
        super().__init__(self.detail or self.error)

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.error, "detail": self.detail or self.code}


# ---------------------------------------------------------------------------
# 400 - caller input
# ---------------------------------------------------------------------------


class ValidationError(PaymentsError):
    status_code = 400
    error = "Invalid request"
    code = "validation_error"


class QuoteUnavailable(ValidationError):
    error = "Quote is no longer available"
    code = "quote_unavailable"


class QuoteExpired(ValidationError):
    error = "Quote has expired"
    code = "quote_expired"


class NoSavedInstrument(ValidationError):
    error = "Unable to charge: no saved payment method found"
    code = "no_saved_payment_method"


class AdditionalChargeLimitExceeded(ValidationError):
    error = "Additional charge exceeds the allowed limit for this task"
    code = "additional_charge_limit"


# ---------------------------------------------------------------------------
# 401 - admin callers
# ---------------------------------------------------------------------------


class Unauthorized(PaymentsError):
    status_code = 401
    error = "Unauthorized"
    code = "unauthorized"


# ---------------------------------------------------------------------------
# 404 - missing records
# ---------------------------------------------------------------------------


class NotFoundError(PaymentsError):
    status_code = 404
    error = "Not found"
    code = "not_found"


class TaskNotFound(NotFoundError):
    error = "Task not found"
    code = "task_not_found"


class PaymentRecordMissing(NotFoundError):
    error = "Payment record not found"
    code = "payment_record_missing"


class NoCapturableHold(NotFoundError):
    error = "No authorized payment found for this task. Payment may have expired."
    code = "hold_not_found_or_expired"


class OriginalPaymentNotFound(NotFoundError):
    error = "Original payment not found"
    code = "original_payment_not_found"


class QuoteNotFound(NotFoundError):
    error = "Quote not found"
    code = "quote_not_found"


class HoldNotFound(NotFoundError):
    error = "Payment hold not found"
    code = "hold_not_found"


# ---------------------------------------------------------------------------
# 409 - uniqueness guards
# ---------------------------------------------------------------------------


class DuplicateTaskId(PaymentsError):
    status_code = 409
    error = "Task already exists"
    code = "duplicate_task_id"


class OpenHoldExists(PaymentsError):
    status_code = 409
    error = "Task already has an open payment hold"
    code = "open_hold_exists"


# ---------------------------------------------------------------------------
# Gateway / store
# ---------------------------------------------------------------------------


class GatewayError(PaymentsError):
    """The payment processor rejected or failed the operation."""

    status_code = 502
    error = "Payment gateway error"
    code = "gateway_error"

    def __init__(
        self,
        detail: Optional[str] = None,
        *,
        error: Optional[str] = None,
        gateway_code: Optional[str] = None,
        declined: bool = False,
    ):
        super().__init__(detail, error=error)
        self.gateway_code = gateway_code
        self.declined = declined
        if declined:
            self.status_code = 400

    def to_body(self) -> Dict[str, Any]:
        body = super().to_body()
        if self.gateway_code:
            body["gateway_code"] = self.gateway_code
        return body


class TransientTimeout(GatewayError):
    """No response from the processor; the call may or may not have been applied."""

    status_code = 504
    error = "Payment gateway did not respond"
    code = "gateway_timeout"


class StoreWriteError(PaymentsError):
    error = "Database write failed"
    code = "store_write_failed"
