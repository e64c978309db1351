"""Typed service errors surfaced to API callers."""

from __future__ import annotations

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base error carrying the HTTP status and a stable machine-readable code."""

    status_code = 500
    code = "internal_error"
    default_message = "Internal server error."

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        self.details: Dict[str, Any] = details
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": False, "error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(ServiceError):
    status_code = 400
    code = "validation_error"
    default_message = "Malformed request."


class WebhookSignatureError(ServiceError):
    status_code = 400
    code = "webhook_signature_invalid"
    default_message = "Webhook signature verification failed."


class AuthError(ServiceError):
    status_code = 401
    code = "unauthorized"
    default_message = "Missing or invalid credentials."


class InsufficientCreditsError(ServiceError):
    status_code = 403
    code = "insufficient_credits"
    default_message = "Insufficient credits."


class PlanCapabilityError(ServiceError):
    status_code = 403
    code = "plan_capability"
    default_message = "This feature is not available on the current plan."


class NotFoundError(ServiceError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."


class RateLimitError(ServiceError):
    status_code = 429
    code = "rate_limited"
    default_message = "Rate limit exceeded. Try again later."


class ProviderError(ServiceError):
    status_code = 500
    code = "provider_error"
    default_message = "Generation failed."


class ProviderUnavailableError(ProviderError):
    status_code = 503
    code = "provider_unavailable"
    default_message = "The generation provider is overloaded. Try again in a few minutes."


class ProviderTimeoutError(ProviderError):
    status_code = 504
    code = "provider_timeout"
    default_message = "The generation did not finish in time. No credits were charged."


class PaymentProcessorError(ServiceError):
    status_code = 502
    code = "payment_processor_error"
    default_message = "The payment processor rejected the request."
