"""
Error taxonomy for the checkout-to-dispatch pipeline.

- input errors: reported immediately, nothing persisted
- schema drift: absorbed by the schema-adaptive writer, surfaced only when
  absorption is impossible (always with the final attempted payload)
- capacity: no alternative recipient for a workflow step, never auto-retried
- downstream: payment processor timeout (retryable) vs misconfiguration
  (operator-visible)
"""

from __future__ import annotations


class OrderflowError(Exception):
    """Base class. Routes render these as JSON."""

    code = "ERROR"
    http_status = 500
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "retryable": self.retryable,
            "details": self.details,
        }


# =============================================================================
# INPUT ERRORS (400-level)
# =============================================================================

class BadRequestError(OrderflowError):
    """Request is structurally incomplete (empty cart, missing email)."""
    code = "BAD_REQUEST"
    http_status = 400


class InvalidInputError(OrderflowError):
    """Values are present but nonsensical (sub-minimum totals, malformed date)."""
    code = "INVALID_INPUT"
    http_status = 400


class UnsupportedPromoError(InvalidInputError):
    code = "PROMO_NOT_SUPPORTED"


class NotFoundError(OrderflowError):
    code = "NOT_FOUND"
    http_status = 404


class CheckoutConflictError(OrderflowError):
    """Another attempt with the same idempotency key is still in flight."""
    code = "CHECKOUT_IN_PROGRESS"
    http_status = 409
    retryable = True


class InvalidStateError(OrderflowError):
    """The record is not in a state that allows the requested transition."""
    code = "INVALID_STATE"
    http_status = 409


# =============================================================================
# FULFILLMENT STORE ERRORS
# =============================================================================

class SchemaDriftError(OrderflowError):
    """The schema-adaptive writer could not absorb a store error."""
    code = "SCHEMA_DRIFT"
    http_status = 500


class CapacityError(OrderflowError):
    """No recipient is free to take a job at the requested workflow step."""
    code = "NO_CAPACITY"
    http_status = 409


class RecipientResolutionError(OrderflowError):
    code = "RECIPIENT_UNRESOLVED"
    http_status = 500


class DispatchJobError(OrderflowError):
    code = "DISPATCH_JOB_FAILED"
    http_status = 500


# =============================================================================
# DOWNSTREAM (PAYMENT PROCESSOR) ERRORS
# =============================================================================

class PaymentError(OrderflowError):
    code = "PAYMENT_ERROR"
    http_status = 502


class PaymentTimeoutError(PaymentError):
    """Processor unreachable or slow. Safe for the caller to retry."""
    code = "PROCESSOR_TIMEOUT"
    http_status = 504
    retryable = True


class PaymentConfigurationError(PaymentError):
    """Processor rejected our credentials or parameters. Needs an operator."""
    code = "PROCESSOR_MISCONFIGURED"
    http_status = 503
