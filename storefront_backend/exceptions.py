"""
Domain errors shared by the storefront apps.

Each error carries the HTTP status the JSON views answer with, so a view can
translate any of them with a single ``except StorefrontError``.
"""
from django.core.exceptions import ImproperlyConfigured


class StorefrontError(Exception):
    status_code = 400

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def as_dict(self):
        return {"error": self.message, **self.details}


# --- Tenant context ---

class TenantNotFound(StorefrontError):
    status_code = 404


class TenantInactive(StorefrontError):
    status_code = 403


# --- Validation ---

class CheckoutValidationError(StorefrontError):
    status_code = 400


class LayoutValidationError(StorefrontError):
    status_code = 400


class CartNotActive(StorefrontError):
    status_code = 400


# --- Business-rule conflicts ---

class InsufficientStockError(StorefrontError):
    status_code = 409


class CouponRejected(StorefrontError):
    status_code = 409


class PaymentStateConflict(StorefrontError):
    status_code = 409


# --- Integrity / transient ---

class OrderIntegrityError(StorefrontError):
    """Order rows could not be written; the cart is left active and the submission can be retried."""
    status_code = 500


class LayoutPersistenceError(StorefrontError):
    status_code = 503


class PaymentGatewayError(StorefrontError):
    status_code = 502


# --- Authentication ---

class SignatureVerificationError(StorefrontError):
    status_code = 400


class WebhookAuthenticationError(StorefrontError):
    status_code = 401


class WebhookTargetNotFound(StorefrontError):
    status_code = 404


class PaymentGatewayNotConfigured(StorefrontError, ImproperlyConfigured):
    """Raised when a tenant has no gateway credentials; reported, never retried."""
    status_code = 400
