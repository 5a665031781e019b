"""
Khairat Payments - Custom Exceptions
=====================================
Business-level exceptions that can be caught and converted to HTTP responses.
"""

from typing import Optional

from fastapi import HTTPException


class KhairatError(Exception):
    """Base exception for all business logic errors."""
    def __init__(self, message: str = "An internal error occurred."):
        self.message = message
        super().__init__(self.message)


class ValidationError(KhairatError):
    """Raised for bad amounts or missing payer fields, before any network call."""
    pass


# ==========================================
# Provider configuration
# ==========================================

class ProviderNotConfiguredError(KhairatError):
    """Raised when the mosque has no active config for the requested provider."""
    def __init__(self, provider_type: str, mosque_id: str = "", message: str = ""):
        self.provider_type = provider_type
        self.mosque_id = mosque_id
        super().__init__(message or f"{provider_type} payment method is unavailable for this mosque")


class ConfigurationError(ProviderNotConfiguredError):
    """Raised when a provider config exists but required credentials are blank."""
    def __init__(self, provider_type: str, mosque_id: str = "", missing=()):
        self.missing = tuple(missing)
        super().__init__(
            provider_type, mosque_id,
            message=f"{provider_type} is configured incorrectly (missing: {', '.join(self.missing)})",
        )


# ==========================================
# Gateway
# ==========================================

class GatewayError(KhairatError):
    """Raised for payment gateway errors."""
    pass


class GatewayRequestError(GatewayError):
    """Non-2xx response (or transport failure when status_code is None)."""
    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class GatewayTimeoutError(GatewayError):
    """The gateway did not answer in time; the request may still have been received."""
    pass


class GatewayResponseError(GatewayError):
    """2xx response whose body is malformed or incomplete."""
    def __init__(self, message: str, body: str = ""):
        self.body = body
        super().__init__(message)


class PersistenceAfterCreateError(KhairatError):
    """The bill exists upstream but linking it to the contribution failed."""
    def __init__(self, contribution_id: str, bill_id: str, provider_type: str):
        self.contribution_id = contribution_id
        self.bill_id = bill_id
        self.provider_type = provider_type
        super().__init__(
            f"Bill {bill_id} was created at {provider_type} but could not be saved "
            f"on contribution {contribution_id}; manual reconciliation required"
        )


# ==========================================
# Callback reconciliation
# ==========================================

class CallbackError(KhairatError):
    """Base for inbound callback rejections."""
    pass


class MissingBillReferenceError(CallbackError):
    def __init__(self, provider_type: str):
        super().__init__(f"{provider_type} callback carries no bill reference")


class SignatureMismatchError(CallbackError):
    def __init__(self, provider_type: str, bill_id: str = ""):
        self.bill_id = bill_id
        super().__init__(f"Invalid {provider_type} callback signature")


class ContributionNotFoundError(KhairatError):
    """Raised when no contribution matches the (contribution id, bill id) pair."""
    def __init__(self, contribution_id: str = "", bill_id: Optional[str] = None):
        self.contribution_id = contribution_id
        self.bill_id = bill_id
        super().__init__("Contribution not found")


def raise_http(error: KhairatError, status_code: int = 400):
    """Convert a business exception to an HTTP exception."""
    raise HTTPException(status_code=status_code, detail=error.message)
