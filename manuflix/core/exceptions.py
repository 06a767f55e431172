"""Exception types for the checkout domain and API layers."""
from typing import Dict, Optional


class CheckoutError(Exception):
    """Base checkout exception. Scoped to one checkout attempt, never fatal."""


class ValidationError(CheckoutError):
    """Missing or malformed input, raised before any network call."""

    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.errors = errors or {}


class GatewayError(CheckoutError):
    """Non-2xx or malformed response from the payment provider."""

    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(CheckoutError):
    """Data store read or write failure."""


class NotFoundError(CheckoutError):
    """Referenced record does not exist."""


class ConfigurationError(CheckoutError):
    """Required configuration is missing at startup."""
