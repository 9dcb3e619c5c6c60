"""
Domain exceptions shared by connectors, services and routers.
"""
from typing import Optional


class BackOfficeError(Exception):
    """Base class for expected, reportable failures."""


class ConfigurationError(BackOfficeError):
    """A required secret or setting is missing."""


class WooCommerceAPIError(BackOfficeError):
    """Non-2xx response (or unusable body) from a WooCommerce store."""

    def __init__(self, site_name: str, message: str, status_code: Optional[int] = None, is_html: bool = False):
        self.site_name = site_name
        self.status_code = status_code
        self.is_html = is_html
        super().__init__(f"{site_name}: {message}")


class RateLimitError(WooCommerceAPIError):
    """Upstream answered 429 or reported a rate limit."""


class EmailDeliveryError(BackOfficeError):
    """SendGrid rejected the message."""

    def __init__(self, message: str, status_code: Optional[int] = None, details: str = ""):
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class PaymentError(BackOfficeError):
    """Stripe refused or did not complete the charge."""


class OrderNotFoundError(BackOfficeError):
    """No order matches the requested lookup."""
