"""Storefront and mail connectors for the tour back office"""

from app.connectors.base import BaseConnector
from app.connectors.woocommerce import WooCommerceConnector
from app.connectors.sendgrid import SendGridClient

__all__ = [
    "BaseConnector",
    "WooCommerceConnector",
    "SendGridClient"
]
