"""Provider connectors for Storefront Insights"""

from app.connectors.base import BaseConnector
from app.connectors.errors import FailureKind, ProviderError, RefreshRejectedError
from app.connectors.ga4 import GA4Connector, OAuthToken
from app.connectors.shopify import ShopifyConnector

__all__ = [
    "BaseConnector",
    "FailureKind",
    "ProviderError",
    "RefreshRejectedError",
    "GA4Connector",
    "OAuthToken",
    "ShopifyConnector",
]
