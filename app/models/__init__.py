"""Database models for Storefront Insights"""

from app.models.merchant import Merchant, MerchantSession

from app.models.connections import (
    CommerceConnection,
    TrafficConnection
)

__all__ = [
    "Merchant",
    "MerchantSession",
    "CommerceConnection",
    "TrafficConnection",
]
