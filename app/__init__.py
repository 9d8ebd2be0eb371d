"""Storefront Insights: commerce and traffic aggregation for merchants"""

__version__ = "1.0.0"
