"""
Storefront Commerce Backend

Affiliate marketing and marketplace order ingestion services for the
FiltersFast storefront. Tracks referral clicks, attributes conversions,
calculates commissions and payouts, and imports orders from external
marketplace channels (Amazon, eBay, Walmart) via Sellbrite.
"""

__version__ = "1.0.0"
__author__ = "Storefront Team"
