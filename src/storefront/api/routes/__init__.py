"""
API route modules.
"""

from . import affiliates, admin_affiliates, marketplaces, health

__all__ = ["affiliates", "admin_affiliates", "marketplaces", "health"]
