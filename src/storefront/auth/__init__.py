"""
Bearer token authentication.
"""

from .jwt_manager import JWTManager, get_jwt_manager, create_access_token, verify_token

__all__ = ["JWTManager", "get_jwt_manager", "create_access_token", "verify_token"]
