"""
REST API for the Storefront backend.
"""
