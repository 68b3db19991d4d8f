"""
Shared utilities: configuration, logging, exceptions and input sanitizing.
"""
