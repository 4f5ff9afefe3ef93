"""
Shared utilities: configuration, logging, exceptions and time helpers.
"""
