"""
Marketplace Hub

Backend that brokers OAuth-authorized access to a business-data provider,
keeps denormalized copies of companies, locations, contacts and products,
and serves them through a two-tier cache with scheduled token refresh.
"""

__version__ = "1.0.0"
__author__ = "Marketplace Hub Team"
