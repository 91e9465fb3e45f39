"""
fitbridge Local Development Server

FastAPI application standing in for the device registry and nutrition
summary API during local development and testing.

Modules:
- dev_registry: In-memory device registry, activity, balance and nutrition endpoints
"""

__version__ = "0.1.0"
