"""
HTTP routes for the gateway and credential management.
"""

from .credentials import credentials_router
from .gateway import gateway_router

__all__ = ["credentials_router", "gateway_router"]
