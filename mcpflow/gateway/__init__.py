"""
Credential-injecting gateway.

This module provides:
- Envelope validation and the per-request orchestrator
- Outbound request construction with the credential header injected
- A single-attempt upstream proxy
- The service capability catalog
"""

from .models import OutboundRequest, ProxyEnvelope, ProxyResponse, UsageRecord
from .proxy import ProxyHandler

__all__ = [
    "OutboundRequest",
    "ProxyEnvelope",
    "ProxyResponse",
    "UsageRecord",
    "ProxyHandler",
]
