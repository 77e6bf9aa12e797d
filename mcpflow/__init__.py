"""
MCPflow: credential-protected request gateway.

Callers register API credentials for third-party services, the gateway
stores them sealed by a key service and proxies authenticated calls
through a single endpoint while recording usage.
"""

__version__ = "1.0.0"
