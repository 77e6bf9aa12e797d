"""
Capability descriptors for the service catalog.
"""

from typing import Any, Dict, Iterable

from .. import __version__
from ..store.models import DEFAULT_AUTH_HEADER, ServiceDefinition

CATALOG_VERSION = "1.0"
ADVERTISED_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH"]


def describe_service(service: ServiceDefinition) -> Dict[str, Any]:
    return {
        "id": service.name,
        "name": service.name,
        "description": service.description or "",
        "version": CATALOG_VERSION,
        "capabilities": {
            "authentication": {
                "type": "bearer",
                "header": service.auth_header or DEFAULT_AUTH_HEADER,
            },
            "endpoints": [
                {
                    "path": "/*",
                    "methods": list(ADVERTISED_METHODS),
                    "baseUrl": service.base_url,
                }
            ],
            "config": service.config or {},
        },
    }


def build_catalog(services: Iterable[ServiceDefinition]) -> Dict[str, Any]:
    return {
        "version": CATALOG_VERSION,
        "server": {
            "name": "MCPflow",
            "version": __version__,
            "capabilities": {
                "transports": ["http"],
                "features": ["key-management", "usage-tracking"],
            },
        },
        "services": [describe_service(s) for s in services],
    }
