"""
Persistence for credentials, service definitions and usage records.
"""

from .models import Base, Credential, ServiceDefinition, UsageLog
from .repository import CredentialStore, ServiceRegistry, UsageStore

__all__ = [
    "Base",
    "Credential",
    "ServiceDefinition",
    "UsageLog",
    "CredentialStore",
    "ServiceRegistry",
    "UsageStore",
]
