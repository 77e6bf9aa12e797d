from .keyservice import (
    CloudKMSKeyService,
    KeyService,
    LocalKeyService,
    build_key_service,
)
from .sealer import SecretSealer

__all__ = [
    "CloudKMSKeyService",
    "KeyService",
    "LocalKeyService",
    "SecretSealer",
    "build_key_service",
]
