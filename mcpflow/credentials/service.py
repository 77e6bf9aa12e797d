"""
Owner-scoped credential management: sealing new secrets, listing and
deleting a principal's credentials, reading usage, and a key service
self-test.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from ..audit.service import AuditCategory, AuditService
from ..errors import (
    GatewayError,
    KeyServicePermissionDenied,
    NotFound,
    SecretUnwrapFailed,
    ValidationFailed,
)
from ..security.sealer import SecretSealer
from ..store.models import Credential, UsageLog
from ..store.repository import CredentialStore, ServiceRegistry, UsageStore

logger = logging.getLogger(__name__)


def _credential_view(c: Credential) -> Dict[str, Any]:
    return {
        "id": c.id,
        "name": c.name,
        "service": c.service_name,
        "created_at": c.created_at.isoformat() if c.created_at else None,
        "updated_at": c.updated_at.isoformat() if c.updated_at else None,
    }


def _usage_view(u: UsageLog) -> Dict[str, Any]:
    return {
        "id": u.id,
        "api_key_id": u.credential_id,
        "service": u.service_name,
        "path": u.path,
        "method": u.method,
        "status_code": u.status_code,
        "duration": u.duration_ms,
        "request_headers": u.request_headers or {},
        "response_headers": u.response_headers or {},
        "timestamp": u.timestamp.isoformat() if u.timestamp else None,
    }


def _require_str(payload: Any, field: str) -> str:
    value = payload.get(field) if isinstance(payload, dict) else None
    if not isinstance(value, str) or not value.strip():
        raise ValidationFailed(missing_fields=[field])
    return value


def _permission_denied() -> GatewayError:
    return GatewayError(
        "Key service permission denied",
        "Please ensure the service account has the required key permissions",
        status_code=403,
    )


class CredentialService:
    def __init__(
        self,
        credentials: CredentialStore,
        services: ServiceRegistry,
        usage: UsageStore,
        sealer: SecretSealer,
        audit_service: AuditService,
    ):
        self.credentials = credentials
        self.services = services
        self.usage = usage
        self.sealer = sealer
        self.audit_service = audit_service

    async def encrypt(self, payload: Any) -> Dict[str, str]:
        api_key = _require_str(payload, "apiKey")
        try:
            return {"encryptedKey": await self.sealer.seal(api_key)}
        except Exception as e:  # noqa: BLE001
            logger.error("Error encrypting API key: %s", type(e).__name__)
            raise GatewayError("Failed to encrypt API key") from e

    async def self_test(self, principal_id: str, payload: Any) -> Dict[str, Any]:
        """Round-trip a caller-supplied value through the key service."""
        test_key = _require_str(payload, "testKey")
        try:
            encrypted = await self.sealer.seal(test_key)
            decrypted = await self.sealer.unwrap(encrypted)
        except KeyServicePermissionDenied as e:
            raise _permission_denied() from e
        except SecretUnwrapFailed as e:
            if e.category == SecretUnwrapFailed.PERMISSION_DENIED:
                raise _permission_denied() from e
            raise GatewayError(
                "Failed to test key service encryption/decryption", e.category
            ) from e
        except Exception as e:  # noqa: BLE001
            logger.error("Key service self-test failed: %s", type(e).__name__)
            raise GatewayError(
                "Failed to test key service encryption/decryption", type(e).__name__
            ) from e

        matches = decrypted == test_key
        await self.audit_service.log_event(
            event_type="key_service_self_test",
            category=AuditCategory.KEY_MANAGEMENT,
            action="self_test",
            result="success" if matches else "mismatch",
            description="Key service round trip",
            user_id=principal_id,
        )
        return {
            "success": True,
            "encryptedKey": encrypted,
            "keyLength": len(test_key),
            "encryptedLength": len(encrypted),
            "matches": matches,
        }

    async def create(self, principal_id: str, payload: Any) -> Dict[str, Any]:
        service_name = _require_str(payload, "service")
        api_key = _require_str(payload, "apiKey")
        name = payload.get("name") or service_name
        if not isinstance(name, str):
            raise ValidationFailed("Invalid request fields", "name")

        if await self.services.fetch(service_name) is None:
            raise NotFound("Service configuration not found")

        try:
            ciphertext = await self.sealer.seal(api_key)
        except Exception as e:  # noqa: BLE001
            logger.error("Error encrypting API key: %s", type(e).__name__)
            raise GatewayError("Failed to encrypt API key") from e

        credential = await self.credentials.create(
            owner_id=principal_id,
            name=name,
            service_name=service_name,
            ciphertext=ciphertext,
        )
        await self.audit_service.log_event(
            event_type="credential_created",
            category=AuditCategory.KEY_MANAGEMENT,
            action="create",
            result="success",
            description=f"Credential registered for {service_name}",
            resource_type="credential",
            resource_id=credential.id,
            user_id=principal_id,
        )
        return _credential_view(credential)

    async def list_for(self, principal_id: str) -> List[Dict[str, Any]]:
        return [_credential_view(c) for c in await self.credentials.list_for_owner(principal_id)]

    async def delete(self, principal_id: str, credential_id: str) -> None:
        if not await self.credentials.delete(credential_id, principal_id):
            raise NotFound("API key not found or access denied")
        await self.audit_service.log_event(
            event_type="credential_deleted",
            category=AuditCategory.KEY_MANAGEMENT,
            action="delete",
            result="success",
            description="Credential deleted",
            resource_type="credential",
            resource_id=credential_id,
            user_id=principal_id,
        )

    async def usage_for(self, principal_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        if limit < 1 or limit > 1000:
            raise ValidationFailed("limit must be between 1 and 1000")
        return [_usage_view(u) for u in await self.usage.list_for_owner(principal_id, limit)]
