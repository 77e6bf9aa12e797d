"""
Gateway orchestrator: authenticates the caller, resolves an owner-scoped
credential and its service, unwraps the secret for a single outbound call,
proxies it and records usage.
"""

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..audit.service import AuditCategory, AuditService
from ..audit.usage import UsageRecorder
from ..errors import (
    AuthenticationFailed,
    GatewayError,
    NotFound,
    ServiceMismatch,
    UpstreamTransportFailed,
    ValidationFailed,
)
from ..identity.auth import IdentityProvider, extract_bearer
from ..monitoring.metrics import proxy_requests_total, proxy_upstream_seconds
from ..security.sealer import SecretSealer
from ..store.repository import CredentialStore, ServiceRegistry
from .builder import build_request, strip_auth_header
from .discovery import build_catalog
from .models import ProxyEnvelope, ProxyResponse, UsageRecord
from .proxy import ProxyHandler

logger = logging.getLogger(__name__)


class GatewayService:
    """Per-request orchestration with no shared mutable state between calls."""

    def __init__(
        self,
        identity: IdentityProvider,
        credentials: CredentialStore,
        services: ServiceRegistry,
        sealer: SecretSealer,
        proxy_handler: ProxyHandler,
        usage_recorder: UsageRecorder,
        audit_service: AuditService,
    ):
        self.identity = identity
        self.credentials = credentials
        self.services = services
        self.sealer = sealer
        self.proxy_handler = proxy_handler
        self.usage_recorder = usage_recorder
        self.audit_service = audit_service
        self._running = False

    async def start(self):
        """Start the gateway service."""
        if self._running:
            return
        await self.proxy_handler.start()
        self._running = True
        logger.info("Gateway service started")

    async def stop(self):
        """Stop the gateway service."""
        if not self._running:
            return
        await self.proxy_handler.stop()
        self._running = False
        logger.info("Gateway service stopped")

    async def authenticate(self, authorization: Optional[str]) -> str:
        """Resolve the principal id from an `Authorization: Bearer` header.

        A missing or malformed header is rejected before any identity or
        store call is made.
        """
        token = extract_bearer(authorization)
        principal_id = await self.identity.authenticate(token)
        if not principal_id:
            await self._audit_rejection(None, None, AuthenticationFailed())
            raise AuthenticationFailed()
        return principal_id

    async def proxy_request(self, principal_id: str, payload: Any) -> ProxyResponse:
        """Run one envelope for an authenticated principal."""
        envelope = self._validate(payload)
        try:
            return await self._proxy(principal_id, envelope)
        except GatewayError as e:
            proxy_requests_total.labels(service=envelope.service, outcome=_outcome(e)).inc()
            await self._audit_rejection(principal_id, envelope, e)
            raise
        except Exception as e:  # noqa: BLE001
            logger.exception("Proxy request failed for %s", envelope.service)
            error = GatewayError("MCP request failed", type(e).__name__)
            proxy_requests_total.labels(service=envelope.service, outcome="InternalError").inc()
            await self._audit_rejection(principal_id, envelope, error)
            raise error from e

    async def describe_services(self) -> Dict[str, Any]:
        try:
            services = await self.services.list_all()
        except Exception as e:  # noqa: BLE001
            logger.error("Service discovery failed: %s", type(e).__name__)
            raise GatewayError("Failed to fetch services") from e
        return build_catalog(services)

    def _validate(self, payload: Any) -> ProxyEnvelope:
        if not isinstance(payload, dict):
            raise ValidationFailed("Request body must be a JSON object")
        try:
            envelope = ProxyEnvelope.model_validate(payload)
        except ValidationError as e:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
            raise ValidationFailed("Invalid request fields", ", ".join(fields)) from e
        missing = envelope.missing_fields()
        if missing:
            raise ValidationFailed(missing_fields=missing)
        return envelope

    async def _proxy(self, principal_id: str, envelope: ProxyEnvelope) -> ProxyResponse:
        credential = await self.credentials.fetch(envelope.credential_id, principal_id)
        if credential is None:
            raise NotFound("API key not found or access denied")

        # Checked before the service lookup so the answer does not depend
        # on whether the requested service exists.
        if credential.service_name != envelope.service:
            raise ServiceMismatch()

        service = await self.services.fetch(envelope.service)
        if service is None:
            raise NotFound("Service configuration not found")

        plaintext = await self.sealer.unwrap(credential.ciphertext)
        outbound = build_request(service, envelope, plaintext)

        record = UsageRecord(
            principal_id=principal_id,
            credential_id=credential.id,
            service_name=service.name,
            path=envelope.path,
            method=outbound.method,
            request_headers=strip_auth_header(envelope.headers, service.auth_header),
        )
        try:
            result = await self.proxy_handler.send(outbound)
        except UpstreamTransportFailed as e:
            record.status_code = e.upstream_status
            record.response_headers = e.upstream_headers
            record.duration_ms = e.duration_ms
            await self.usage_recorder.record(record)
            raise

        record.status_code = result.status_code
        record.response_headers = result.headers
        record.duration_ms = result.duration_ms
        await self.usage_recorder.record(record)

        proxy_upstream_seconds.labels(service=service.name).observe(result.duration_ms / 1000)
        proxy_requests_total.labels(service=service.name, outcome="proxied").inc()
        logger.info(
            "proxied %s %s for %s -> %s in %.1fms",
            record.method,
            service.name,
            principal_id,
            result.status_code,
            result.duration_ms,
        )
        return ProxyResponse(status=result.status_code, headers=result.headers, data=result.data)

    async def _audit_rejection(
        self,
        principal_id: Optional[str],
        envelope: Optional[ProxyEnvelope],
        error: GatewayError,
    ) -> None:
        await self.audit_service.log_event(
            event_type="gateway_rejected",
            category=AuditCategory.SECURITY,
            action="proxy_request",
            result=_outcome(error),
            description=error.error,
            resource_type="credential",
            resource_id=envelope.credential_id if envelope else None,
            user_id=principal_id,
            details={
                "service": envelope.service if envelope else None,
                "method": envelope.method if envelope else None,
                "status_code": error.status_code,
                "category": getattr(error, "category", None),
            },
        )


def _outcome(error: GatewayError) -> str:
    return type(error).__name__
