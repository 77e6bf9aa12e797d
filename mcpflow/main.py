from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import json
import logging
from datetime import datetime
from typing import Optional

import httpx

from . import __version__
from .api import credentials_router, gateway_router
from .audit.service import AuditService
from .audit.usage import UsageRecorder
from .config.settings import Settings, get_settings
from .credentials.service import CredentialService
from .database import create_engine, create_session_factory, init_schema
from .errors import GatewayError
from .gateway.proxy import ProxyHandler
from .gateway.service import GatewayService
from .identity.auth import IdentityProvider, JWTIdentityProvider
from .monitoring.metrics import metrics_router
from .security.keyservice import KeyService, build_key_service
from .security.sealer import SecretSealer
from .store.repository import CredentialStore, ServiceRegistry, UsageStore


class AddTraceIdFilter(logging.Filter):
    def filter(self, record):
        if not hasattr(record, "trace_id"):
            record.trace_id = "system"
        return True


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - trace_id=%(trace_id)s - %(message)s",
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, AddTraceIdFilter) for f in handler.filters):
            handler.addFilter(AddTraceIdFilter())


logger = logging.getLogger("mcpflow.core")


async def seed_services(registry: ServiceRegistry, path: str) -> int:
    """Load service definitions from a JSON list of objects."""
    with open(path, "r", encoding="utf-8") as f:
        entries = json.load(f)
    for entry in entries:
        await registry.register(
            entry["name"],
            entry["base_url"],
            description=entry.get("description", ""),
            auth_header=entry.get("auth_header"),
            config=entry.get("config"),
        )
    return len(entries)


def create_app(
    settings: Optional[Settings] = None,
    *,
    key_service: Optional[KeyService] = None,
    identity: Optional[IdentityProvider] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the application with its collaborators wired explicitly.

    `key_service`, `identity` and `transport` override what the settings
    would construct; tests use them to substitute fakes.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="MCPflow Gateway", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    engine = create_engine(settings.database_url, dev_mode=settings.dev_mode)
    sessions = create_session_factory(engine)
    key_service = key_service or build_key_service(settings)
    sealer = SecretSealer(key_service, settings.kms_context)
    audit_service = AuditService()
    credentials = CredentialStore(sessions)
    services = ServiceRegistry(sessions)
    usage = UsageStore(sessions)

    app.state.settings = settings
    app.state.engine = engine
    app.state.audit = audit_service
    app.state.gateway = GatewayService(
        identity=identity or JWTIdentityProvider(settings.jwt_secret, settings.jwt_audience),
        credentials=credentials,
        services=services,
        sealer=sealer,
        proxy_handler=ProxyHandler(settings.gateway_timeout_seconds, transport=transport),
        usage_recorder=UsageRecorder(usage),
        audit_service=audit_service,
    )
    app.state.credentials = CredentialService(
        credentials, services, usage, sealer, audit_service
    )

    app.include_router(gateway_router)
    app.include_router(credentials_router)
    app.include_router(metrics_router)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        return JSONResponse(content=exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled error on %s %s: %s", request.method, request.url.path, type(exc).__name__
        )
        return JSONResponse(content={"error": "MCP request failed"}, status_code=500)

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "timestamp": datetime.utcnow().isoformat(),
            "version": __version__,
        }

    @app.on_event("startup")
    async def startup_event():
        logger.info("MCPflow gateway starting")
        if settings.db_init:
            await init_schema(engine)
        if settings.services_file:
            count = await seed_services(services, settings.services_file)
            logger.info("Registered %d services from %s", count, settings.services_file)
        await app.state.gateway.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("MCPflow gateway shutting down")
        await app.state.gateway.stop()
        aclose = getattr(key_service, "aclose", None)
        if aclose is not None:
            await aclose()
        await engine.dispose()

    return app


def run() -> None:
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
