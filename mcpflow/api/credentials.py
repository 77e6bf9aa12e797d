from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from ..credentials.service import CredentialService
from .dependencies import get_credential_service, get_principal, read_json


credentials_router = APIRouter(prefix="/api", tags=["credentials"])


@credentials_router.post("/encrypt")
async def encrypt_api_key(
    request: Request,
    _: str = Depends(get_principal),
    svc: CredentialService = Depends(get_credential_service),
):
    return await svc.encrypt(await read_json(request))


@credentials_router.post("/test-kms")
async def test_key_service(
    request: Request,
    principal_id: str = Depends(get_principal),
    svc: CredentialService = Depends(get_credential_service),
):
    return await svc.self_test(principal_id, await read_json(request))


@credentials_router.post("/credentials", status_code=201)
async def create_credential(
    request: Request,
    principal_id: str = Depends(get_principal),
    svc: CredentialService = Depends(get_credential_service),
):
    return await svc.create(principal_id, await read_json(request))


@credentials_router.get("/credentials")
async def list_credentials(
    principal_id: str = Depends(get_principal),
    svc: CredentialService = Depends(get_credential_service),
):
    return await svc.list_for(principal_id)


@credentials_router.delete("/credentials/{credential_id}")
async def delete_credential(
    credential_id: str,
    principal_id: str = Depends(get_principal),
    svc: CredentialService = Depends(get_credential_service),
):
    await svc.delete(principal_id, credential_id)
    return {"ok": True}


@credentials_router.get("/usage")
async def list_usage(
    limit: int = Query(default=100),
    principal_id: str = Depends(get_principal),
    svc: CredentialService = Depends(get_credential_service),
):
    return await svc.usage_for(principal_id, limit)
