from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from ..gateway.proxy import NO_BODY_STATUSES
from ..gateway.service import GatewayService
from .dependencies import get_gateway, get_principal, read_json


gateway_router = APIRouter(prefix="/api/mcp", tags=["gateway"])


@gateway_router.post("")
async def proxy(
    request: Request,
    principal_id: str = Depends(get_principal),
    gateway: GatewayService = Depends(get_gateway),
):
    payload = await read_json(request)
    result = await gateway.proxy_request(principal_id, payload)
    if result.status < 200 or result.status in NO_BODY_STATUSES:
        return Response(status_code=result.status)
    return JSONResponse(content=result.model_dump(), status_code=result.status)


@gateway_router.get("/services")
async def list_services(
    _: str = Depends(get_principal),
    gateway: GatewayService = Depends(get_gateway),
):
    return await gateway.describe_services()
