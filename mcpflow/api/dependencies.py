from __future__ import annotations

import json
from typing import Any, Optional

from fastapi import Depends, Header, Request

from ..credentials.service import CredentialService
from ..errors import ValidationFailed
from ..gateway.service import GatewayService


def get_gateway(request: Request) -> GatewayService:
    return request.app.state.gateway


def get_credential_service(request: Request) -> CredentialService:
    return request.app.state.credentials


async def get_principal(
    authorization: Optional[str] = Header(default=None),
    gateway: GatewayService = Depends(get_gateway),
) -> str:
    """Every route shares the gateway's authentication step."""
    return await gateway.authenticate(authorization)


async def read_json(request: Request) -> Any:
    body = await request.body()
    if not body:
        return {}
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationFailed("Request body must be valid JSON") from e
