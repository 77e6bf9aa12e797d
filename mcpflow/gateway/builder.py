from __future__ import annotations

import json
from typing import Dict, Optional

import httpx

from ..errors import UpstreamTransportFailed
from ..store.models import DEFAULT_AUTH_HEADER, ServiceDefinition
from .models import OutboundRequest, ProxyEnvelope


def _drop_header(headers: Dict[str, str], name: str) -> None:
    for key in [k for k in headers if k.lower() == name.lower()]:
        del headers[key]


def strip_auth_header(headers: Dict[str, str], auth_header: Optional[str]) -> Dict[str, str]:
    """Copy of caller headers without the service's credential header."""
    out = dict(headers)
    _drop_header(out, auth_header or DEFAULT_AUTH_HEADER)
    return out


def build_request(
    service: ServiceDefinition, envelope: ProxyEnvelope, credential: str
) -> OutboundRequest:
    """Compose the upstream request for one envelope.

    The injected credential header replaces any caller-supplied header of
    the same name, compared case-insensitively.
    """
    try:
        url = httpx.URL(service.base_url).join(envelope.path or "")
    except (httpx.InvalidURL, ValueError) as e:
        raise UpstreamTransportFailed(f"{type(e).__name__}: invalid upstream URL") from e

    auth_header = service.auth_header or DEFAULT_AUTH_HEADER
    headers = strip_auth_header(envelope.headers, auth_header)
    headers[auth_header] = f"Bearer {credential}"

    content = None
    if envelope.body is not None:
        _drop_header(headers, "Content-Type")
        headers["Content-Type"] = "application/json"
        content = json.dumps(envelope.body).encode("utf-8")

    return OutboundRequest(
        url=str(url),
        method=(envelope.method or "").strip().upper(),
        headers=headers,
        content=content,
    )
