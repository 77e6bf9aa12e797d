import json
from typing import Callable, Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from mcpflow.config.settings import Settings
from mcpflow.errors import KeyServicePermissionDenied
from mcpflow.identity.auth import JWTIdentityProvider
from mcpflow.main import create_app
from mcpflow.security.keyservice import LocalKeyService


JWT_SECRET = "gateway-test-secret-0123456789abcdef"

SERVICES = [
    {
        "name": "openai",
        "base_url": "https://api.openai.com/v1/",
        "description": "OpenAI API",
    },
    {
        "name": "github",
        "base_url": "https://api.github.com",
        "description": "GitHub REST API",
        "auth_header": "X-GitHub-Token",
        "config": {"per_page": 50},
    },
]

_KEY_SERVICE = LocalKeyService("test-master-key")


class Upstream:
    """Fake upstream: records each outbound request and answers from canned values."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.status_code = 200
        self.json: Optional[object] = {"object": "list", "data": [{"id": "gpt-4o"}]}
        self.content: Optional[bytes] = None
        self.error: Optional[Exception] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        headers = {"x-request-id": "req-1"}
        if self.content is not None:
            return httpx.Response(self.status_code, content=self.content, headers=headers)
        return httpx.Response(self.status_code, json=self.json, headers=headers)


class SwitchableKeyService:
    """Local key service whose decrypt can be made to fail like a remote KMS."""

    def __init__(self) -> None:
        self.inner = _KEY_SERVICE
        self.deny_decrypt = False

    async def encrypt(self, plaintext: bytes, context: bytes) -> bytes:
        return await self.inner.encrypt(plaintext, context)

    async def decrypt(self, ciphertext: bytes, context: bytes) -> bytes:
        if self.deny_decrypt:
            raise KeyServicePermissionDenied("PERMISSION_DENIED")
        return await self.inner.decrypt(ciphertext, context)


@pytest.fixture
def key_service() -> SwitchableKeyService:
    return SwitchableKeyService()


@pytest.fixture
def upstream() -> Upstream:
    return Upstream()


@pytest.fixture
def settings(tmp_path) -> Settings:
    services_file = tmp_path / "services.json"
    services_file.write_text(json.dumps(SERVICES))
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'gateway.db'}",
        dev_mode=True,
        db_init=True,
        jwt_secret=JWT_SECRET,
        services_file=str(services_file),
    )


@pytest.fixture
def client(settings, upstream, key_service):
    app = create_app(
        settings,
        key_service=key_service,
        transport=httpx.MockTransport(upstream.handler),
    )
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth() -> Callable[[str], Dict[str, str]]:
    identity = JWTIdentityProvider(JWT_SECRET)

    def _auth(principal_id: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {identity.generate_token(principal_id)}"}

    return _auth


@pytest.fixture
def register(client, auth) -> Callable[..., str]:
    def _register(principal_id: str, service: str = "openai", api_key: str = "sk-live-123") -> str:
        r = client.post(
            "/api/credentials",
            json={"name": f"{service} key", "service": service, "apiKey": api_key},
            headers=auth(principal_id),
        )
        assert r.status_code == 201, r.text
        return r.json()["id"]

    return _register
