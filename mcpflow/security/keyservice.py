"""
Envelope-encryption key service adapters.

A key service seals and opens credential blobs under an authenticated
context tag. Two adapters are provided:

- LocalKeyService: AES-256-GCM with the context bound as associated data,
  keys derived from a master secret with PBKDF2-SHA256. Suitable for
  development, CI and single-node deployments.
- CloudKMSKeyService: Google Cloud KMS REST API, with the context passed
  as `additionalAuthenticatedData`.

Adapters raise KeyServiceError (or KeyServicePermissionDenied) and never
include key material or plaintext in error messages.
"""

from __future__ import annotations

import base64
import logging
import os
from typing import Optional, Protocol

import httpx
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..config.settings import Settings
from ..errors import KeyServiceError, KeyServicePermissionDenied

logger = logging.getLogger(__name__)

_DEV_MASTER_KEY = "mcpflow-dev-only-master-key"


class KeyService(Protocol):
    async def encrypt(self, plaintext: bytes, context: bytes) -> bytes: ...

    async def decrypt(self, ciphertext: bytes, context: bytes) -> bytes: ...


class LocalKeyService:
    """AES-256-GCM key service.

    Blob layout: version (1 byte) || nonce (12 bytes) || ciphertext || tag (16 bytes).
    """

    VERSION = 1
    NONCE_SIZE = 12
    TAG_SIZE = 16

    def __init__(self, master_key: str, salt: Optional[bytes] = None):
        if not isinstance(master_key, str) or not master_key:
            raise ValueError("master_key must be a non-empty string")
        self.backend = default_backend()
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt or os.getenv("KMS_KDF_SALT", "mcpflow-kms-salt-v1").encode(),
            iterations=200_000,
            backend=self.backend,
        )
        self._key = kdf.derive(master_key.encode())

    async def encrypt(self, plaintext: bytes, context: bytes) -> bytes:
        nonce = os.urandom(self.NONCE_SIZE)
        cipher = Cipher(algorithms.AES(self._key), modes.GCM(nonce), backend=self.backend)
        encryptor = cipher.encryptor()
        encryptor.authenticate_additional_data(context)
        ciphertext = encryptor.update(plaintext) + encryptor.finalize()
        return bytes([self.VERSION]) + nonce + ciphertext + encryptor.tag

    async def decrypt(self, ciphertext: bytes, context: bytes) -> bytes:
        if len(ciphertext) < 1 + self.NONCE_SIZE + self.TAG_SIZE:
            raise KeyServiceError("ciphertext too short")
        if ciphertext[0] != self.VERSION:
            raise KeyServiceError(f"unsupported ciphertext version {ciphertext[0]}")

        nonce = ciphertext[1 : 1 + self.NONCE_SIZE]
        tag = ciphertext[-self.TAG_SIZE :]
        body = ciphertext[1 + self.NONCE_SIZE : -self.TAG_SIZE]
        cipher = Cipher(algorithms.AES(self._key), modes.GCM(nonce, tag), backend=self.backend)
        decryptor = cipher.decryptor()
        decryptor.authenticate_additional_data(context)
        try:
            return decryptor.update(body) + decryptor.finalize()
        except InvalidTag as e:
            raise KeyServiceError("ciphertext authentication failed") from e


class CloudKMSKeyService:
    """Google Cloud KMS over its REST API.

    `key_name` is the full crypto key resource name, e.g.
    projects/p/locations/global/keyRings/r/cryptoKeys/k.
    """

    def __init__(
        self,
        key_name: str,
        access_token: str,
        *,
        endpoint: str = "https://cloudkms.googleapis.com/v1",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not key_name:
            raise ValueError("key_name is required for Cloud KMS")
        self.key_name = key_name
        self._access_token = access_token
        self._endpoint = endpoint.rstrip("/")
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def encrypt(self, plaintext: bytes, context: bytes) -> bytes:
        data = await self._call(
            "encrypt",
            {
                "plaintext": base64.b64encode(plaintext).decode(),
                "additionalAuthenticatedData": base64.b64encode(context).decode(),
            },
        )
        return self._b64field(data, "ciphertext")

    async def decrypt(self, ciphertext: bytes, context: bytes) -> bytes:
        data = await self._call(
            "decrypt",
            {
                "ciphertext": base64.b64encode(ciphertext).decode(),
                "additionalAuthenticatedData": base64.b64encode(context).decode(),
            },
        )
        return self._b64field(data, "plaintext")

    async def _call(self, op: str, payload: dict) -> dict:
        url = f"{self._endpoint}/{self.key_name}:{op}"
        try:
            resp = await self._client.post(
                url,
                json=payload,
                headers={"Authorization": f"Bearer {self._access_token}"},
            )
        except httpx.HTTPError as e:
            raise KeyServiceError(f"key service unreachable: {type(e).__name__}") from e

        if resp.status_code == 403:
            raise KeyServicePermissionDenied("PERMISSION_DENIED")
        if resp.status_code >= 400:
            raise KeyServiceError(f"key service returned HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as e:
            raise KeyServiceError("key service returned a malformed response") from e

    @staticmethod
    def _b64field(data: dict, name: str) -> bytes:
        value = data.get(name) if isinstance(data, dict) else None
        if not isinstance(value, str):
            raise KeyServiceError(f"key service response missing {name}")
        try:
            return base64.b64decode(value)
        except ValueError as e:
            raise KeyServiceError(f"key service returned invalid {name}") from e


def build_key_service(settings: Settings) -> KeyService:
    if settings.kms_backend == "gcp":
        if not settings.kms_key_name or not settings.kms_access_token:
            raise RuntimeError("KMS_KEY_NAME and KMS_ACCESS_TOKEN are required for KMS_BACKEND=gcp")
        return CloudKMSKeyService(settings.kms_key_name, settings.kms_access_token)

    if settings.kms_backend != "local":
        raise RuntimeError(f"Unknown KMS_BACKEND: {settings.kms_backend}")

    master_key = settings.kms_master_key
    if not master_key:
        if not settings.dev_mode:
            raise RuntimeError("KMS_MASTER_KEY is required outside DEV_MODE")
        logger.warning("Using development master key. Set KMS_MASTER_KEY in production.")
        master_key = _DEV_MASTER_KEY
    return LocalKeyService(master_key)
