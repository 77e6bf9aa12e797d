from __future__ import annotations

import base64
import binascii
import logging

from ..errors import KeyServiceError, KeyServicePermissionDenied, SecretUnwrapFailed
from ..monitoring.metrics import secret_unwrap_failures_total
from .keyservice import KeyService

logger = logging.getLogger(__name__)

CONTEXT_TAG = "mcpflow"


class SecretSealer:
    """Seals and unwraps credentials under a fixed authenticated-context tag.

    Ciphertexts are stored as base64 text. Plaintext returned by `unwrap`
    is the caller's to drop as soon as the outbound call is built.
    """

    def __init__(self, key_service: KeyService, context: str = CONTEXT_TAG):
        self.key_service = key_service
        self._context = context.encode()

    async def seal(self, plaintext: str) -> str:
        blob = await self.key_service.encrypt(plaintext.encode("utf-8"), self._context)
        return base64.b64encode(blob).decode("ascii")

    async def unwrap(self, ciphertext: str) -> str:
        try:
            blob = base64.b64decode(ciphertext, validate=True)
            plaintext = await self.key_service.decrypt(blob, self._context)
            return plaintext.decode("utf-8")
        except KeyServicePermissionDenied as e:
            category = SecretUnwrapFailed.PERMISSION_DENIED
            cause: Exception = e
        except (KeyServiceError, binascii.Error, ValueError) as e:
            # UnicodeDecodeError is a ValueError
            category = SecretUnwrapFailed.DECRYPT_FAILED
            cause = e
        except Exception as e:  # noqa: BLE001
            category = (
                SecretUnwrapFailed.PERMISSION_DENIED
                if "PERMISSION_DENIED" in str(e)
                else SecretUnwrapFailed.DECRYPT_FAILED
            )
            cause = e

        logger.warning("secret unwrap failed: category=%s type=%s", category, type(cause).__name__)
        secret_unwrap_failures_total.labels(category=category).inc()
        raise SecretUnwrapFailed(category) from cause
