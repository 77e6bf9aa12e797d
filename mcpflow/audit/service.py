"""
Structured audit logging for gateway decisions.

Events are written to the `mcpflow.audit` logger as single-line JSON and
kept in a bounded in-memory buffer. Details are sanitized so that
credentials, bearer tokens and ciphertexts never reach the log.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
import json
import logging


class AuditCategory(str, Enum):
    SYSTEM = "system"
    SECURITY = "security"
    GATEWAY = "gateway"
    KEY_MANAGEMENT = "key_management"


logger = logging.getLogger(__name__)


class AuditService:
    SENSITIVE_KEYS = {
        "authorization",
        "proxy-authorization",
        "cookie",
        "set-cookie",
        "api_key",
        "apikey",
        "x-api-key",
        "token",
        "access_token",
        "refresh_token",
        "secret",
        "password",
        "ciphertext",
        "encrypted_key",
        "plaintext",
    }

    def __init__(self, buffer_limit: int = 1000):
        self._buffer: list[dict] = []
        self._buffer_limit = buffer_limit

    @classmethod
    def _is_sensitive(cls, key: Any) -> bool:
        key_l = str(key).lower()
        return key_l in cls.SENSITIVE_KEYS or any(
            t in key_l for t in ("secret", "token", "password", "auth")
        )

    @classmethod
    def _sanitize(cls, data: Any) -> Any:
        """Recursively redact sensitive keys."""
        if isinstance(data, dict):
            return {
                k: "[REDACTED]" if cls._is_sensitive(k) else cls._sanitize(v)
                for k, v in data.items()
            }
        if isinstance(data, list):
            return [cls._sanitize(x) for x in data[:50]]  # cap length
        if isinstance(data, (str, int, float, bool)) or data is None:
            return data
        return "[REDACTED]"

    async def log_event(
        self,
        event_type: str,
        category: AuditCategory,
        action: str,
        result: str,
        description: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        user_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        payload = {
            "type": event_type,
            "category": category.value,
            "action": action,
            "result": result,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "user_id": user_id,
            "description": description,
            "details": self._sanitize(details or {}),
            "ts": datetime.now(tz=timezone.utc).isoformat(),
        }
        logger.info("audit_event=%s", json.dumps(payload, separators=(",", ":"), default=str))
        self._buffer.append(payload)
        if len(self._buffer) > self._buffer_limit:
            del self._buffer[: len(self._buffer) - self._buffer_limit]

    async def list_events(self, limit: int = 100, offset: int = 0) -> dict:
        items = list(self._buffer)
        items.reverse()
        return {
            "items": items[offset : offset + limit],
            "total": len(self._buffer),
            "limit": limit,
            "offset": offset,
        }
