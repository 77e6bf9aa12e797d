"""
Identity helpers for the gateway.

Session tokens are HS256 JWTs whose `sub` claim is the principal id. This
matches tokens minted by hosted auth providers that sign with a shared
project secret (optionally with an `aud` such as "authenticated").
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol
import logging
import os

import jwt

from ..errors import AuthenticationFailed

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    async def authenticate(self, token: str) -> Optional[str]:
        """Return the principal id for a valid token, else None."""
        ...


def extract_bearer(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationFailed("Missing or invalid authorization header")
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise AuthenticationFailed("Missing or invalid authorization header")
    return token


class JWTIdentityProvider:
    """JWT verifier (and dev-time issuer) for principal sessions."""

    def __init__(self, jwt_secret: str, audience: Optional[str] = None):
        if not jwt_secret or jwt_secret == "change-this-secret":
            logger.warning(
                "Using default/weak JWT secret. Set JWT_SECRET in production."
            )
        self.jwt_secret = jwt_secret
        self.audience = audience

    def generate_token(self, principal_id: str, expires_minutes: int = 60) -> str:
        now = datetime.now(tz=timezone.utc)
        payload = {
            "sub": principal_id,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(minutes=expires_minutes)).timestamp()),
            "jti": os.urandom(8).hex(),
        }
        if self.audience:
            payload["aud"] = self.audience
        return jwt.encode(payload, self.jwt_secret, algorithm="HS256")

    async def authenticate(self, token: str) -> Optional[str]:
        try:
            claims = jwt.decode(
                token,
                self.jwt_secret,
                algorithms=["HS256"],
                audience=self.audience,
                options={"require": ["sub", "exp"], "verify_aud": bool(self.audience)},
            )
        except jwt.ExpiredSignatureError:
            logger.info("JWT expired")
            return None
        except jwt.InvalidTokenError as e:  # noqa: PERF203
            logger.info("Invalid JWT: %s", e)
            return None

        sub = claims.get("sub")
        return str(sub) if sub else None
