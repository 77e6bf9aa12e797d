from .auth import IdentityProvider, JWTIdentityProvider, extract_bearer

__all__ = ["IdentityProvider", "JWTIdentityProvider", "extract_bearer"]
