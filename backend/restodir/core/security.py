"""Bearer token verification.

Tokens are issued by the external auth service; this module only verifies
them and extracts the claims the API needs.
"""

from __future__ import annotations

from typing import Any, Dict

from jose import jwt

from restodir.core.config import settings


def decode_access_token(token: str) -> Dict[str, Any]:
    """Verify signature, expiry, issuer and audience; raises ``JWTError`` on failure."""

    return jwt.decode(
        token,
        settings.SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        issuer=settings.JWT_ISSUER,
    )
