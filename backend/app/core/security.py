# app/core/security.py

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from jose import jwt, JWTError

from app.core.config import settings

# Tokens are minted by the identity service; this backend only needs to read
# them. create_access_token stays for scripts and tests.


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    now = datetime.utcnow()
    expire = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update(
        {
            "iat": now,
            "exp": now + expire,
            "type": "access",
        }
    )
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_access_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate an *access* token.
    Used by get_current_user.
    """
    payload = jwt.decode(
        token,
        settings.JWT_SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
    )

    if payload.get("type") != "access":
        raise JWTError("Invalid token type")

    if "user_id" not in payload and "sub" not in payload:
        raise JWTError("Missing user_id in token")

    return payload
