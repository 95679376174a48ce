"""Operator token utilities.

Tokens are issued by the external authentication service (login, OTP and
2FA live there); this backend only verifies them and reads the role claim.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from emp_ops.core.config import settings


def create_access_token(
    subject: str,
    role: str,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token (used by tooling and tests)."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=15))
    to_encode = {"exp": expire, "sub": str(subject), "type": "access", "role": role}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict[str, Any] | None:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
