# resume_billing/core/security.py
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt

from resume_billing.core.config import settings
from resume_billing.log.logging import logger


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create JWT access token.

    Tokens are issued by the user subsystem; this is used by internal
    tooling and tests that need a token the billing service accepts.

    Args:
        data: Data to encode in token
        expires_delta: Optional expiration time

    Returns:
        JWT token string
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=15))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def verify_jwt_token(token: str) -> dict:
    """
    Verify signature and expiry of a JWT, with 30 s leeway on exp.

    Raises:
      ExpiredSignatureError if token is expired (beyond skew)
      JWTError for any other invalidity
    """
    token_preview = token[:20] + "..." if len(token) > 20 else token
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            options={"leeway": 30},
        )
    except jwt.ExpiredSignatureError:
        logger.warning("verify_jwt_token – token expired", event_type="auth_warning", token_preview=token_preview)
        raise
