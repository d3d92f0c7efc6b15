"""Authentication dependencies.

Users authenticate with a bearer JWT issued by the user subsystem (``sub``
is the account email). Other subsystems calling the credit-debit contract
authenticate with the shared internal API key.
"""

from fastapi import Depends, HTTPException, status, Request, Header
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from resume_billing.core.config import settings
from resume_billing.core.database import get_db
from resume_billing.core.security import verify_jwt_token
from resume_billing.log.logging import logger
from resume_billing.models.user import User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/token")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    Get the current authenticated user from the JWT token.
    Uses email in the 'sub' claim for authentication.

    Raises:
        HTTPException: 401 if the token is invalid or the user does not exist
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = verify_jwt_token(token)
        subject = payload.get("sub")
        if subject is None:
            raise credentials_exception
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired. Please log in again.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except JWTError as e:
        logger.debug(
            f"JWT validation error: {str(e)}",
            event_type="auth_debug",
            error_details=str(e)
        )
        raise credentials_exception

    result = await db.execute(select(User).where(User.email == subject))
    user = result.scalar_one_or_none()
    if user is None:
        raise credentials_exception

    return user


async def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        logger.warning(
            "Non-admin user attempted admin operation",
            event_type="security_violation",
            user_id=current_user.id,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required"
        )
    return current_user


async def get_internal_service(
    request: Request,
    api_key: str = Header(..., alias="X-API-Key", description="API key for service-to-service communication")
) -> str:
    """
    Authenticate internal service based on API key.

    This dependency should be used for endpoints that are only accessible
    to other microservices, not directly by users.

    Returns:
        str: Service identifier

    Raises:
        HTTPException: If API key is invalid
    """
    if not settings.INTERNAL_API_KEY:
        logger.error(
            "INTERNAL_API_KEY not configured in settings",
            event_type="config_error",
            endpoint=request.url.path
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal service authentication not configured"
        )

    if api_key != settings.INTERNAL_API_KEY:
        logger.warning(
            "Invalid API key attempt for internal service",
            event_type="security_violation",
            endpoint=request.url.path
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key for internal service access"
        )

    return "internal_service"
