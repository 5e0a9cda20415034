"""Authentication module using signed bearer tokens.

This module provides:
1. Access token creation and verification (JWT, HS256 by default)
2. FastAPI dependencies resolving the calling Principal
3. A staff-only guard for moderation routes

Account management lives outside this service; tokens are minted by the
identity service or by create_access_token for tooling and tests.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, ExpiredSignatureError, JWTError

from config import settings_conf
from errors import AuthenticationError
from models import Principal, UserType

# Configure logging
logger = logging.getLogger(__name__)


class AuthError(AuthenticationError):
    """Base exception for authentication errors."""
    pass


class TokenExpiredError(AuthError):
    """Raised when an access token has expired."""
    pass


class InvalidTokenError(AuthError):
    """Raised when an access token cannot be decoded or lacks claims."""
    pass


def create_access_token(
    user_id: str,
    user_type: UserType = UserType.USER,
    expires_days: Optional[int] = None
) -> str:
    """Create a signed access token for user_id.

    Args:
        user_id: Subject of the token
        user_type: Role claim carried in the token
        expires_days: Lifetime; defaults to token_expiry_days from settings

    Returns:
        The encoded token
    """
    days = expires_days if expires_days is not None else settings_conf['token_expiry_days']
    expires_at = datetime.now(timezone.utc) + timedelta(days=days)
    return jwt.encode(
        {
            'sub': user_id,
            'user_type': UserType(user_type).value,
            'exp': int(expires_at.timestamp())
        },
        settings_conf['jwt_secret'],
        algorithm=settings_conf['jwt_algorithm']
    )


def decode_access_token(token: str) -> Principal:
    """Verify a token and return the Principal it names.

    Raises:
        TokenExpiredError: If the token has expired
        InvalidTokenError: For any other verification failure
    """
    try:
        payload = jwt.decode(
            token,
            settings_conf['jwt_secret'],
            algorithms=[settings_conf['jwt_algorithm']]
        )
    except ExpiredSignatureError:
        raise TokenExpiredError("Token has expired")
    except JWTError as e:
        raise InvalidTokenError(f"Invalid token: {str(e)}")

    user_id = payload.get('sub')
    if not user_id:
        raise InvalidTokenError("Invalid token: missing subject")

    try:
        user_type = UserType(payload.get('user_type', UserType.USER.value))
    except ValueError:
        raise InvalidTokenError("Invalid token: unknown user type")

    return Principal(user_id=user_id, user_type=user_type)


# FastAPI security scheme; missing tokens are reported by the dependencies below
auth_scheme = HTTPBearer(
    auto_error=False,
    description="JWT Bearer token required"
)


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme)
) -> Optional[Principal]:
    """FastAPI dependency resolving the caller, or None when anonymous.

    A token that is present but invalid is still rejected.
    """
    if credentials is None:
        return None
    try:
        return decode_access_token(credentials.credentials)
    except AuthError as e:
        logger.warning(f"Rejected bearer token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e)
        )


async def get_current_user(
    user: Optional[Principal] = Depends(get_optional_user)
) -> Principal:
    """FastAPI dependency for getting the authenticated user.

    Raises:
        HTTPException: 401 if no valid token was sent
    """
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required"
        )
    return user


async def require_staff(user: Principal = Depends(get_current_user)) -> Principal:
    """FastAPI dependency allowing only admins and managers."""
    if not user.is_staff:
        logger.warning(f"User {user.user_id} denied staff-only route")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return user


# Export public interface
__all__ = [
    'AuthError',
    'TokenExpiredError',
    'InvalidTokenError',
    'create_access_token',
    'decode_access_token',
    'auth_scheme',
    'get_optional_user',
    'get_current_user',
    'require_staff',
]
