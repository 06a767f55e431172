"""
Security and Authentication
Verifies Supabase access tokens for FastAPI routes
"""
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from manuflix.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

# HTTP Bearer scheme for JWT
security = HTTPBearer(auto_error=False)


def decode_access_token(token: str, settings: Settings) -> dict:
    """
    Decode a Supabase access token

    Args:
        token: JWT issued by Supabase Auth
        settings: Application settings holding the JWT secret

    Returns:
        Token claims

    Raises:
        JWTError: If the signature, audience or expiry is invalid
    """
    return jwt.decode(
        token,
        settings.SUPABASE_JWT_SECRET,
        algorithms=["HS256"],
        audience=settings.SUPABASE_JWT_AUDIENCE,
    )


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    settings: Settings = Depends(get_settings),
) -> str:
    """
    Get the authenticated user id (the token's "sub" claim).
    Returns 401 if the token is missing or invalid.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        raise credentials_exception

    try:
        payload = decode_access_token(credentials.credentials, settings)
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        raise credentials_exception

    user_id = payload.get("sub")
    if not user_id:
        logger.warning("Token missing 'sub' field")
        raise credentials_exception

    return user_id
