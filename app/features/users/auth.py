"""
Bearer token verification.

Tokens are issued by the authentication service and signed with the shared
``JWT_SECRET``. The ``sub`` claim carries the local user id.
"""
import jwt

from app.core import config
from app.core.errors import Unauthenticated


def verify_jwt_token(token: str) -> dict:
    """
    Verify a bearer token and return its payload.
    
    Args:
        token: JWT token from Authorization header
        
    Returns:
        Decoded JWT payload
        
    Raises:
        Unauthenticated: If token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"require": ["sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token has expired")
    except jwt.InvalidTokenError as e:
        raise Unauthenticated(f"Invalid token: {str(e)}")
