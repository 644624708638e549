"""
Authentication utilities for bearer JWT verification.

Tokens are issued by the identity service; this module only checks the
signature and expiry and hands back the payload.
"""
import jwt

from app.core import config
from app.core.errors import AppError, ErrorKind
from app.utils import get_logger


log = get_logger(__name__)


def unauthorized(message: str) -> AppError:
    return AppError(ErrorKind.UNAUTHORIZED, message, entity="token")


def verify_jwt_token(token: str) -> dict:
    """
    Verify a bearer JWT and return its payload.

    Args:
        token: JWT token from Authorization header

    Returns:
        Decoded JWT payload; ``sub`` carries the user id

    Raises:
        AppError(UNAUTHORIZED): token invalid or expired, or no JWT_SECRET configured
    """
    if not config.JWT_SECRET:
        log.error("JWT_SECRET is not set; rejecting bearer token")
        raise unauthorized("Token verification is not configured")

    try:
        return jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise unauthorized("Token has expired") from e
    except jwt.InvalidTokenError as e:
        raise unauthorized(f"Invalid token: {str(e)}") from e
