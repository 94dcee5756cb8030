"""
Auth utilities for the study agent API.

Validates Supabase JWTs and extracts user_id from request context.
Outside production, falls back to the X-User-Id header (local tooling, tests).
"""
from fastapi import Header, Request
from typing import Optional
import jwt
import logging

from studyagent.core.config import settings, is_production
from studyagent.core.errors import AuthError

logger = logging.getLogger(__name__)


def verify_supabase_jwt(token: str) -> Optional[str]:
    """
    Verify a Supabase access token and extract user_id.

    Args:
        token: JWT from Authorization header (Bearer {token})

    Returns:
        user_id from the 'sub' claim, or None when no secret is configured

    Raises:
        AuthError: Invalid or expired token
    """
    if not settings.SUPABASE_JWT_SECRET:
        logger.debug("No SUPABASE_JWT_SECRET configured, skipping JWT validation")
        return None

    try:
        payload = jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            audience=settings.SUPABASE_JWT_AUDIENCE,
            options={"verify_signature": True, "verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise AuthError("Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthError("No 'sub' claim in token")
    return user_id


async def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Non-production only: caller user ID"),
) -> str:
    """
    Extract current user ID from request context.

    Priority:
    1. Supabase JWT from Authorization header
    2. X-User-Id header (non-production only)
    3. Raise AuthError (401)
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        user_id = verify_supabase_jwt(auth_header[7:])
        if user_id:
            return user_id

    if x_user_id and x_user_id.strip() and not is_production():
        return x_user_id.strip()

    raise AuthError("Missing Authorization (Bearer JWT) header")
