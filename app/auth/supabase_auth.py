"""Supabase JWT validation dependency for FastAPI."""

import asyncio
import logging

from fastapi import Header

from app.db.supabase_client import run_blocking
from app.pipeline.errors import ErrorCode, PipelineError

logger = logging.getLogger(__name__)

# Set by main.py during lifespan
_auth_client = None
_timeout = 30.0


def set_auth_client(client, timeout: float = 30.0):
    global _auth_client, _timeout
    _auth_client = client
    _timeout = timeout


def _unauthorized(message: str) -> PipelineError:
    return PipelineError(401, ErrorCode.UNAUTHORIZED, message)


async def verify_jwt(authorization: str = Header(None)) -> str:
    """Validate the Supabase JWT from the Authorization header.

    Returns the authenticated user's id.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise _unauthorized("Authentication required")
    if _auth_client is None:
        raise _unauthorized("Authentication service unavailable")

    token = authorization[len("Bearer "):]
    try:
        user_response = await run_blocking(_auth_client.auth.get_user, token, timeout=_timeout)
    except asyncio.TimeoutError:
        logger.error("Supabase auth did not answer within %gs", _timeout)
        raise PipelineError(503, ErrorCode.EXTERNAL_API_ERROR, "Authentication service timed out")
    except Exception as e:
        logger.info("Token rejected: %s", e)
        raise _unauthorized("Invalid or expired token")

    user = getattr(user_response, "user", None)
    if user is None or not getattr(user, "id", None):
        raise _unauthorized("Invalid or expired token")
    return str(user.id)
