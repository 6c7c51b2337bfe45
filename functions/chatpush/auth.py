"""Caller identity for HTTPS callable functions.

Callable requests carry the Firebase ID token of the signed-in user in the
``Authorization`` header. Verification failures are treated as anonymous.
"""
from typing import Optional

from google.auth import exceptions as google_auth_exceptions
from google.auth.transport.requests import Request
from google.oauth2 import id_token

from . import config
from .logging_config import CloudFunctionLogger

logger = CloudFunctionLogger("auth")


def bearer_token(request) -> Optional[str]:
    """Extract the bearer token from a Flask request, if any."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def caller_uid(request) -> Optional[str]:
    """Return the verified Firebase uid of the caller, or None."""
    token = bearer_token(request)
    if token is None:
        return None
    try:
        claims = id_token.verify_firebase_token(
            token, Request(), audience=config.PROJECT_ID)
    except (ValueError, google_auth_exceptions.GoogleAuthError) as e:
        logger.warning("Rejected Firebase ID token", error=str(e))
        return None
    if not claims:
        return None
    return claims.get("user_id") or claims.get("sub")
