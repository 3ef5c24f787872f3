"""
Request identity helpers.

The web frontend owns sign-in and signs every backend request with a shared
secret. The middleware in app.main verifies the signature and stores the user
id in a context variable for the duration of the request.
"""
import contextvars
import hashlib
import hmac
import os
import time
from typing import Mapping, Optional
from fastapi import HTTPException, status

INTERNAL_AUTH_USER_HEADER = "x-subsentry-user-id"
INTERNAL_AUTH_TIMESTAMP_HEADER = "x-subsentry-timestamp"
INTERNAL_AUTH_SIGNATURE_HEADER = "x-subsentry-signature"
DEFAULT_INTERNAL_AUTH_MAX_AGE_SECONDS = 60

_request_user_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_user_id",
    default=None,
)


def set_request_user_id(user_id: str) -> contextvars.Token:
    return _request_user_id.set(user_id)


def clear_request_user_id(token: contextvars.Token) -> None:
    _request_user_id.reset(token)


def get_request_user_id() -> Optional[str]:
    return _request_user_id.get()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _signing_secret() -> bytes:
    secret = os.getenv("INTERNAL_AUTH_SECRET", "").strip()
    if not secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal authentication secret is not configured.",
        )
    return secret.encode("utf-8")


def _max_signature_age() -> int:
    try:
        max_age = int(os.getenv("INTERNAL_AUTH_MAX_AGE_SECONDS", ""))
    except ValueError:
        return DEFAULT_INTERNAL_AUTH_MAX_AGE_SECONDS
    return max_age if max_age > 0 else DEFAULT_INTERNAL_AUTH_MAX_AGE_SECONDS


def sign_request(secret: bytes, method: str, path_with_query: str, user_id: str, timestamp: str) -> str:
    """HMAC-SHA256 over method, path with query, user id and timestamp, one per line."""
    payload = f"{method.upper()}\n{path_with_query}\n{user_id}\n{timestamp}"
    return hmac.new(secret, payload.encode("utf-8"), hashlib.sha256).hexdigest()


def authenticate_internal_request_from_headers(
    method: str,
    path_with_query: str,
    headers: Mapping[str, str],
) -> str:
    """Return the signed user id, raising 401 for missing, stale or forged headers."""
    user_id, timestamp, signature = (
        headers.get(name, "").strip()
        for name in (
            INTERNAL_AUTH_USER_HEADER,
            INTERNAL_AUTH_TIMESTAMP_HEADER,
            INTERNAL_AUTH_SIGNATURE_HEADER,
        )
    )
    if not (user_id and timestamp and signature):
        raise _unauthorized("Missing internal authentication headers.")

    if not timestamp.isdigit():
        raise _unauthorized("Invalid internal authentication timestamp.")
    if abs(time.time() - int(timestamp)) > _max_signature_age():
        raise _unauthorized("Expired internal authentication signature.")

    expected = sign_request(_signing_secret(), method, path_with_query, user_id, timestamp)
    if not hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8")):
        raise _unauthorized("Invalid internal authentication signature.")

    return user_id


def get_user_id(user_id: Optional[str] = None) -> str:
    """
    Resolve the authenticated user for the current request.

    Args:
        user_id: Optional explicit user ID supplied by the caller

    Returns:
        User ID string

    Raises:
        HTTPException 401: no signed identity on the request
        HTTPException 403: explicit user_id does not match the signed identity
    """
    request_user_id = get_request_user_id()
    if not request_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
        )

    if user_id and user_id != request_user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Provided user_id does not match authenticated user.",
        )

    return request_user_id


def verify_cron_authorization(authorization: Optional[str]) -> None:
    """
    Check the bearer token sent by the scheduler against CRON_SECRET.

    Raises:
        HTTPException 500: CRON_SECRET is not configured
        HTTPException 401: header missing or wrong
    """
    secret = os.getenv("CRON_SECRET", "").strip()
    if not secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Cron secret is not configured.",
        )

    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(
        authorization.strip().encode("utf-8"),
        expected.encode("utf-8"),
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


def get_user_or_404(db, user_id: str):
    """Load the User row for an authenticated id; the frontend creates users on sign-up."""
    from app.models import User

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user
