"""JWT creation and validation for requester identity and download links.

Uses PyJWT. Access tokens carry the requester id in ``sub`` and the
organization id in ``org``; download tokens carry an artifact path.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt

_ACCESS_TOKEN_TYPE = "access"
_DOWNLOAD_TOKEN_TYPE = "download"


@dataclass(frozen=True)
class Requester:
    """Authenticated caller of the export API."""

    requester_id: int
    organization_id: int | None = None


def create_access_token(
    requester_id: int,
    organization_id: int | None,
    secret_key: str,
    algorithm: str = "HS256",
    expires_minutes: int = 30,
) -> str:
    """Create a JWT access token for a requester.

    Args:
        requester_id: The requesting user's id.
        organization_id: The organization the requester acts for.
        secret_key: Secret key for signing.
        algorithm: JWT signing algorithm.
        expires_minutes: Token expiration in minutes.

    Returns:
        The encoded JWT string.
    """
    expire = datetime.now(UTC) + timedelta(minutes=expires_minutes)
    payload = {
        "sub": str(requester_id),
        "org": organization_id,
        "exp": expire,
        "type": _ACCESS_TOKEN_TYPE,
    }
    return jwt.encode(payload, secret_key, algorithm=algorithm)


def decode_token(
    token: str,
    secret_key: str,
    algorithm: str = "HS256",
) -> dict:
    """Decode and validate a JWT token.

    Args:
        token: The JWT string to decode.
        secret_key: Secret key used for signing.
        algorithm: JWT signing algorithm.

    Returns:
        The decoded token payload.

    Raises:
        jwt.ExpiredSignatureError: If the token has expired.
        jwt.InvalidTokenError: If the token is invalid.
    """
    return jwt.decode(token, secret_key, algorithms=[algorithm])


def create_download_token(
    path: str,
    secret_key: str,
    ttl: timedelta,
    algorithm: str = "HS256",
) -> str:
    """Create a short-lived token granting download access to one artifact."""
    payload = {
        "path": path,
        "exp": datetime.now(UTC) + ttl,
        "type": _DOWNLOAD_TOKEN_TYPE,
    }
    return jwt.encode(payload, secret_key, algorithm=algorithm)


def verify_download_token(
    token: str,
    secret_key: str,
    algorithm: str = "HS256",
) -> str:
    """Validate a download token and return the artifact path it grants.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, or not a
            download token.
    """
    payload = decode_token(token, secret_key, algorithm)
    if payload.get("type") != _DOWNLOAD_TOKEN_TYPE or not payload.get("path"):
        msg = "Not a download token"
        raise jwt.InvalidTokenError(msg)
    return str(payload["path"])


def requester_from_token(
    token: str,
    secret_key: str,
    algorithm: str = "HS256",
) -> Requester:
    """Resolve an access token to the requester it identifies.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, not an
            access token, or its subject is not a numeric id.
    """
    payload = decode_token(token, secret_key, algorithm)
    if payload.get("type") != _ACCESS_TOKEN_TYPE:
        msg = "Not an access token"
        raise jwt.InvalidTokenError(msg)
    try:
        requester_id = int(payload["sub"])
        org = payload.get("org")
        organization_id = int(org) if org is not None else None
    except (KeyError, TypeError, ValueError):
        msg = "Token subject or organization is not a numeric id"
        raise jwt.InvalidTokenError(msg) from None
    return Requester(requester_id=requester_id, organization_id=organization_id)
