"""Bearer-token authentication and role checks for the search API.

Tokens are Keycloak-style JWTs. The username comes from
``preferred_username`` (falling back to ``sub``); roles are collected from
``realm_access.roles`` and any top-level ``roles`` / ``groups`` claim.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from app import config

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    username: str
    roles: frozenset[str] = field(default_factory=frozenset)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _roles_from_claims(claims: dict[str, Any]) -> frozenset[str]:
    roles: set[str] = set()
    realm_access = claims.get("realm_access") or {}
    if isinstance(realm_access, dict):
        roles.update(realm_access.get("roles") or [])
    for key in ("roles", "groups"):
        value = claims.get(key) or []
        if isinstance(value, str):
            value = [value]
        roles.update(value)
    return frozenset(r.strip("/").lower() for r in roles if isinstance(r, str))


def decode_token(token: str) -> Identity:
    """Verify a JWT and turn its claims into an Identity.

    Raises HTTPException(401) if the token is invalid or has no subject.
    """
    if not config.JWT_SECRET:
        logger.error("JWT_SECRET is not configured, rejecting token")
        raise _unauthorized("Authentication is not configured")

    options = {"verify_aud": bool(config.JWT_AUDIENCE)}
    try:
        claims = jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            audience=config.JWT_AUDIENCE or None,
            issuer=config.JWT_ISSUER or None,
            options=options,
        )
    except JWTError as e:
        logger.info("Rejected bearer token: %s", e)
        raise _unauthorized("Invalid or expired token") from e

    username = claims.get("preferred_username") or claims.get("sub")
    if not username:
        raise _unauthorized("Token has no subject")
    return Identity(username=username, roles=_roles_from_claims(claims))


async def get_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),  # noqa: B008
) -> Identity:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise _unauthorized("Bearer token required")
    return decode_token(credentials.credentials)


def require_roles(*allowed: str):
    """Dependency factory: the caller must hold at least one of ``allowed``."""
    allowed_set = frozenset(r.lower() for r in allowed)

    async def dependency(identity: Identity = Depends(get_identity)) -> Identity:  # noqa: B008
        if not identity.roles & allowed_set:
            logger.info(
                "User %s with roles %s denied, needs one of %s",
                identity.username, sorted(identity.roles), sorted(allowed_set),
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role",
            )
        return identity

    return dependency
