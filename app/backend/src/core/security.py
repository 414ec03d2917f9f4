"""Security helpers for Auth0 integration."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Iterable

import httpx
import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.backend.src.core.config import get_settings
from app.backend.src.models import User
from app.backend.src.models.user import PAYER_ROLES, STAFF_ROLES
from app.backend.src.services.audit import ActorContext

from ..db import get_session_dependency

ALGORITHMS = ["RS256"]
EMAIL_CLAIMS = ("email", "https://tutoring-billing/email")
_scheme = HTTPBearer(auto_error=False)

LOGGER = structlog.get_logger(__name__)


# -------------------------------------------------------
# JWKS + Token Utilities
# -------------------------------------------------------

@lru_cache()
def _fetch_jwks(domain: str) -> dict[str, Any]:
    """Fetch (and cache) the JWKS for the given Auth0 domain."""
    jwks_url = f"https://{domain}/.well-known/jwks.json"
    try:
        with httpx.Client(timeout=5.0) as client:
            response = client.get(jwks_url)
            response.raise_for_status()
            return response.json()
    except httpx.HTTPError as exc:
        LOGGER.error("jwks_fetch_failed", domain=domain, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Unable to retrieve JWKS",
        ) from exc


def _get_rsa_key(token: str, domain: str) -> dict[str, str] | None:
    """Return the RSA key that matches the token header."""
    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header",
        ) from exc

    kid = unverified_header.get("kid")
    if not kid:
        return None

    for key in _fetch_jwks(domain).get("keys", []):
        if key.get("kid") == kid:
            return {name: key.get(name) for name in ("kty", "kid", "use", "n", "e")}
    return None


def _split_audiences(raw_value: str | None) -> list[str]:
    """Split the configured audience string on whitespace and commas."""
    if not raw_value:
        return []
    values: list[str] = []
    for chunk in raw_value.replace(",", " ").split():
        trimmed = chunk.strip().rstrip("/")
        if trimmed and trimmed not in values:
            values.append(trimmed)
    return values


def _token_audiences(payload: dict[str, Any]) -> set[str]:
    claim = payload.get("aud")
    if isinstance(claim, str):
        claim = [claim]
    if not isinstance(claim, (list, tuple, set)):
        return set()
    return {entry.rstrip("/") for entry in claim if isinstance(entry, str)}


def _decode_token(token: str, *, domain: str, audiences: list[str]) -> dict[str, Any]:
    """Decode and validate an Auth0 access token."""
    rsa_key = _get_rsa_key(token, domain)
    if not rsa_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unable to validate token",
        )

    try:
        payload = jwt.decode(
            token,
            rsa_key,
            algorithms=ALGORITHMS,
            issuer=f"https://{domain}/",
            options={"verify_aud": False},
        )
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc

    token_audiences = _token_audiences(payload)
    if not token_audiences:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing audience",
        )
    if not token_audiences & set(audiences):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token audience",
        )
    return payload


# -------------------------------------------------------
# User Resolution
# -------------------------------------------------------

def _resolve_user(session: Session, payload: dict[str, Any]) -> User:
    """Map a verified Auth0 payload to an existing portal user.

    Accounts are provisioned by the office; unknown identities are refused.
    """
    subject = payload.get("sub")
    if not subject:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing subject",
        )

    user = session.scalars(select(User).where(User.auth0_sub == subject)).one_or_none()
    if user:
        return user

    email = next((payload[claim] for claim in EMAIL_CLAIMS if payload.get(claim)), None)
    if email:
        user = session.scalars(select(User).where(User.email == email)).one_or_none()
        if user:
            user.auth0_sub = subject
            session.commit()
            LOGGER.info("auth0_subject_linked", user_id=user.id)
            return user

    LOGGER.warning("auth0_user_unknown", subject=subject)
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="User record not found",
    )


# -------------------------------------------------------
# Current User + Role Enforcement
# -------------------------------------------------------

def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_scheme),
    session: Session = Depends(get_session_dependency),
) -> User:
    """Resolve the authenticated user from the Auth0 bearer token."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header missing",
        )

    settings = get_settings()
    audiences = _split_audiences(settings.auth0_audience)
    if not settings.auth0_domain or not audiences:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Auth0 configuration is incomplete",
        )

    payload = _decode_token(
        credentials.credentials,
        domain=settings.auth0_domain,
        audiences=audiences,
    )
    user = _resolve_user(session, payload)

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated",
        )
    return user


def _enforce_roles(user: User, allowed_roles: set[str], *, allow_admin: bool = True) -> User:
    """Ensure the authenticated user has one of the allowed roles."""
    role = (user.role or "").lower()
    if not role:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User role not assigned",
        )

    if role in allowed_roles:
        return user
    if allow_admin and role == "admin":
        return user
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Insufficient permissions",
    )


def require_role(
    roles: Iterable[str],
    *,
    allow_admin: bool = True,
):
    """Return a dependency that enforces one of the provided roles."""
    normalized_roles = {value.lower() for value in roles}

    def dependency(user: User = Depends(get_current_user)) -> User:
        return _enforce_roles(user, normalized_roles, allow_admin=allow_admin)

    return dependency


require_staff_user = require_role(STAFF_ROLES)
require_payer_or_staff = require_role(STAFF_ROLES | PAYER_ROLES)


def get_actor_context(
    request: Request,
    user: User = Depends(get_current_user),
) -> ActorContext:
    """Describe the caller for services and the activity trail."""
    client_host = request.client.host if request.client else None
    return ActorContext.for_user(user, client_host)


__all__ = [
    "get_actor_context",
    "get_current_user",
    "require_payer_or_staff",
    "require_role",
    "require_staff_user",
]
