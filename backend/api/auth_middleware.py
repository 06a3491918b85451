"""
Authentication dependencies.

Dashboard users send a Supabase JWT; scheduled jobs (Vercel-style cron or
the Celery beat fallback) send the shared CRON_SECRET. Both arrive as
"Authorization: Bearer <value>".

SECURITY: Never trust a user_id from query parameters or request bodies.
Always use the AuthContext returned by these dependencies.
"""
from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

import httpx
from fastapi import Depends, Header, HTTPException, status
from jose import JWTError, jwt

from config import settings

logger = logging.getLogger(__name__)

# Cache for JWKS public keys
_jwks_cache: dict | None = None


@dataclass
class AuthContext:
    """Verified caller. For cron calls user_id is SYNC_USER_ID (or None)."""

    user_id: Optional[UUID]
    email: Optional[str]
    role: str
    is_cron: bool = False

    @property
    def user_id_str(self) -> Optional[str]:
        return str(self.user_id) if self.user_id else None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _extract_token(authorization: Optional[str]) -> str:
    """
    Extract the bearer value from the Authorization header.

    Raises:
        HTTPException: If header is missing or malformed
    """
    if not authorization:
        raise _unauthorized("Missing Authorization header")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _unauthorized("Invalid Authorization header format. Expected: Bearer <token>")

    return parts[1]


async def _get_jwks() -> dict:
    """Fetch and cache the Supabase project's JWKS."""
    global _jwks_cache

    if _jwks_cache is not None:
        return _jwks_cache

    if not settings.SUPABASE_URL:
        logger.error("SUPABASE_URL not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication not configured",
        )

    jwks_url = f"{settings.SUPABASE_URL}/auth/v1/.well-known/jwks.json"
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(jwks_url)
            response.raise_for_status()
            _jwks_cache = response.json()
            logger.info(f"Fetched JWKS from {jwks_url}")
            return _jwks_cache
    except httpx.HTTPError as e:
        logger.error(f"Failed to fetch JWKS from {jwks_url}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch authentication keys",
        )


def _get_signing_key(jwks: dict, kid: Optional[str]) -> dict:
    """Pick the JWKS key matching the token's kid."""
    global _jwks_cache

    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return key

    # Keys may have rotated
    _jwks_cache = None
    raise _unauthorized("Token signed with unknown key")


async def _verify_jwt(token: str) -> dict:
    """
    Verify a Supabase JWT and return its payload.

    ES256 tokens are checked against the project JWKS; anything else is
    treated as a legacy HS256 token signed with SUPABASE_JWT_SECRET.
    """
    try:
        header = jwt.get_unverified_header(token)
    except JWTError as e:
        logger.warning(f"Failed to decode token header: {e}")
        raise _unauthorized("Invalid token format")

    alg = header.get("alg", "HS256")
    try:
        if alg == "ES256":
            jwks = await _get_jwks()
            return jwt.decode(
                token,
                _get_signing_key(jwks, header.get("kid")),
                algorithms=["ES256"],
                options={"verify_aud": False},
            )

        if not settings.SUPABASE_JWT_SECRET:
            logger.error("SUPABASE_JWT_SECRET not configured for HS256 token")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Authentication not configured",
            )
        return jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            options={"verify_aud": False},
        )
    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        raise _unauthorized("Invalid or expired token")


def _context_from_payload(payload: dict) -> AuthContext:
    sub = payload.get("sub")
    if not sub:
        raise _unauthorized("Invalid token: missing subject")
    try:
        user_id = UUID(sub)
    except ValueError:
        raise _unauthorized("Invalid token: malformed subject")

    app_role = (payload.get("app_metadata") or {}).get("role")
    return AuthContext(
        user_id=user_id,
        email=payload.get("email"),
        role=app_role or payload.get("role") or "authenticated",
    )


def _is_cron_secret(token: str) -> bool:
    secret = settings.CRON_SECRET
    return bool(secret) and hmac.compare_digest(token, secret)


def _cron_context() -> AuthContext:
    user_id = UUID(settings.SYNC_USER_ID) if settings.SYNC_USER_ID else None
    return AuthContext(user_id=user_id, email=None, role="cron", is_cron=True)


async def get_current_auth(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> AuthContext:
    """
    FastAPI dependency that verifies the JWT and returns AuthContext.

    Usage:
        @router.get("/protected")
        async def protected_route(auth: AuthContext = Depends(get_current_auth)):
            ...
    """
    token = _extract_token(authorization)
    payload = await _verify_jwt(token)
    return _context_from_payload(payload)


async def require_cron(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> AuthContext:
    """Only the scheduler may call this route."""
    if not settings.CRON_SECRET:
        logger.error("CRON_SECRET not configured; rejecting cron request")
        raise _unauthorized("Unauthorized")
    token = _extract_token(authorization)
    if not _is_cron_secret(token):
        raise _unauthorized("Unauthorized")
    return _cron_context()


async def require_cron_or_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> AuthContext:
    """Accept the cron secret or a signed-in dashboard user."""
    token = _extract_token(authorization)
    if _is_cron_secret(token):
        return _cron_context()
    return _context_from_payload(await _verify_jwt(token))


async def require_user_id(
    auth: AuthContext = Depends(get_current_auth),
) -> UUID:
    """The verified user's id."""
    if auth.user_id is None:
        raise _unauthorized("Unauthorized")
    return auth.user_id
