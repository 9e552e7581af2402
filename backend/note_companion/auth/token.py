"""
JWT Token Verification — Clerk session tokens

Clerk signs session tokens with RS256 using a rotating key set published at
    <issuer>/.well-known/jwks.json

We fetch the public JWKS once and cache it (TTL: 1 hour). If a kid is
missing we force-refresh, which handles key rotation transparently.

Claims used:
    sub   Clerk user id (user_2abc…) — the owner of every upload record
    iss   must equal CLERK_ISSUER
    aud   checked only when CLERK_AUDIENCE is configured
    exp   always checked
"""

from __future__ import annotations

import logging
import time
from typing import Annotated

import httpx
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwk, jwt
from pydantic import BaseModel

from note_companion.core.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# HTTP Bearer extractor
# ---------------------------------------------------------------------------

bearer_scheme = HTTPBearer(auto_error=True)


# ---------------------------------------------------------------------------
# Verified token payload
# ---------------------------------------------------------------------------

class TokenPayload(BaseModel):
    """Parsed, validated JWT claims — passed to route handlers."""
    sub:   str            # Clerk user id
    email: str = ""
    sid:   str | None = None   # Clerk session id
    exp:   int
    iss:   str

    @property
    def user_id(self) -> str:
        return self.sub


# ---------------------------------------------------------------------------
# JWKS cache (in-memory, TTL-based)
# ---------------------------------------------------------------------------

_JWKS_CACHE: dict[str, tuple[dict, float]] = {}   # issuer → (jwks, fetched_at)
_JWKS_TTL   = 3600   # 1 hour


async def _fetch_jwks(issuer: str) -> dict:
    """Fetch JWKS from the provider's well-known endpoint with TTL caching."""
    now = time.monotonic()
    cached = _JWKS_CACHE.get(issuer)
    if cached and (now - cached[1]) < _JWKS_TTL:
        return cached[0]

    jwks_uri = f"{issuer.rstrip('/')}/.well-known/jwks.json"
    async with httpx.AsyncClient(timeout=10.0) as client:
        resp = await client.get(jwks_uri)
        resp.raise_for_status()
        jwks = resp.json()

    _JWKS_CACHE[issuer] = (jwks, now)
    logger.debug("JWKS refreshed for issuer: %s", issuer)
    return jwks


async def _get_signing_key(token: str):
    """
    Extract kid from token header, fetch matching public key from JWKS.
    Force-refreshes the cache if the kid is not found (handles key rotation).
    """
    try:
        header = jwt.get_unverified_header(token)
    except JWTError as exc:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Invalid token header") from exc

    kid = header.get("kid")
    issuer = settings.clerk_issuer

    for attempt in range(2):   # 0 = cached, 1 = force refresh
        if attempt == 1:
            _JWKS_CACHE.pop(issuer, None)

        try:
            jwks = await _fetch_jwks(issuer)
        except httpx.HTTPError as exc:
            logger.error("JWKS fetch failed | issuer=%s: %s", issuer, exc)
            raise HTTPException(
                status.HTTP_401_UNAUTHORIZED,
                detail="Unable to verify token signature",
            ) from exc

        for key_data in jwks.get("keys", []):
            if key_data.get("kid") == kid:
                return jwk.construct(key_data).public_key()

    raise HTTPException(
        status.HTTP_401_UNAUTHORIZED,
        detail=f"Unable to find signing key for kid={kid}",
    )


# ---------------------------------------------------------------------------
# Main verification function
# ---------------------------------------------------------------------------

async def verify_token(token: str) -> TokenPayload:
    """
    Verify a Clerk session token:
      1. Fetch matching public key from JWKS (cached).
      2. Verify signature, expiry, issuer and (if configured) audience.
      3. Return a typed TokenPayload.
    """
    signing_key = await _get_signing_key(token)

    audience = settings.clerk_audience or None
    try:
        claims = jwt.decode(
            token,
            signing_key,
            algorithms=["RS256"],
            audience=audience,
            issuer=settings.clerk_issuer,
            options={"verify_exp": True, "verify_aud": audience is not None},
        )
    except ExpiredSignatureError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Token has expired")
    except JWTError as exc:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {exc}")

    if not claims.get("sub"):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Token missing sub claim")

    return TokenPayload(
        sub=claims["sub"],
        email=claims.get("email", ""),
        sid=claims.get("sid"),
        exp=claims["exp"],
        iss=claims["iss"],
    )


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------

async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
) -> TokenPayload:
    """
    FastAPI dependency that extracts and validates the Bearer token.

        @router.get("/status/{file_id}")
        async def status(file_id: int, user: TokenPayload = Depends(get_current_user)):
            ...
    """
    return await verify_token(credentials.credentials)
