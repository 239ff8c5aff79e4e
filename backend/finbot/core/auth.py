import logging
import threading
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Header, HTTPException
from jwt import PyJWKClient

from finbot.core.config import get_settings

logger = logging.getLogger(__name__)

# Thread-safe JWKS client cache (initialised lazily, lives for process lifetime).
_jwks_clients: dict[str, PyJWKClient] = {}
_jwks_lock = threading.Lock()


def _get_jwks_client(jwks_url: str) -> PyJWKClient:
    """Return a cached PyJWKClient (with built-in key caching)."""
    client = _jwks_clients.get(jwks_url)
    if client is not None:
        return client
    with _jwks_lock:
        client = _jwks_clients.get(jwks_url)
        if client is None:
            client = PyJWKClient(jwks_url, cache_keys=True, lifespan=3600)
            _jwks_clients[jwks_url] = client
        return client


@dataclass
class CurrentUser:
    id: str
    access_token: str
    email: Optional[str] = None
    issuer: Optional[str] = None


def _decode_options(settings):
    audience = (settings.jwt_audience or "").strip()
    decode_kwargs = {}
    options = {}
    if audience:
        decode_kwargs["audience"] = audience
        options["verify_aud"] = True
    else:
        options["verify_aud"] = False
    return decode_kwargs, options


def _try_hs256(token: str, settings, decode_kwargs: dict, options: dict):
    """Tokens issued by this service. Returns payload or None."""
    if not settings.jwt_secret:
        return None
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            options=options,
            **decode_kwargs,
        )
    except jwt.InvalidTokenError:
        return None


def _try_rs256(token: str, settings):
    """Accounting identity provider access tokens, verified via its JWKS. Returns payload or None."""
    if not settings.accounting_identity_jwks_url:
        return None
    try:
        unverified = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return None
    issuer = unverified.get("iss")
    if issuer not in settings.accounting_token_issuers:
        return None
    try:
        signing_key = _get_jwks_client(settings.accounting_identity_jwks_url).get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            issuer=issuer,
            options={"verify_aud": False},
        )
    except (jwt.InvalidTokenError, jwt.PyJWKClientError) as exc:
        logger.debug("RS256 verification failed: %s", exc)
        return None


def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> CurrentUser:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(401, "Access token required")

    token = authorization.split(" ", 1)[1].strip()
    settings = get_settings()

    if not settings.jwt_secret and not settings.accounting_identity_jwks_url:
        raise HTTPException(500, "JWT_SECRET is not configured")

    try:
        header = jwt.get_unverified_header(token)
    except jwt.DecodeError:
        raise HTTPException(403, "Invalid or expired token")

    decode_kwargs, options = _decode_options(settings)
    if header.get("alg") == "RS256":
        payload = _try_rs256(token, settings)
    else:
        payload = _try_hs256(token, settings, decode_kwargs, options)

    if payload is None:
        raise HTTPException(403, "Invalid or expired token")

    user_id = payload.get("userId") or payload.get("sub")
    if not user_id:
        raise HTTPException(403, "Invalid or expired token")

    return CurrentUser(
        id=str(user_id),
        access_token=token,
        email=payload.get("email"),
        issuer=payload.get("iss"),
    )
