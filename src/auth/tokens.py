"""Run mode and caller auth tokens.

Two token formats identify a caller:

- ``DevToken``: base64-encoded JSON ``{"userId", "email", "name", "exp"}``
  with ``exp`` in epoch milliseconds. Only accepted in development mode.
- ``SignedToken``: an HS256 JWT whose ``sub`` claim is the user id.

``decode_auth_token`` picks the format from the token's shape (a JWT has
exactly three dot-separated segments, base64 has none) and then decodes
only that format.
"""

import base64
import binascii
import json
import time
from dataclasses import dataclass
from enum import StrEnum

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError

from src.config import Settings
from src.errors import CredentialError

SIGNED_TOKEN_ALGORITHM = "HS256"


class Mode(StrEnum):
    PRODUCTION = "production"
    DEVELOPMENT = "development"

    @property
    def llm_enabled(self) -> bool:
        return self is Mode.PRODUCTION

    @property
    def accepts_dev_tokens(self) -> bool:
        return self is Mode.DEVELOPMENT


def resolve_mode(settings: Settings) -> Mode:
    try:
        return Mode(settings.app_mode.strip().lower())
    except ValueError:
        msg = f"Unknown app_mode {settings.app_mode!r}; expected 'production' or 'development'"
        raise ValueError(msg) from None


@dataclass(frozen=True)
class DevToken:
    user_id: str
    email: str | None = None
    name: str | None = None
    expires_at_ms: int | None = None


@dataclass(frozen=True)
class SignedToken:
    user_id: str
    email: str | None = None
    expires_at: int | None = None


AuthToken = DevToken | SignedToken


def _is_jwt_shaped(raw: str) -> bool:
    parts = raw.split(".")
    return len(parts) == 3 and all(parts)


def issue_signed_token(user_id: str, secret: str, email: str | None = None, ttl_seconds: int = 86400) -> str:
    now = int(time.time())
    claims: dict[str, object] = {"sub": user_id, "iat": now, "exp": now + ttl_seconds}
    if email:
        claims["email"] = email
    return jwt.encode(claims, secret, algorithm=SIGNED_TOKEN_ALGORITHM)


def issue_dev_token(user_id: str, email: str | None = None, name: str | None = None, ttl_seconds: int = 86400) -> str:
    now_ms = int(time.time() * 1000)
    payload = {"userId": user_id, "email": email, "name": name, "iat": now_ms, "exp": now_ms + ttl_seconds * 1000}
    return base64.b64encode(json.dumps(payload).encode()).decode()


def _decode_signed(raw: str, secret: str) -> SignedToken:
    if not secret:
        msg = "Signed tokens require a configured JWT secret"
        raise CredentialError(msg)
    try:
        claims = jwt.decode(raw, secret, algorithms=[SIGNED_TOKEN_ALGORITHM])
    except ExpiredSignatureError as e:
        msg = "Auth token has expired"
        raise CredentialError(msg) from e
    except JWTError as e:
        msg = f"Invalid auth token: {e}"
        raise CredentialError(msg) from e
    user_id = claims.get("sub")
    if not user_id:
        msg = "Auth token has no subject"
        raise CredentialError(msg)
    return SignedToken(user_id=str(user_id), email=claims.get("email"), expires_at=claims.get("exp"))


def _decode_dev(raw: str, now_ms: int) -> DevToken:
    try:
        payload = json.loads(base64.b64decode(raw, validate=True))
    except (binascii.Error, ValueError) as e:
        msg = "Malformed development token"
        raise CredentialError(msg) from e
    if not isinstance(payload, dict) or not payload.get("userId"):
        msg = "Development token has no userId"
        raise CredentialError(msg)
    expires_at_ms = payload.get("exp")
    if expires_at_ms is not None and int(expires_at_ms) <= now_ms:
        msg = "Development token has expired"
        raise CredentialError(msg)
    return DevToken(
        user_id=str(payload["userId"]),
        email=payload.get("email"),
        name=payload.get("name"),
        expires_at_ms=int(expires_at_ms) if expires_at_ms is not None else None,
    )


def decode_auth_token(raw: str, mode: Mode, secret: str, now_ms: int | None = None) -> AuthToken:
    """Decode a bearer token into the variant its shape names.

    Raises:
        CredentialError: the token is malformed, expired, fails signature
            verification, or is a dev token outside development mode.
    """
    raw = raw.strip()
    if raw.lower().startswith("bearer "):
        raw = raw[7:].strip()
    if not raw:
        msg = "Missing auth token"
        raise CredentialError(msg)

    if _is_jwt_shaped(raw):
        return _decode_signed(raw, secret)

    if not mode.accepts_dev_tokens:
        msg = "Development tokens are only accepted in development mode"
        raise CredentialError(msg)
    return _decode_dev(raw, now_ms if now_ms is not None else int(time.time() * 1000))
