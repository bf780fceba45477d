"""
auth/session.py -- Studio session codec and session cookie helpers.

Security design decisions:
  Cipher: AES-256-GCM (cryptography's AESGCM). The tag authenticates the
       whole token, so a flipped byte anywhere fails decryption instead of
       yielding a modified session.

  Key: HMAC-SHA256(secret, "studio-session-key"). The fixed label separates
       this key from any other use of the same secret (the auth backend signs
       its own cookies with it).

  Token layout: base64url(iv[16] || tag[16] || ciphertext), unpadded. The IV
       is random per call, so encrypting the same session twice never gives
       the same token.

  Failure oracle: decrypt_session() returns None for every failure and
       verify_request_session() reports the same message for a missing,
       forged, or expired cookie. A client cannot learn which check failed.
       The specific cause is logged server-side at DEBUG only.

  Default secret: DEFAULT_SESSION_SECRET exists so `DEBUG=true` local runs
       work out of the box. api/main.py refuses to start with it otherwise.

Layer rule: no imports from api/, web/, or events/. Import from core/ is allowed.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import os
import time
from typing import Any, Mapping, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from auth.models import SessionCheck, StudioSession
from core.models import AccessConfig, CookieOptions, UniversalRequest

logger = logging.getLogger("studio.session")

STUDIO_COOKIE_NAME = "auth_studio_session"
DEFAULT_SESSION_SECRET = "studio-default-secret"
DEFAULT_SESSION_DURATION_MS = 7 * 24 * 60 * 60 * 1000

# Same message for every failure cause -- see module docstring.
UNAUTHENTICATED_MESSAGE = "Authentication required."

_KEY_LABEL = b"studio-session-key"
_IV_LENGTH = 16
_TAG_LENGTH = 16


def _now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


def _derive_key(secret: str) -> bytes:
    return hmac.new(secret.encode("utf-8"), _KEY_LABEL, hashlib.sha256).digest()


def encrypt_session(session: StudioSession, secret: str) -> str:
    """Encrypt a session into an opaque, URL-safe cookie token."""
    iv = os.urandom(_IV_LENGTH)
    plaintext = json.dumps(session.to_dict(), separators=(",", ":")).encode("utf-8")
    # AESGCM appends the tag to the ciphertext; the token carries it up front.
    sealed = AESGCM(_derive_key(secret)).encrypt(iv, plaintext, None)
    ciphertext, tag = sealed[:-_TAG_LENGTH], sealed[-_TAG_LENGTH:]
    return base64.urlsafe_b64encode(iv + tag + ciphertext).rstrip(b"=").decode("ascii")


def decrypt_session(token: str, secret: str) -> Optional[StudioSession]:
    """Decrypt a cookie token. Returns None on any failure -- never raises.

    Covers malformed base64, truncated tokens, tag mismatch (tampering or a
    different secret), and payloads that are not a valid session.
    """
    try:
        padded = token + "=" * (-len(token) % 4)
        raw = base64.b64decode(padded, altchars=b"-_", validate=True)
        if len(raw) <= _IV_LENGTH + _TAG_LENGTH:
            logger.debug("Session token too short (%d bytes)", len(raw))
            return None
        iv = raw[:_IV_LENGTH]
        tag = raw[_IV_LENGTH : _IV_LENGTH + _TAG_LENGTH]
        ciphertext = raw[_IV_LENGTH + _TAG_LENGTH :]
        plaintext = AESGCM(_derive_key(secret)).decrypt(iv, ciphertext + tag, None)
        return StudioSession.from_dict(json.loads(plaintext.decode("utf-8")))
    except InvalidTag:
        logger.debug("Session token failed authentication")
        return None
    except (ValueError, TypeError, KeyError, AttributeError) as e:
        logger.debug("Session token rejected: %s", e)
        return None


def is_session_valid(session: Optional[StudioSession]) -> bool:
    """A session is valid iff it exists and has not expired."""
    return session is not None and session.expires_at > _now_ms()


def create_studio_session(
    user: Mapping[str, Any], duration_ms: int = DEFAULT_SESSION_DURATION_MS
) -> StudioSession:
    """Stamp a new session for a user record returned by the auth backend.

    The user mapping needs "id" and "email"; "name", "role" and "image" are
    optional ("" and "user" are the fallbacks).
    """
    now = _now_ms()
    return StudioSession(
        user_id=str(user["id"]),
        email=str(user["email"]),
        name=str(user.get("name") or ""),
        role=str(user.get("role") or "user"),
        image=user.get("image"),
        issued_at=now,
        expires_at=now + duration_ms,
    )


# ---------------------------------------------------------------------------
# Secret resolution
# ---------------------------------------------------------------------------


def resolve_session_secret(access: AccessConfig, auth_secret: str = "") -> str:
    """Pick the session key: access.secret, then the backend secret, then the default."""
    if access.secret:
        return access.secret
    if auth_secret:
        return auth_secret
    logger.warning("No studio or auth secret configured -- using the built-in default session secret")
    return DEFAULT_SESSION_SECRET


# ---------------------------------------------------------------------------
# Cookies
# ---------------------------------------------------------------------------


def parse_cookie_header(header: str) -> dict[str, str]:
    """Parse a Cookie header into a dict. Later duplicates win."""
    cookies: dict[str, str] = {}
    if not header:
        return cookies
    for part in header.split(";"):
        name, sep, value = part.strip().partition("=")
        if name and sep:
            cookies[name] = value
    return cookies


def serialize_cookie(name: str, value: str, options: CookieOptions) -> str:
    """Build a Set-Cookie header value."""
    cookie = f"{name}={value}"
    if options.http_only:
        cookie += "; HttpOnly"
    if options.secure:
        cookie += "; Secure"
    if options.same_site:
        cookie += f"; SameSite={options.same_site}"
    if options.max_age is not None:
        cookie += f"; Max-Age={int(options.max_age)}"
    if options.path:
        cookie += f"; Path={options.path}"
    return cookie


def verify_request_session(request: UniversalRequest, secret: str) -> SessionCheck:
    """Check the studio session cookie on a request.

    Every failure returns the same SessionCheck(valid=False, error=...), so
    the 401 the caller builds from it is identical for every cause.
    """
    token = parse_cookie_header(request.header("cookie")).get(STUDIO_COOKIE_NAME)
    if not token:
        logger.debug("No studio session cookie on %s %s", request.method, request.path)
        return SessionCheck(valid=False, error=UNAUTHENTICATED_MESSAGE)
    session = decrypt_session(token, secret)
    if not is_session_valid(session):
        logger.debug("Invalid or expired studio session on %s %s", request.method, request.path)
        return SessionCheck(valid=False, error=UNAUTHENTICATED_MESSAGE)
    return SessionCheck(valid=True, session=session)
