"""
Signed Session Tokens

Short-lived, tamper-evident tokens that bind a relay session (and optionally
a host user) to every call an upstream agent makes back into the host.

Token format: {payload}.{signature}
- payload = base64url(JSON {"session_id", "user_id", "exp"})
- signature = base64url(HMAC-SHA256(secret, payload))

Verification fails closed: a malformed token, a bad signature and an
expired token all raise the same InvalidSignature error.
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import secrets
import time
from datetime import timedelta
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from llamabot_relay.errors import InvalidSignature

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL = timedelta(minutes=30)


class TokenClaims(BaseModel):
    """Verified contents of a session token."""
    session_id: str = Field(
        ...,
        description="Relay session the token was issued for"
    )
    user_id: str | int | None = Field(
        default=None,
        description="Host user the agent acts on behalf of"
    )


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


class SessionTokenSigner:
    """
    Issues and verifies signed session tokens.

    Usage:
        signer = SessionTokenSigner(secret_key="my-secret")
        token = signer.issue("session-1", user_id=42)
        claims = signer.verify(token)
    """

    def __init__(
        self,
        secret_key: str | bytes | None = None,
        default_ttl: timedelta = DEFAULT_TOKEN_TTL,
    ):
        """
        Initialize the signer.

        Args:
            secret_key: Secret for HMAC signing. If None, a random per-process
                secret is generated and tokens do not survive a restart.
            default_ttl: Lifetime applied when issue() gets no ttl
        """
        if secret_key is None:
            logger.warning(
                "LLAMABOT_SECRET_KEY is not set; using a random per-process "
                "secret for session tokens"
            )
            secret_key = secrets.token_hex(32)
        self._secret = secret_key.encode() if isinstance(secret_key, str) else secret_key
        self._default_ttl = default_ttl

    def _sign(self, payload: str) -> str:
        digest = hmac.new(self._secret, payload.encode("ascii"), hashlib.sha256).digest()
        return _b64encode(digest)

    def issue(
        self,
        session_id: str,
        user_id: str | int | None = None,
        ttl: timedelta | None = None,
    ) -> str:
        """
        Issue a token for a session.

        Args:
            session_id: Session identifier to bind
            user_id: Optional host user identifier
            ttl: Token lifetime (default 30 minutes); zero or negative values
                produce a token that never verifies

        Returns:
            URL-safe opaque token string
        """
        lifetime = self._default_ttl if ttl is None else ttl
        body = {
            "session_id": session_id,
            "user_id": user_id,
            "exp": time.time() + lifetime.total_seconds(),
        }
        payload = _b64encode(json.dumps(body, separators=(",", ":")).encode("utf-8"))
        return f"{payload}.{self._sign(payload)}"

    def verify(self, token: str) -> TokenClaims:
        """
        Verify a token and return its claims.

        Raises:
            InvalidSignature: On any structural, signature or expiry failure
        """
        if not token or not isinstance(token, str) or token.count(".") != 1:
            raise InvalidSignature()

        payload, signature = token.split(".", 1)
        try:
            expected = self._sign(payload)
        except UnicodeEncodeError:
            raise InvalidSignature()
        if not hmac.compare_digest(expected, signature):
            raise InvalidSignature()

        try:
            body: dict[str, Any] = json.loads(_b64decode(payload))
            expires_at = float(body["exp"])
            claims = TokenClaims(session_id=body["session_id"], user_id=body.get("user_id"))
        except (binascii.Error, ValueError, TypeError, KeyError, ValidationError):
            raise InvalidSignature()

        if time.time() >= expires_at:
            raise InvalidSignature()

        return claims

    def is_valid(self, token: str) -> bool:
        """Return True if the token verifies."""
        try:
            self.verify(token)
            return True
        except InvalidSignature:
            return False
