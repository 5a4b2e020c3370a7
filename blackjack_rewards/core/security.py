"""Self-issued session tokens: signed, stateless, expiry-bound."""

import hashlib
import time
from dataclasses import dataclass
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from blackjack_rewards.core.config import Settings, get_settings

SESSION_SALT = "blackjack-session"


@dataclass(frozen=True)
class SessionClaims:
    email: str
    sub: str
    two_fa_verified: bool
    exp: int

    def as_payload(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "sub": self.sub,
            "twoFAVerified": self.two_fa_verified,
            "exp": self.exp,
        }


def get_session_serializer(secret_key: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(
        secret_key,
        salt=SESSION_SALT,
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


class SessionTokenIssuer:
    """Mints and validates session tokens.

    Two lifetimes exist: a short one for pre-2FA tokens (``twoFAVerified`` false)
    and a longer one for full sessions. There is no revocation list; expiry is the
    only way a token stops working.
    """

    def __init__(self, secret_key: str, session_ttl: int, pre_2fa_ttl: int):
        self._serializer = get_session_serializer(secret_key)
        self.session_ttl = session_ttl
        self.pre_2fa_ttl = pre_2fa_ttl

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "SessionTokenIssuer":
        s = settings or get_settings()
        return cls(s.secret_key, s.session_expires_in, s.pre_2fa_expires_in)

    def issue(self, email: str, sub: str, two_fa_verified: bool) -> str:
        ttl = self.session_ttl if two_fa_verified else self.pre_2fa_ttl
        claims = SessionClaims(
            email=email,
            sub=sub,
            two_fa_verified=two_fa_verified,
            exp=int(time.time()) + ttl,
        )
        return self._serializer.dumps(claims.as_payload())

    def load(self, token: str) -> SessionClaims | None:
        """Return claims for a validly signed, unexpired token, else None."""
        max_age = max(self.session_ttl, self.pre_2fa_ttl)
        try:
            payload = self._serializer.loads(token, max_age=max_age)
        except (BadSignature, SignatureExpired):
            return None
        if not isinstance(payload, dict):
            return None
        email = payload.get("email")
        exp = payload.get("exp")
        if not email or not isinstance(exp, int):
            return None
        if exp <= int(time.time()):
            return None
        return SessionClaims(
            email=email,
            sub=str(payload.get("sub") or ""),
            two_fa_verified=payload.get("twoFAVerified") is True,
            exp=exp,
        )
