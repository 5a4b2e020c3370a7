"""Shared FastAPI dependencies: service singletons and the auth guards."""

from fastapi import Depends, Request

from blackjack_rewards.core.exceptions import (
    ForbiddenError,
    InvalidCredentialError,
    TwoFactorRequiredError,
    UnauthorizedError,
)
from blackjack_rewards.core.logging import bind_user
from blackjack_rewards.core.security import SessionClaims, SessionTokenIssuer
from blackjack_rewards.models.user import User
from blackjack_rewards.services.identity import CredentialVerifier, VerifiedIdentity
from blackjack_rewards.services.mailer import Mailer


def get_token_issuer(request: Request) -> SessionTokenIssuer:
    return request.app.state.token_issuer


def get_credential_verifier(request: Request) -> CredentialVerifier:
    return request.app.state.credential_verifier


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer


def bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthorizedError("Authorization token required")
    return token.strip()


async def get_current_identity(
    request: Request,
    verifier: CredentialVerifier = Depends(get_credential_verifier),
) -> VerifiedIdentity:
    """Dependency: any valid credential (provider token, pre-2FA or full session)."""
    identity = await verifier.verify_bearer(bearer_token(request))
    bind_user(identity.email)
    return identity


async def require_full_session(
    request: Request,
    issuer: SessionTokenIssuer = Depends(get_token_issuer),
) -> SessionClaims:
    """Dependency: a self-issued session token with ``twoFAVerified`` set.

    A validly signed pre-2FA token is still rejected here.
    """
    claims = issuer.load(bearer_token(request))
    if claims is None:
        raise InvalidCredentialError("Invalid or expired session")
    if not claims.two_fa_verified:
        raise TwoFactorRequiredError()
    bind_user(claims.email)
    return claims


async def require_admin(claims: SessionClaims = Depends(require_full_session)) -> User:
    """Dependency: full session of a user with role admin."""
    user = await User.find_one(User.email == claims.email)
    if not user or user.role != "admin":
        raise ForbiddenError("Admin only")
    return user
