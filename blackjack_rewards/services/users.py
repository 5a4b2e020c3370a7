"""Login and 2FA orchestration: new vs returning user, 2FA gate, which token to return."""

from dataclasses import dataclass
from datetime import datetime

from beanie.operators import Set
from pymongo.errors import DuplicateKeyError

from blackjack_rewards.core.audit import log_event
from blackjack_rewards.core.exceptions import (
    InvalidCodeError,
    InvalidCredentialError,
    NotFoundError,
)
from blackjack_rewards.core.logging import get_logger
from blackjack_rewards.core.security import SessionClaims, SessionTokenIssuer
from blackjack_rewards.models.user import User
from blackjack_rewards.services import bonus_codes, two_factor
from blackjack_rewards.services.identity import VerifiedIdentity
from blackjack_rewards.services.mailer import Mailer

log = get_logger(__name__)


@dataclass(frozen=True)
class LoginOutcome:
    is_new_user: bool
    requires_2fa: bool
    token: str | None = None
    temp_token: str | None = None
    welcome_code: str | None = None


async def get_user(email: str) -> User | None:
    return await User.find_one(User.email == email)


async def create_user(identity: VerifiedIdentity) -> User | None:
    """Insert a fresh user; None if another request created it first."""
    now = datetime.utcnow()
    user = User(
        email=identity.email,
        firebase_uid=identity.subject_id or None,
        balance=0,
        last_login_at=now,
        created_at=now,
        updated_at=now,
    )
    try:
        await user.insert()
    except DuplicateKeyError:
        return None
    log.info("user_created", email=user.email)
    await log_event(user.email, "user_created", "user", str(user.id))
    return user


async def login(identity: VerifiedIdentity, issuer: SessionTokenIssuer, mailer: Mailer) -> LoginOutcome:
    user = await get_user(identity.email)
    if user is None:
        user = await create_user(identity)
        if user is not None:
            welcome = await bonus_codes.issue_welcome_code(user.email, mailer)
            return LoginOutcome(
                is_new_user=True,
                requires_2fa=False,
                token=issuer.issue(user.email, identity.subject_id, True),
                welcome_code=welcome.code,
            )
        user = await get_user(identity.email)
        if user is None:
            raise NotFoundError("User not found")

    await User.find_one(User.email == user.email).update(
        Set({User.last_login_at: datetime.utcnow()})
    )
    await log_event(user.email, "user_login", "user", str(user.id))

    if user.two_factor_enabled:
        log.info("user_login", email=user.email, requires_2fa=True)
        return LoginOutcome(
            is_new_user=False,
            requires_2fa=True,
            temp_token=issuer.issue(user.email, identity.subject_id, False),
        )
    log.info("user_login", email=user.email, requires_2fa=False)
    return LoginOutcome(
        is_new_user=False,
        requires_2fa=False,
        token=issuer.issue(user.email, identity.subject_id, True),
    )


async def confirm_identity(identity: VerifiedIdentity, email: str) -> User:
    """Check a verified provider identity against a claimed email and a known user."""
    if identity.email != email:
        raise InvalidCredentialError("Token email mismatch")
    user = await get_user(email)
    if not user:
        raise NotFoundError("User not found")
    return user


async def complete_two_factor(
    temp_claims: SessionClaims | None,
    email: str,
    code: str,
    issuer: SessionTokenIssuer,
) -> str:
    """Exchange a pre-2FA token plus a TOTP code for a full session token.

    The only place ``twoFAVerified`` goes from false to true.
    """
    if temp_claims is None:
        raise InvalidCredentialError("Invalid or expired temporary token")
    if temp_claims.email != email:
        raise InvalidCredentialError("Token email mismatch")
    if not await two_factor.verify(email, code):
        raise InvalidCodeError()
    log.info("two_factor_verified", email=email)
    await log_event(email, "two_factor_verified", "user", None)
    return issuer.issue(email, temp_claims.sub, True)
