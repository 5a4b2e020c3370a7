"""TOTP enrollment and verification (RFC 6238, 30s step, +/-1 step tolerance)."""

import base64
import io
from dataclasses import dataclass
from datetime import datetime

import pyotp
import qrcode
from beanie.operators import Set

from blackjack_rewards.core.audit import log_event
from blackjack_rewards.core.config import get_settings
from blackjack_rewards.core.exceptions import NotFoundError, TwoFactorNotEnabledError
from blackjack_rewards.core.logging import get_logger
from blackjack_rewards.models.user import User

log = get_logger(__name__)

SECRET_BYTES = 20
VALID_WINDOW = 1


@dataclass(frozen=True)
class Enrollment:
    already_enabled: bool
    secret: str | None = None
    provisioning_uri: str | None = None
    qr_code: str | None = None  # data URL


def generate_secret() -> str:
    # 20 random bytes -> 32 base32 characters
    return pyotp.random_base32(length=SECRET_BYTES * 8 // 5)


def provisioning_uri(secret: str, email: str, issuer: str) -> str:
    return pyotp.TOTP(secret).provisioning_uri(name=email, issuer_name=issuer)


def render_qr_data_url(uri: str) -> str:
    image = qrcode.make(uri)
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def _clean_code(code: str) -> str:
    return "".join(code.split()).replace("-", "")


def verify_code(secret: str | None, code: str, for_time: datetime | int | None = None) -> bool:
    """True if ``code`` matches the current step or one adjacent step."""
    if not secret or not code:
        return False
    cleaned = _clean_code(code)
    if len(cleaned) != 6 or not (cleaned.isascii() and cleaned.isdigit()):
        return False
    return bool(pyotp.TOTP(secret).verify(cleaned, for_time=for_time, valid_window=VALID_WINDOW))


async def enroll(email: str) -> Enrollment:
    """Generate and store a secret, enabling 2FA at once. No-op if already enabled."""
    user = await User.find_one(User.email == email)
    if not user:
        raise NotFoundError("User not found")
    if user.two_factor_enabled:
        return Enrollment(already_enabled=True)

    secret = generate_secret()
    now = datetime.utcnow()
    result = await User.find_one(
        User.email == email,
        User.two_factor_enabled == False,  # noqa: E712
    ).update(
        Set({
            User.two_factor_enabled: True,
            User.two_factor_secret: secret,
            User.two_factor_setup_at: now,
            User.updated_at: now,
        })
    )
    if not result.modified_count:
        # a concurrent enrollment won; keep its secret
        return Enrollment(already_enabled=True)

    log.info("two_factor_enabled", email=email)
    await log_event(email, "two_factor_enabled", "user", str(user.id))
    uri = provisioning_uri(secret, email, get_settings().totp_issuer)
    return Enrollment(
        already_enabled=False,
        secret=secret,
        provisioning_uri=uri,
        qr_code=render_qr_data_url(uri),
    )


async def verify(email: str, code: str, for_time: datetime | int | None = None) -> bool:
    """Check a submitted code for ``email``. Mismatch is a False result, not an error."""
    user = await User.find_one(User.email == email)
    if not user:
        raise NotFoundError("User not found")
    if not user.two_factor_enabled or not user.two_factor_secret:
        raise TwoFactorNotEnabledError()
    ok = verify_code(user.two_factor_secret, code, for_time=for_time)
    if not ok:
        log.info("two_factor_code_rejected", email=email)
    return ok
