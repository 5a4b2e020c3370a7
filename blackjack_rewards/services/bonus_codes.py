"""Currency code ledger: issuance on cooldown, single-claim redemption, balance credit.

Every read-then-write step is closed with a conditional update against the
store: a code is marked claimed only if it was unclaimed, and the daily window
is taken only if ``last_bonus_at`` still holds the value the cooldown check saw.
"""

import math
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta
from numbers import Real
from typing import Any

from beanie import UpdateResponse
from beanie.operators import Inc, Or, Set
from pymongo.errors import DuplicateKeyError

from blackjack_rewards.core.audit import log_event
from blackjack_rewards.core.config import get_settings
from blackjack_rewards.core.exceptions import (
    AlreadyClaimedError,
    AppError,
    CooldownActiveError,
    DeliveryFailedError,
    NoClaimableCodeError,
    NotFoundError,
    ValidationFailedError,
)
from blackjack_rewards.core.logging import get_logger
from blackjack_rewards.models.currency_code import CodeKind, CurrencyCode
from blackjack_rewards.models.user import User
from blackjack_rewards.services.mailer import Mailer, daily_bonus_message, welcome_bonus_message

log = get_logger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8
KIND_PREFIX = {"welcome": "WELCOME", "daily": "DAILY", "test": "TEST"}
MAX_CLAIM_ATTEMPTS = 5
MAX_BALANCE = 2**63 - 1  # BSON int64


@dataclass(frozen=True)
class ClaimResult:
    code: str
    amount_added: int
    previous_balance: int
    new_balance: int


@dataclass
class BatchSummary:
    issued: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return {"issued": self.issued, "skipped": self.skipped, "failed": self.failed}


def utcnow() -> datetime:
    """Naive UTC now at millisecond precision, the resolution MongoDB stores."""
    return _to_ms(datetime.utcnow())


def _to_ms(dt: datetime) -> datetime:
    return dt.replace(microsecond=dt.microsecond // 1000 * 1000)


def _generate_code(kind: CodeKind) -> str:
    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
    return f"{KIND_PREFIX[kind]}-{suffix}"


def hours_until_next_bonus(last_bonus_at: datetime | None, now: datetime, cooldown_hours: int) -> int:
    """Whole hours left in the cooldown window (0 when a bonus is available)."""
    if last_bonus_at is None:
        return 0
    elapsed = (now - last_bonus_at).total_seconds() / 3600
    if elapsed >= cooldown_hours:
        return 0
    # a last_bonus_at ahead of the server clock never reports more than one window
    return min(cooldown_hours, math.ceil(cooldown_hours - elapsed))


async def _get_user(email: str) -> User:
    user = await User.find_one(User.email == email)
    if not user:
        raise NotFoundError("User not found")
    return user


async def issue_code(email: str, kind: CodeKind, amount: int | None = None) -> CurrencyCode:
    """Insert a fresh unclaimed code for ``email``; retries on code collision."""
    amount = amount or get_settings().bonus_amount
    for _ in range(10):
        doc = CurrencyCode(
            code=_generate_code(kind),
            email=email,
            amount=amount,
            kind=kind,
            created_at=utcnow(),
        )
        try:
            await doc.insert()
        except DuplicateKeyError:
            continue
        log.info("currency_code_issued", email=email, kind=kind, amount=amount)
        await log_event(email, "currency_code_issued", "currency_code", str(doc.id), {"kind": kind})
        return doc
    raise AppError("Could not generate unique currency code", code="CODE_GENERATION_FAILED")


async def _mark_emailed(doc: CurrencyCode) -> None:
    await doc.set({CurrencyCode.email_sent: True})


async def issue_welcome_code(email: str, mailer: Mailer) -> CurrencyCode:
    """Mint the signup code and mail it. Delivery is best effort."""
    doc = await issue_code(email, "welcome")
    subject, text = welcome_bonus_message(doc.code, doc.amount)
    try:
        await mailer.send(email, subject, text)
    except DeliveryFailedError as e:
        log.warning("welcome_email_failed", email=email, reason=e.message)
        return doc
    await _mark_emailed(doc)
    return doc


async def issue_daily_bonus(email: str, mailer: Mailer, now: datetime | None = None) -> CurrencyCode:
    """Mint a daily code if the cooldown has elapsed and mail it.

    The window is taken with a compare-and-set on ``last_bonus_at`` before the
    code is minted and handed back if delivery fails, so the cooldown is only
    consumed by a delivered code. An undelivered code stays claimable.
    """
    settings = get_settings()
    cooldown = settings.bonus_cooldown_hours
    now = _to_ms(now or datetime.utcnow())
    user = await _get_user(email)

    remaining = hours_until_next_bonus(user.last_bonus_at, now, cooldown)
    if remaining:
        raise CooldownActiveError(remaining)

    previous = user.last_bonus_at
    taken = await User.find_one(
        User.email == email,
        User.last_bonus_at == previous,
    ).update(Set({User.last_bonus_at: now}))
    if not taken.modified_count:
        log.info("daily_bonus_window_lost", email=email)
        raise CooldownActiveError(cooldown)

    try:
        doc = await issue_code(email, "daily")
    except Exception:
        await _release_window(email, now, previous)
        raise

    subject, text = daily_bonus_message(doc.code, doc.amount)
    try:
        await mailer.send(email, subject, text)
    except DeliveryFailedError as e:
        await _release_window(email, now, previous)
        log.warning("daily_bonus_email_failed", email=email, reason=e.message)
        raise DeliveryFailedError(
            "Daily bonus code generated but email delivery failed",
            currency_code=doc.code,
        ) from e

    await _mark_emailed(doc)
    await User.find_one(User.email == email).update(
        Set({User.last_email_sent_at: now, User.updated_at: now})
    )
    log.info("daily_bonus_sent", email=email)
    return doc


async def _release_window(email: str, taken_at: datetime, previous: datetime | None) -> None:
    await User.find_one(
        User.email == email,
        User.last_bonus_at == taken_at,
    ).update(Set({User.last_bonus_at: previous}))


async def _mark_claimed(doc: CurrencyCode, now: datetime) -> bool:
    """Flip ``claimed`` False -> True. False if someone else flipped it first."""
    result = await CurrencyCode.find_one(
        CurrencyCode.id == doc.id,
        CurrencyCode.claimed == False,  # noqa: E712
    ).update(Set({CurrencyCode.claimed: True, CurrencyCode.claimed_at: now}))
    return result.modified_count == 1


async def claim(email: str) -> ClaimResult:
    """Claim the oldest unclaimed code of ``email`` and credit its amount."""
    await _get_user(email)
    now = utcnow()
    for _ in range(MAX_CLAIM_ATTEMPTS):
        candidate = await CurrencyCode.find(
            CurrencyCode.email == email,
            CurrencyCode.claimed == False,  # noqa: E712
        ).sort(+CurrencyCode.created_at).first_or_none()
        if candidate is None:
            raise NoClaimableCodeError()
        if await _mark_claimed(candidate, now):
            break
        log.info("claim_race_lost", email=email, code=candidate.code)
    else:
        raise NoClaimableCodeError()

    updated = await User.find_one(User.email == email).update(
        Inc({User.balance: candidate.amount}),
        Set({User.updated_at: now}),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    new_balance = updated.balance
    previous_balance = new_balance - candidate.amount
    log.info("currency_code_claimed", email=email, amount=candidate.amount, new_balance=new_balance)
    await log_event(
        email,
        "currency_code_claimed",
        "currency_code",
        str(candidate.id),
        {"amount": candidate.amount, "balance_after": new_balance},
    )
    return ClaimResult(
        code=candidate.code,
        amount_added=candidate.amount,
        previous_balance=previous_balance,
        new_balance=new_balance,
    )


async def redeem(email: str, code: str) -> CurrencyCode:
    """Mark a specific code of ``email`` claimed. The balance is not touched."""
    code = (code or "").strip()
    if not code:
        raise ValidationFailedError("No code provided")
    candidate = await CurrencyCode.find_one(
        CurrencyCode.email == email,
        CurrencyCode.code == code,
        CurrencyCode.claimed == False,  # noqa: E712
    )
    if candidate is None or not await _mark_claimed(candidate, utcnow()):
        raise AlreadyClaimedError()
    log.info("currency_code_redeemed", email=email, amount=candidate.amount)
    await log_event(email, "currency_code_redeemed", "currency_code", str(candidate.id), {"amount": candidate.amount})
    return candidate


def parse_balance(value: Any) -> int:
    """Accept a non-negative whole number (``12`` or ``12.0``); reject everything else."""
    if isinstance(value, bool) or not isinstance(value, Real):
        raise ValidationFailedError("Balance must be a number")
    if not math.isfinite(value) or value < 0:
        raise ValidationFailedError("Balance must be a non-negative number")
    if value > MAX_BALANCE:
        raise ValidationFailedError("Balance out of range")
    if int(value) != value:
        raise ValidationFailedError("Balance must be a whole number of coins")
    return int(value)


async def set_balance(email: str, value: Any) -> int:
    """Overwrite the balance (not additive); create the user if absent."""
    balance = parse_balance(value)
    now = utcnow()
    user = await User.find_one(User.email == email)
    if user is None:
        try:
            await User(email=email, balance=balance, created_at=now, updated_at=now).insert()
        except DuplicateKeyError:
            pass  # created concurrently, overwrite below
        else:
            await log_event(email, "balance_set", "user", None, {"balance": balance})
            return balance
    await User.find_one(User.email == email).update(Set({User.balance: balance, User.updated_at: now}))
    await log_event(email, "balance_set", "user", None, {"balance": balance})
    return balance


async def run_daily_bonus_batch(mailer: Mailer, now: datetime | None = None) -> BatchSummary:
    """Issue the daily bonus to every user whose cooldown has elapsed.

    One user's failure is logged and counted; the batch goes on.
    """
    now = _to_ms(now or datetime.utcnow())
    cutoff = now - timedelta(hours=get_settings().bonus_cooldown_hours)
    summary = BatchSummary()
    due = await User.find(
        Or(
            User.last_bonus_at == None,  # noqa: E711
            User.last_bonus_at <= cutoff,
        )
    ).to_list()
    for user in due:
        try:
            await issue_daily_bonus(user.email, mailer, now=now)
        except CooldownActiveError:
            summary.skipped += 1
        except Exception as e:
            summary.failed += 1
            log.exception("daily_bonus_batch_user_failed", email=user.email, reason=str(e))
        else:
            summary.issued += 1
    log.info("daily_bonus_batch_done", **summary.as_dict())
    return summary
