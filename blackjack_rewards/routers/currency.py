from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from blackjack_rewards.core.config import get_settings
from blackjack_rewards.core.security import SessionClaims
from blackjack_rewards.deps import get_mailer, require_full_session
from blackjack_rewards.services import bonus_codes
from blackjack_rewards.services.mailer import Mailer

router = APIRouter()


class RedeemRequest(BaseModel):
    code: str | None = None


class BalanceRequest(BaseModel):
    balance: Any = None


@router.post("/send-currency-code")
async def send_currency_code(
    claims: SessionClaims = Depends(require_full_session),
    mailer: Mailer = Depends(get_mailer),
):
    """Issue and email the daily bonus code (once per cooldown window)."""
    doc = await bonus_codes.issue_daily_bonus(claims.email, mailer)
    return {
        "message": "Daily bonus sent successfully!",
        "code": doc.code,
        "nextBonusIn": get_settings().bonus_cooldown_hours,
    }


@router.post("/claim-currency-code")
async def claim_currency_code(claims: SessionClaims = Depends(require_full_session)):
    """Claim the oldest unclaimed code and credit it to the balance."""
    result = await bonus_codes.claim(claims.email)
    return {
        "message": "Currency code claimed successfully!",
        "code": result.code,
        "amountAdded": result.amount_added,
        "previousBalance": result.previous_balance,
        "newBalance": result.new_balance,
    }


@router.post("/redeem-currency-code")
async def redeem_currency_code(
    body: RedeemRequest | None = None,
    claims: SessionClaims = Depends(require_full_session),
):
    """Consume a specific code. Returns the amount; the balance is not changed here."""
    doc = await bonus_codes.redeem(claims.email, body.code if body else None)
    return {"message": "Currency code redeemed successfully!", "amount": doc.amount}


@router.post("/update-balance")
async def update_balance(
    body: BalanceRequest | None = None,
    claims: SessionClaims = Depends(require_full_session),
):
    new_balance = await bonus_codes.set_balance(claims.email, body.balance if body else None)
    return {
        "message": "Balance updated successfully",
        "newBalance": new_balance,
        "email": claims.email,
    }
