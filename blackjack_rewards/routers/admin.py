from fastapi import APIRouter, Depends
from pydantic import BaseModel

from blackjack_rewards.core.exceptions import BadRequestError, NotFoundError
from blackjack_rewards.deps import get_mailer, require_admin
from blackjack_rewards.models.user import User
from blackjack_rewards.services import bonus_codes
from blackjack_rewards.services.mailer import Mailer

router = APIRouter()


class IssueTestCodeRequest(BaseModel):
    email: str | None = None


@router.post("/trigger-daily-bonus")
async def trigger_daily_bonus(
    user: User = Depends(require_admin),
    mailer: Mailer = Depends(get_mailer),
):
    """Admin: run the daily bonus batch now instead of waiting for the scheduler."""
    summary = await bonus_codes.run_daily_bonus_batch(mailer)
    return {"message": "Daily bonus job triggered successfully!", **summary.as_dict()}


@router.post("/test-currency-code")
async def issue_test_code(body: IssueTestCodeRequest | None = None, user: User = Depends(require_admin)):
    """Admin: mint a ``test`` code for a user without touching their cooldown."""
    if body is None or not body.email:
        raise BadRequestError("Email is required")
    if not await User.find_one(User.email == body.email):
        raise NotFoundError("User not found")
    doc = await bonus_codes.issue_code(body.email, "test")
    return {"message": "Test currency code issued", "code": doc.code, "amount": doc.amount}
