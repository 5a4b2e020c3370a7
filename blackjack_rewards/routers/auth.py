from fastapi import APIRouter, Depends
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from blackjack_rewards.core.exceptions import BadRequestError
from blackjack_rewards.core.security import SessionTokenIssuer
from blackjack_rewards.deps import (
    get_credential_verifier,
    get_current_identity,
    get_mailer,
    get_token_issuer,
)
from blackjack_rewards.services import two_factor
from blackjack_rewards.services import users as user_service
from blackjack_rewards.services.identity import CredentialVerifier, VerifiedIdentity
from blackjack_rewards.services.mailer import Mailer

router = APIRouter()


class LoginRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    provider_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("providerToken", "firebaseToken", "provider_token"),
    )


class VerifyTokenRequest(LoginRequest):
    email: str | None = None


class VerifyTwoFactorRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str | None = None
    code: str | None = Field(default=None, validation_alias=AliasChoices("code", "token"))
    temp_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("tempToken", "temp_token"),
    )


@router.post("/login")
async def login(
    body: LoginRequest | None = None,
    verifier: CredentialVerifier = Depends(get_credential_verifier),
    issuer: SessionTokenIssuer = Depends(get_token_issuer),
    mailer: Mailer = Depends(get_mailer),
):
    """Exchange a provider token for a full session, or a pre-2FA token if 2FA is on."""
    if body is None or not body.provider_token:
        raise BadRequestError("No token provided")
    identity = await verifier.verify_provider_token(body.provider_token)
    outcome = await user_service.login(identity, issuer, mailer)
    if outcome.requires_2fa:
        return {
            "requires2FA": True,
            "tempToken": outcome.temp_token,
            "message": "2FA verification required",
        }
    out = {
        "requires2FA": False,
        "isNewUser": outcome.is_new_user,
        "token": outcome.token,
    }
    if outcome.welcome_code:
        out["welcomeCode"] = outcome.welcome_code
    return out


@router.post("/verify-token")
async def verify_token(
    body: VerifyTokenRequest | None = None,
    verifier: CredentialVerifier = Depends(get_credential_verifier),
):
    """Confirm a provider token belongs to ``email`` and that the user exists."""
    if body is None or not body.provider_token or not body.email:
        raise BadRequestError("Provider token and email are required")
    identity = await verifier.verify_provider_token(body.provider_token)
    user = await user_service.confirm_identity(identity, body.email)
    return {"verified": True, "email": user.email}


@router.post("/verify-2fa")
async def verify_2fa(
    body: VerifyTwoFactorRequest | None = None,
    issuer: SessionTokenIssuer = Depends(get_token_issuer),
):
    """Upgrade a pre-2FA token to a full session with a valid TOTP code."""
    if body is None or not body.email or not body.code or not body.temp_token:
        raise BadRequestError("Missing required fields")
    token = await user_service.complete_two_factor(
        issuer.load(body.temp_token),
        body.email,
        body.code,
        issuer,
    )
    return {"message": "2FA verified successfully", "token": token}


@router.post("/setup-2fa")
async def setup_2fa(identity: VerifiedIdentity = Depends(get_current_identity)):
    """Enable TOTP for the caller; returns the secret and a QR code data URL."""
    enrollment = await two_factor.enroll(identity.email)
    if enrollment.already_enabled:
        return {"alreadyEnabled": True, "message": "2FA already enabled"}
    return {
        "alreadyEnabled": False,
        "qrCode": enrollment.qr_code,
        "secret": enrollment.secret,
        "message": "2FA setup successful",
    }
