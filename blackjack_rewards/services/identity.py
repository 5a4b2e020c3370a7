"""Bearer credential verification: Firebase ID tokens first, then self-issued sessions."""

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol

from google.auth import exceptions as google_exceptions
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from blackjack_rewards.core.config import Settings, get_settings
from blackjack_rewards.core.exceptions import (
    InvalidCredentialError,
    ProviderUnavailableError,
    VerificationTimeoutError,
)
from blackjack_rewards.core.logging import get_logger
from blackjack_rewards.core.security import SessionTokenIssuer

log = get_logger(__name__)


class ProviderTransientError(Exception):
    """Provider could not be reached (network, certificate fetch). Eligible for retry."""


@dataclass(frozen=True)
class VerifiedIdentity:
    email: str
    subject_id: str
    self_issued: bool = False
    two_fa_verified: bool = False


class IdentityProvider(Protocol):
    status: str

    async def verify(self, token: str) -> dict[str, Any]: ...


class FirebaseIdentityProvider:
    """Verifies Firebase ID tokens with google-auth.

    Construction never fails: a missing project id leaves the provider
    ``unconfigured`` and every verification raises ProviderUnavailableError.
    """

    def __init__(self, project_id: str):
        self.project_id = project_id
        self._request = google_requests.Request() if project_id else None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "FirebaseIdentityProvider":
        return cls((settings or get_settings()).firebase_project_id)

    @property
    def status(self) -> str:
        return "ok" if self.project_id else "unconfigured"

    async def verify(self, token: str) -> dict[str, Any]:
        if not self.project_id:
            raise ProviderUnavailableError()
        try:
            return await asyncio.to_thread(
                id_token.verify_firebase_token,
                token,
                self._request,
                self.project_id,
            )
        except google_exceptions.TransportError as e:
            raise ProviderTransientError(str(e)) from e


def _identity_from_claims(claims: dict[str, Any]) -> VerifiedIdentity:
    email = claims.get("email")
    if not email:
        raise InvalidCredentialError("Token carries no email")
    subject_id = claims.get("uid") or claims.get("user_id") or claims.get("sub") or ""
    return VerifiedIdentity(email=email, subject_id=str(subject_id))


class CredentialVerifier:
    def __init__(
        self,
        provider: IdentityProvider,
        issuer: SessionTokenIssuer,
        attempts: int = 3,
        timeout: float = 5.0,
        backoff: float = 0.25,
    ):
        self.provider = provider
        self.issuer = issuer
        self.attempts = attempts
        self.timeout = timeout
        self.backoff = backoff

    async def verify_provider_token(self, token: str) -> VerifiedIdentity:
        """Verify against the identity provider with a bounded retry on timeouts.

        Each attempt gets ``timeout`` seconds. Timeouts and transport failures are
        retried up to ``attempts`` times in total; a rejected token is not retried.
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.attempts),
                wait=wait_exponential(multiplier=self.backoff, max=2),
                retry=retry_if_exception_type((asyncio.TimeoutError, ProviderTransientError)),
                before_sleep=self._log_retry,
                reraise=True,
            ):
                with attempt:
                    claims = await asyncio.wait_for(self.provider.verify(token), timeout=self.timeout)
        except (asyncio.TimeoutError, ProviderTransientError) as e:
            log.warning("provider_verify_exhausted", attempts=self.attempts, reason=str(e) or type(e).__name__)
            raise VerificationTimeoutError(
                f"Max retries reached: {str(e) or 'Verification timeout'}",
                attempts=self.attempts,
            ) from e
        except (ValueError, google_exceptions.GoogleAuthError) as e:
            raise InvalidCredentialError("Invalid token") from e
        return _identity_from_claims(claims)

    async def verify_bearer(self, token: str) -> VerifiedIdentity:
        """Provider token first, self-issued session token second."""
        try:
            return await self.verify_provider_token(token)
        except (InvalidCredentialError, ProviderUnavailableError, VerificationTimeoutError) as provider_error:
            claims = self.issuer.load(token)
            if claims is not None:
                return VerifiedIdentity(
                    email=claims.email,
                    subject_id=claims.sub,
                    self_issued=True,
                    two_fa_verified=claims.two_fa_verified,
                )
            if isinstance(provider_error, VerificationTimeoutError):
                raise
            raise InvalidCredentialError("Invalid token") from provider_error

    def _log_retry(self, retry_state) -> None:
        log.info(
            "provider_verify_retry",
            attempt=retry_state.attempt_number,
            max_attempts=self.attempts,
        )
