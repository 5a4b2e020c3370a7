"""Credential verification: provider first with bounded retry, session fallback."""

import pytest

from blackjack_rewards.core.exceptions import (
    InvalidCredentialError,
    VerificationTimeoutError,
)
from blackjack_rewards.services.identity import (
    CredentialVerifier,
    FirebaseIdentityProvider,
    ProviderTransientError,
)

pytestmark = pytest.mark.asyncio


@pytest.fixture
def verifier(identity_provider, issuer):
    return CredentialVerifier(identity_provider, issuer, attempts=3, timeout=0.05, backoff=0)


async def test_provider_token_verified(verifier, identity_provider):
    identity_provider.register("fb-token", "a@x.com", uid="uid-a")
    identity = await verifier.verify_provider_token("fb-token")
    assert identity.email == "a@x.com"
    assert identity.subject_id == "uid-a"
    assert identity.self_issued is False


async def test_rejected_token_is_not_retried(verifier, identity_provider):
    with pytest.raises(InvalidCredentialError):
        await verifier.verify_provider_token("bogus")
    assert identity_provider.calls == 1


async def test_timeouts_retried_up_to_ceiling(verifier, identity_provider):
    identity_provider.register("fb-token", "a@x.com")
    identity_provider.delay = 1.0
    with pytest.raises(VerificationTimeoutError) as exc_info:
        await verifier.verify_provider_token("fb-token")
    assert identity_provider.calls == 3
    assert exc_info.value.status_code == 503


async def test_transient_failure_then_success(verifier, identity_provider):
    identity_provider.register("fb-token", "a@x.com")
    identity_provider.errors = [ProviderTransientError("certs fetch failed")]
    identity = await verifier.verify_provider_token("fb-token")
    assert identity.email == "a@x.com"
    assert identity_provider.calls == 2


async def test_claims_without_email_rejected(verifier, identity_provider):
    identity_provider.tokens["anon"] = {"uid": "anon-uid"}
    with pytest.raises(InvalidCredentialError):
        await verifier.verify_provider_token("anon")


async def test_bearer_falls_back_to_session_token(verifier, issuer):
    token = issuer.issue("a@x.com", "uid-a", False)
    identity = await verifier.verify_bearer(token)
    assert identity.email == "a@x.com"
    assert identity.self_issued is True
    assert identity.two_fa_verified is False


async def test_bearer_session_token_accepted_while_provider_times_out(verifier, identity_provider, issuer):
    identity_provider.delay = 1.0
    identity = await verifier.verify_bearer(issuer.issue("a@x.com", "uid-a", True))
    assert identity.two_fa_verified is True


async def test_bearer_timeout_surfaces_when_no_fallback(verifier, identity_provider):
    identity_provider.delay = 1.0
    with pytest.raises(VerificationTimeoutError):
        await verifier.verify_bearer("neither-provider-nor-session")


async def test_bearer_rejects_garbage(verifier):
    with pytest.raises(InvalidCredentialError):
        await verifier.verify_bearer("garbage")


async def test_unconfigured_provider_still_accepts_sessions(issuer):
    provider = FirebaseIdentityProvider("")
    assert provider.status == "unconfigured"
    verifier = CredentialVerifier(provider, issuer, backoff=0)
    identity = await verifier.verify_bearer(issuer.issue("a@x.com", "uid-a", True))
    assert identity.email == "a@x.com"
    with pytest.raises(InvalidCredentialError):
        await verifier.verify_bearer("garbage")
