import asyncio
import os
from datetime import datetime, timedelta
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

os.environ.setdefault("ENV", "test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("FIREBASE_PROJECT_ID", "blackjack-test")

from blackjack_rewards.core.config import get_settings  # noqa: E402
from blackjack_rewards.core.exceptions import DeliveryFailedError  # noqa: E402
from blackjack_rewards.core.security import SessionTokenIssuer  # noqa: E402
from blackjack_rewards.db.init import init_db  # noqa: E402
from blackjack_rewards.models.user import User  # noqa: E402


class FakeIdentityProvider:
    """In-memory stand-in for Firebase: registered tokens verify, anything else is rejected."""

    status = "ok"

    def __init__(self):
        self.tokens: dict[str, dict[str, Any]] = {}
        self.errors: list[Exception] = []
        self.delay = 0.0
        self.calls = 0

    def register(self, token: str, email: str, uid: str = "uid-1") -> str:
        self.tokens[token] = {"email": email, "uid": uid, "sub": uid}
        return token

    async def verify(self, token: str) -> dict[str, Any]:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        if self.delay:
            await asyncio.sleep(self.delay)
        if token not in self.tokens:
            raise ValueError("Invalid token")
        return dict(self.tokens[token])


class FakeMailer:
    def __init__(self):
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False
        self.fail_for: set[str] = set()

    async def send(self, to: str, subject: str, text: str) -> str:
        if self.fail or to in self.fail_for:
            raise DeliveryFailedError(f"Failed to send email to {to}")
        self.sent.append((to, subject, text))
        return f"<{len(self.sent)}@test>"

    async def close(self) -> None:
        pass


@pytest_asyncio.fixture
async def db() -> None:
    client = AsyncMongoMockClient()
    await init_db(client["blackjack_test"])


@pytest.fixture
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def issuer() -> SessionTokenIssuer:
    return SessionTokenIssuer("unit-test-secret", session_ttl=3600, pre_2fa_ttl=300)


@pytest_asyncio.fixture
async def app(db, identity_provider, mailer):
    from blackjack_rewards.main import app as fastapi_app, install_services
    install_services(fastapi_app, get_settings(), identity_provider=identity_provider, mailer=mailer)
    fastapi_app.state.credential_verifier.backoff = 0
    return fastapi_app


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def bearer(app):
    """Build an Authorization header carrying a session token minted by the app."""

    def _bearer(email: str, two_fa_verified: bool = True) -> dict[str, str]:
        token = app.state.token_issuer.issue(email, "uid-1", two_fa_verified)
        return {"Authorization": f"Bearer {token}"}

    return _bearer


async def make_user(email: str, **fields: Any) -> User:
    user = User(email=email, **fields)
    await user.insert()
    return user


def hours_ago(hours: float) -> datetime:
    return datetime.utcnow() - timedelta(hours=hours)
