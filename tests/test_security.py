import time

from blackjack_rewards.core import security
from blackjack_rewards.core.security import SessionTokenIssuer


def test_full_session_round_trip(issuer):
    token = issuer.issue("a@x.com", "uid-a", True)
    claims = issuer.load(token)
    assert claims is not None
    assert claims.email == "a@x.com"
    assert claims.sub == "uid-a"
    assert claims.two_fa_verified is True


def test_pre_2fa_token_is_unverified_and_short_lived(issuer):
    before = int(time.time())
    claims = issuer.load(issuer.issue("a@x.com", "uid-a", False))
    assert claims.two_fa_verified is False
    assert before + 300 <= claims.exp <= before + 301


def test_pre_2fa_token_expires_before_full_session(issuer, monkeypatch):
    pre = issuer.issue("a@x.com", "uid-a", False)
    full = issuer.issue("a@x.com", "uid-a", True)
    later = time.time() + 301
    monkeypatch.setattr(security.time, "time", lambda: later)
    assert issuer.load(pre) is None
    assert issuer.load(full) is not None


def test_tampered_token_rejected(issuer):
    token = issuer.issue("a@x.com", "uid-a", False)
    other = issuer.issue("b@x.com", "uid-b", True)
    head = token.rsplit(".", 1)[0]
    other_sig = other.rsplit(".", 1)[1]
    assert issuer.load(f"{head}.{other_sig}") is None


def test_token_from_other_secret_rejected(issuer):
    other = SessionTokenIssuer("another-secret", 3600, 300)
    assert issuer.load(other.issue("a@x.com", "uid-a", True)) is None


def test_garbage_rejected(issuer):
    assert issuer.load("not-a-token") is None
    assert issuer.load("") is None
