import pytest

from blackjack_rewards.models.currency_code import CurrencyCode
from blackjack_rewards.models.failed_job import FailedJob
from blackjack_rewards.models.user import User
from blackjack_rewards.services import bonus_codes

from conftest import hours_ago, make_user

pytestmark = pytest.mark.asyncio


async def test_send_currency_code_and_cooldown(client, bearer, mailer):
    await make_user("a@x.com", last_bonus_at=hours_ago(25))
    headers = bearer("a@x.com")

    r = await client.post("/api/send-currency-code", headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body["nextBonusIn"] == 24
    assert body["code"].startswith("DAILY-")
    assert len(mailer.sent) == 1
    user = await User.find_one(User.email == "a@x.com")
    assert user.last_bonus_at > hours_ago(1)

    r = await client.post("/api/send-currency-code", headers=headers)
    assert r.status_code == 400
    err = r.json()["error"]
    assert err["code"] == "COOLDOWN_ACTIVE"
    assert err["details"] == {"hoursRemaining": 24}


async def test_send_currency_code_one_minute_early(client, bearer):
    await make_user("a@x.com", last_bonus_at=hours_ago(23 + 59 / 60))
    r = await client.post("/api/send-currency-code", headers=bearer("a@x.com"))
    assert r.status_code == 400
    assert r.json()["error"]["details"]["hoursRemaining"] == 1


async def test_send_currency_code_delivery_failure(client, bearer, mailer):
    await make_user("a@x.com")
    mailer.fail = True
    r = await client.post("/api/send-currency-code", headers=bearer("a@x.com"))
    assert r.status_code == 500
    err = r.json()["error"]
    assert err["code"] == "DELIVERY_FAILED"
    assert await CurrencyCode.find_one(CurrencyCode.code == err["details"]["code"]) is not None
    assert (await User.find_one(User.email == "a@x.com")).last_bonus_at is None


async def test_send_currency_code_unknown_user(client, bearer):
    r = await client.post("/api/send-currency-code", headers=bearer("ghost@x.com"))
    assert r.status_code == 404


async def test_gated_endpoints_reject_missing_and_pre_2fa_tokens(client, bearer, identity_provider):
    await make_user("a@x.com")
    identity_provider.register("fb-a", "a@x.com")
    for path in (
        "/api/send-currency-code",
        "/api/claim-currency-code",
        "/api/redeem-currency-code",
        "/api/update-balance",
    ):
        assert (await client.post(path)).status_code == 401
        r = await client.post(path, headers=bearer("a@x.com", two_fa_verified=False))
        assert r.status_code == 403
        assert r.json()["error"]["code"] == "TWO_FACTOR_REQUIRED"
        # a provider token is not a session
        r = await client.post(path, headers={"Authorization": "Bearer fb-a"})
        assert r.status_code == 403


async def test_claim_currency_code(client, bearer):
    await make_user("a@x.com", balance=250)
    doc = await bonus_codes.issue_code("a@x.com", "daily")
    headers = bearer("a@x.com")

    r = await client.post("/api/claim-currency-code", headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body["code"] == doc.code
    assert body["amountAdded"] == 1000
    assert body["previousBalance"] == 250
    assert body["newBalance"] == 1250

    r = await client.post("/api/claim-currency-code", headers=headers)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "NO_CLAIMABLE_CODE"


async def test_redeem_currency_code(client, bearer):
    await make_user("a@x.com", balance=3)
    doc = await bonus_codes.issue_code("a@x.com", "daily")
    headers = bearer("a@x.com")

    r = await client.post("/api/redeem-currency-code", json={"code": doc.code}, headers=headers)
    assert r.status_code == 200
    assert r.json()["amount"] == 1000
    assert (await User.find_one(User.email == "a@x.com")).balance == 3

    r = await client.post("/api/redeem-currency-code", json={"code": doc.code}, headers=headers)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "ALREADY_CLAIMED"

    r = await client.post("/api/redeem-currency-code", json={}, headers=headers)
    assert r.status_code == 400


async def test_update_balance(client, bearer):
    await make_user("a@x.com", balance=3)
    headers = bearer("a@x.com")
    r = await client.post("/api/update-balance", json={"balance": 4200}, headers=headers)
    assert r.status_code == 200
    assert r.json()["newBalance"] == 4200
    assert r.json()["email"] == "a@x.com"

    r = await client.post("/api/update-balance", json={"balance": "lots"}, headers=headers)
    assert r.status_code == 400
    assert r.json()["error"]["message"] == "Balance must be a number"

    r = await client.post("/api/update-balance", json={"balance": 1e20}, headers=headers)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"
    assert r.json()["error"]["message"] == "Balance out of range"
    assert (await User.find_one(User.email == "a@x.com")).balance == 4200


async def test_admin_endpoints_require_admin(client, bearer):
    await make_user("a@x.com")
    r = await client.post("/api/trigger-daily-bonus", headers=bearer("a@x.com"))
    assert r.status_code == 403
    r = await client.post("/api/test-currency-code", json={"email": "a@x.com"}, headers=bearer("a@x.com"))
    assert r.status_code == 403


async def test_trigger_daily_bonus(client, bearer, mailer):
    await make_user("root@x.com", role="admin", last_bonus_at=hours_ago(1))
    await make_user("due@x.com")
    r = await client.post("/api/trigger-daily-bonus", headers=bearer("root@x.com"))
    assert r.status_code == 200
    body = r.json()
    assert body["message"] == "Daily bonus job triggered successfully!"
    assert body["issued"] == 1
    assert [to for to, _, _ in mailer.sent] == ["due@x.com"]


async def test_issue_test_code(client, bearer):
    await make_user("root@x.com", role="admin")
    await make_user("a@x.com")
    r = await client.post("/api/test-currency-code", json={"email": "a@x.com"}, headers=bearer("root@x.com"))
    assert r.status_code == 200
    assert r.json()["code"].startswith("TEST-")
    doc = await CurrencyCode.find_one(CurrencyCode.code == r.json()["code"])
    assert doc.kind == "test"
    assert (await User.find_one(User.email == "a@x.com")).last_bonus_at is None

    r = await client.post("/api/test-currency-code", json={"email": "ghost@x.com"}, headers=bearer("root@x.com"))
    assert r.status_code == 404


async def test_daily_bonus_worker_job(db, mailer, monkeypatch):
    from blackjack_rewards.worker import cron, tasks

    await make_user("due@x.com")
    summary = await tasks.daily_bonus({"mailer": mailer, "job_id": "job-1"})
    assert summary == {"issued": 1, "skipped": 0, "failed": 0}

    async def boom(mailer):
        raise RuntimeError("store down")

    monkeypatch.setattr(cron, "run_daily_bonus", boom)
    with pytest.raises(RuntimeError):
        await tasks.daily_bonus({"mailer": mailer, "job_id": "job-2"})
    failed = await FailedJob.find_one(FailedJob.job_id == "job-2")
    assert failed.job_name == "daily_bonus"
    assert failed.error_type == "RuntimeError"
    assert failed.reason == "store down"
