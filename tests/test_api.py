from __future__ import annotations

from datetime import timedelta

from gramledger.app.core.database_core import utcnow

ADMIN = {"X-Admin-Token": "test-admin-token"}


async def _create(client, **body):
    response = await client.post("/accounts", json=body)
    assert response.status_code == 201, response.text
    return response.json()


class TestAccountsApi:
    async def test_signup_with_referral_code_rewards_referrer(self, client):
        referrer = await _create(client, telegram_id=1001, username="alice")
        referred = await _create(client, telegram_id=1002, referral_code=referrer["referral_code"])

        assert referred["referrer_id"] == referrer["id"]
        balance = (await client.get(f"/accounts/{referrer['id']}/balance")).json()
        # 1000 за регистрацию + достижения first_referral (100) и first_thousand (500)
        assert balance == {"account_id": referrer["id"], "balance": 1600, "frozen_balance": 0, "level": "bronze"}

    async def test_duplicate_telegram_id(self, client):
        await _create(client, telegram_id=7)
        response = await client.post("/accounts", json={"telegram_id": 7})
        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    async def test_missing_account_is_404(self, client):
        response = await client.get("/accounts/999999/balance")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    async def test_ledger_pages_and_etag(self, client, container):
        account = await _create(client)
        for amount in (10, 20, 30):
            await container.accounts.credit(account["id"], amount, "deposit")

        first = await client.get(f"/accounts/{account['id']}/ledger", params={"limit": 2})
        assert first.status_code == 200
        body = first.json()
        assert [item["amount"] for item in body["items"]] == [30, 20]
        assert body["next_cursor"]

        second = await client.get(
            f"/accounts/{account['id']}/ledger", params={"limit": 2, "cursor": body["next_cursor"]}
        )
        assert [item["amount"] for item in second.json()["items"]] == [10]
        assert second.json()["next_cursor"] is None

        cached = await client.get(
            f"/accounts/{account['id']}/ledger",
            params={"limit": 2},
            headers={"If-None-Match": first.headers["ETag"]},
        )
        assert cached.status_code == 304

    async def test_ledger_kind_filter_and_bad_cursor(self, client, container):
        account = await _create(client)
        await container.accounts.credit(account["id"], 50, "deposit")
        await container.accounts.debit(account["id"], 5, "commission")

        filtered = await client.get(f"/accounts/{account['id']}/ledger", params={"kind": "commission"})
        assert [item["kind"] for item in filtered.json()["items"]] == ["commission"]

        broken = await client.get(f"/accounts/{account['id']}/ledger", params={"cursor": "%%%"})
        assert broken.status_code == 422
        assert broken.json()["error"] == "validation_error"

    async def test_ledger_naive_dates_are_utc(self, client, container):
        account = await _create(client)
        await container.accounts.credit(account["id"], 40, "deposit")
        hour_ago = (utcnow() - timedelta(hours=1)).replace(tzinfo=None).isoformat()
        hour_ahead = (utcnow() + timedelta(hours=1)).replace(tzinfo=None).isoformat()

        included = await client.get(
            f"/accounts/{account['id']}/ledger", params={"date_from": hour_ago, "date_to": hour_ahead}
        )
        excluded = await client.get(f"/accounts/{account['id']}/ledger", params={"date_from": hour_ahead})

        assert [item["amount"] for item in included.json()["items"]] == [40]
        assert excluded.json()["items"] == []


class TestEventsApi:
    async def test_premium_upgrade_is_paid_once(self, client):
        referrer = await _create(client)
        referred = await _create(client, referral_code=referrer["referral_code"])

        first = await client.post("/events/premium-upgrade", json={"account_id": referred["id"]})
        second = await client.post("/events/premium-upgrade", json={"account_id": referred["id"]})

        assert first.json()["issued"] is True
        assert first.json()["entry"]["kind"] == "referral_premium_bonus"
        assert second.json() == {
            "issued": False,
            "skip_reason": "already_rewarded",
            "referrer_id": referrer["id"],
            "entry": None,
            "achievements": [],
        }

    async def test_registration_event_reports_skip(self, client):
        account = await _create(client)
        response = await client.post(
            "/events/registration", json={"account_id": account["id"], "referral_code": account["referral_code"]}
        )
        assert response.status_code == 200
        assert response.json()["skip_reason"] == "self_referral"

    async def test_activity_event(self, client):
        referrer = await _create(client)
        referred = await _create(client, referral_code=referrer["referral_code"])

        response = await client.post(
            "/events/activity",
            json={"account_id": referred["id"], "activity_type": "task_completion", "amount": 1000},
        )

        assert response.json()["entry"]["amount"] == 50

    async def test_activity_for_unknown_account(self, client):
        response = await client.post(
            "/events/activity", json={"account_id": 123456, "activity_type": "task_completion", "amount": 100}
        )
        assert response.status_code == 404


class TestReferralsApi:
    async def test_stats_and_achievements(self, client):
        referrer = await _create(client)
        await _create(client, referral_code=referrer["referral_code"])

        stats = (await client.get(f"/referrals/{referrer['id']}/stats", params={"period": "week"})).json()
        assert stats["total_referrals"] == 1
        assert stats["breakdown"]["referral_reward"] == 1000

        achievements = (await client.get(f"/referrals/{referrer['id']}/achievements")).json()
        earned = {a["achievement_id"] for a in achievements if a["earned"]}
        assert earned == {"first_referral", "first_thousand"}

    async def test_referral_list_and_tree(self, client):
        root = await _create(client)
        child = await _create(client, referral_code=root["referral_code"])
        grandchild = await _create(client, referral_code=child["referral_code"])

        listing = await client.get(f"/referrals/{root['id']}/list", params={"limit": 10})
        assert listing.status_code == 200
        body = listing.json()
        assert body["total"] == 1
        assert [(item["account_id"], item["earnings"]) for item in body["items"]] == [(child["id"], 1000)]

        tree = (await client.get(f"/referrals/{root['id']}/tree")).json()
        assert (tree["total_levels"], tree["total_referrals"], tree["total_earnings"]) == (2, 2, 2000)
        assert tree["nodes"][0]["account_id"] == child["id"]
        assert [node["account_id"] for node in tree["nodes"][0]["children"]] == [grandchild["id"]]

        shallow = (await client.get(f"/referrals/{root['id']}/tree", params={"max_depth": 1})).json()
        assert shallow["total_referrals"] == 1
        assert shallow["nodes"][0]["children"] == []

    async def test_referral_list_unknown_account(self, client):
        response = await client.get("/referrals/999999/list")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    async def test_unknown_period_is_rejected(self, client):
        account = await _create(client)
        response = await client.get(f"/referrals/{account['id']}/stats", params={"period": "year"})
        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"


class TestAdminApi:
    async def test_requires_token(self, client):
        response = await client.get("/admin/reward-config")
        assert response.status_code == 403
        assert response.json()["error"] == "http_error"

        wrong = await client.get("/admin/reward-config", headers={"X-Admin-Token": "nope"})
        assert wrong.status_code == 403

    async def test_bonus(self, client):
        account = await _create(client)
        response = await client.post(
            "/admin/bonus",
            json={"account_ids": [account["id"], 424242], "amount": 75, "reason": "Thanks", "admin_id": 1},
            headers=ADMIN,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["successful"] == [account["id"]]
        assert body["failed"][0]["account_id"] == 424242

    async def test_reward_config_patch(self, client):
        response = await client.patch(
            "/admin/reward-config",
            json={"patch": {"levels": {"bronze": {"registration": 900}}}},
            headers=ADMIN,
        )
        assert response.status_code == 200
        assert response.json()["version"] == 1
        assert response.json()["config"]["levels"]["bronze"]["registration"] == 900

        bad = await client.patch(
            "/admin/reward-config", json={"patch": {"max_referrals_per_day": 0}}, headers=ADMIN
        )
        assert bad.status_code == 422
        assert bad.json()["error"] == "validation_error"

    async def test_campaign_lifecycle(self, client):
        account = await _create(client)
        created = await client.post(
            "/admin/campaigns",
            json={
                "name": "Double week",
                "starts_at": (utcnow() - timedelta(minutes=5)).isoformat(),
                "ends_at": (utcnow() + timedelta(days=7)).isoformat(),
                "registration_multiplier": 2.0,
            },
            headers=ADMIN,
        )
        assert created.status_code == 201
        campaign_id = created.json()["id"]

        active = (await client.get("/campaigns/active")).json()
        assert [c["id"] for c in active] == [campaign_id]

        joined = await client.post(f"/campaigns/{campaign_id}/join", json={"account_id": account["id"]})
        assert joined.status_code == 201
        again = await client.post(f"/campaigns/{campaign_id}/join", json={"account_id": account["id"]})
        assert again.status_code == 400
        assert again.json()["error"] == "campaign_error"


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["db"] is True
    assert response.json()["models"]["ok"] is True
    assert response.json()["models"]["missing"] == []


async def test_reset_engine_rebinds_services(container, make_account):
    account = await make_account(balance=40)
    old_engine = container.engine

    await container.reset_engine()

    assert container.engine is not old_engine
    assert await container.accounts.get_balance(account.id) == 40
    await container.engine.dispose()


async def test_request_id_is_echoed_or_generated(client):
    echoed = await client.get("/health", headers={"X-Request-ID": "req-42"})
    generated = await client.get("/health")

    assert echoed.headers["x-request-id"] == "req-42"
    assert len(generated.headers["x-request-id"]) == 32
