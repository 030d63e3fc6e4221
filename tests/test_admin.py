from __future__ import annotations

import pytest

from gramledger.app.core.errors_core import ValidationError


class TestDistributeBonus:
    async def test_partial_failure_is_reported_per_account(self, container, make_account, notifier):
        first, second = await make_account(), await make_account()

        result = await container.admin.distribute_bonus(
            [first.id, 999_999, second.id, first.id], 250, "Launch promo", admin_id=1
        )

        assert result.successful == [first.id, second.id]
        assert [(f.account_id, f.error) for f in result.failed] == [(999_999, "not_found")]
        assert await container.accounts.get_balance(first.id) == 250
        assert await container.accounts.get_balance(second.id) == 250
        assert notifier.kinds_for(first.id) == ["bonus_received"]

        page = await container.accounts.get_ledger(first.id)
        entry = page.entries[0]
        assert entry.kind == "admin_bonus"
        assert entry.description == "Launch promo"
        assert entry.correlation == {"type": "admin", "admin_id": 1, "reason": "Launch promo"}

    async def test_replay_with_same_key_pays_once(self, container, make_account):
        account = await make_account()

        await container.admin.distribute_bonus([account.id], 100, "Promo", admin_id=2, idempotency_key="batch-7")
        replay = await container.admin.distribute_bonus(
            [account.id], 100, "Promo", admin_id=2, idempotency_key="batch-7"
        )

        assert replay.successful == []
        assert [f.error for f in replay.failed] == ["duplicate_reward"]
        assert await container.accounts.get_balance(account.id) == 100

    @pytest.mark.parametrize("amount,reason", [(0, "x"), (-1, "x"), (10, "  ")])
    async def test_invalid_request(self, container, make_account, amount, reason):
        account = await make_account()
        with pytest.raises(ValidationError):
            await container.admin.distribute_bonus([account.id], amount, reason, admin_id=1)
