from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from gramledger.app.core.database_core import utcnow
from gramledger.app.core.errors_core import NotFoundError, ValidationError
from gramledger.app.models import LedgerEntry
from gramledger.app.services.referral_service import SkipReason


async def _kind_entries(container, account_id, kind):
    async with container.session_factory() as session:
        stmt = select(LedgerEntry).where(LedgerEntry.account_id == account_id, LedgerEntry.kind == kind)
        return list((await session.execute(stmt)).scalars().all())


@pytest.fixture
def referral_pair(container, make_account):
    """Referrer plus a fresh account already linked to it (registration reward paid)."""

    async def _pair():
        referrer = await make_account()
        referred = await make_account()
        outcome = await container.engine_rewards.process_registration(referred.id, referrer.referral_code)
        assert outcome.issued
        return referrer, referred

    return _pair


class TestRegistration:
    async def test_bronze_referrer_gets_registration_reward(self, container, make_account, notifier):
        referrer = await make_account()
        referred = await make_account()

        outcome = await container.engine_rewards.process_registration(referred.id, referrer.referral_code.lower())

        assert outcome.issued and outcome.skip is None
        assert outcome.referrer_id == referrer.id
        assert outcome.entry.kind == "referral_reward"
        assert outcome.entry.amount == 1000
        assert outcome.entry.related_account_id == referred.id

        fresh_referrer = await container.accounts.get_account(referrer.id)
        fresh_referred = await container.accounts.get_account(referred.id)
        assert fresh_referrer.balance == 1000
        assert fresh_referrer.referrals_count == 1
        assert fresh_referred.referrer_id == referrer.id
        assert fresh_referred.referred_at is not None
        assert notifier.kinds_for(referrer.id) == ["referral_registered"]

    async def test_self_referral_is_skipped(self, container, make_account):
        account = await make_account()
        outcome = await container.engine_rewards.process_registration(account.id, account.referral_code)

        assert outcome.skip is SkipReason.SELF_REFERRAL
        fresh = await container.accounts.get_account(account.id)
        assert fresh.referrer_id is None
        assert fresh.balance == 0

    @pytest.mark.parametrize("code", [None, "", "NOSUCHCODE"])
    async def test_invalid_code_is_skipped(self, container, make_account, code):
        account = await make_account()
        outcome = await container.engine_rewards.process_registration(account.id, code)
        assert outcome.skip is SkipReason.INVALID_CODE
        assert not outcome.issued

    async def test_second_registration_is_already_referred(self, container, make_account, referral_pair):
        referrer, referred = await referral_pair()
        other = await make_account()

        outcome = await container.engine_rewards.process_registration(referred.id, other.referral_code)

        assert outcome.skip is SkipReason.ALREADY_REFERRED
        assert outcome.referrer_id == referrer.id
        assert await container.accounts.get_balance(other.id) == 0

    async def test_cycle_is_refused(self, container, referral_pair):
        referrer, referred = await referral_pair()

        outcome = await container.engine_rewards.process_registration(referrer.id, referred.referral_code)

        assert outcome.skip is SkipReason.REFERRAL_CYCLE
        assert (await container.accounts.get_account(referrer.id)).referrer_id is None

    async def test_daily_referral_limit_links_without_reward(self, container, make_account):
        await container.config_store.update({"max_referrals_per_day": 1})
        referrer = await make_account()
        first, second = await make_account(), await make_account()

        assert (await container.engine_rewards.process_registration(first.id, referrer.referral_code)).issued
        outcome = await container.engine_rewards.process_registration(second.id, referrer.referral_code)

        assert outcome.skip is SkipReason.DAILY_REFERRAL_LIMIT
        assert (await container.accounts.get_account(second.id)).referrer_id == referrer.id
        fresh = await container.accounts.get_account(referrer.id)
        assert fresh.referrals_count == 2
        assert fresh.balance == 1000

    async def test_zero_rate_links_without_entry(self, container, make_account):
        await container.config_store.update({"levels": {"bronze": {"registration": 0}}})
        referrer, referred = await make_account(), await make_account()

        outcome = await container.engine_rewards.process_registration(referred.id, referrer.referral_code)

        assert outcome.skip is SkipReason.ZERO_REWARD
        assert (await container.accounts.get_account(referred.id)).referrer_id == referrer.id
        assert await _kind_entries(container, referrer.id, "referral_reward") == []

    async def test_rate_follows_referrer_level(self, container, make_account):
        referrer = await make_account(balance=50_000)
        referred = await make_account()
        outcome = await container.engine_rewards.process_registration(referred.id, referrer.referral_code)
        assert outcome.entry.amount == 2000

    async def test_unknown_new_account(self, container, make_account):
        referrer = await make_account()
        with pytest.raises(NotFoundError):
            await container.engine_rewards.process_registration(987654, referrer.referral_code)


class TestPremiumUpgrade:
    async def test_bonus_is_paid_once(self, container, referral_pair, notifier):
        referrer, referred = await referral_pair()

        first = await container.engine_rewards.process_premium_upgrade(referred.id)
        second = await container.engine_rewards.process_premium_upgrade(referred.id)

        assert first.issued and first.entry.amount == 2000
        assert first.entry.idempotency_key == f"referral_premium_bonus:{referrer.id}:{referred.id}"
        assert second.skip is SkipReason.ALREADY_REWARDED
        assert len(await _kind_entries(container, referrer.id, "referral_premium_bonus")) == 1

        fresh = await container.accounts.get_account(referrer.id)
        assert fresh.balance == 3000
        assert fresh.premium_referrals_count == 1
        assert notifier.kinds_for(referrer.id).count("referral_premium_upgrade") == 1

    async def test_concurrent_upgrades_pay_once(self, container, referral_pair):
        referrer, referred = await referral_pair()

        outcomes = await asyncio.gather(
            container.engine_rewards.process_premium_upgrade(referred.id),
            container.engine_rewards.process_premium_upgrade(referred.id),
        )

        assert sorted(o.issued for o in outcomes) == [False, True]
        assert len(await _kind_entries(container, referrer.id, "referral_premium_bonus")) == 1

    async def test_without_referrer(self, container, make_account):
        account = await make_account()
        outcome = await container.engine_rewards.process_premium_upgrade(account.id)
        assert outcome.skip is SkipReason.NO_REFERRER

    async def test_disabled(self, container, referral_pair):
        _, referred = await referral_pair()
        await container.config_store.update({"enable_premium_bonuses": False})
        outcome = await container.engine_rewards.process_premium_upgrade(referred.id)
        assert outcome.skip is SkipReason.FEATURE_DISABLED


class TestActivity:
    async def test_percentage_of_activity(self, container, referral_pair, notifier):
        referrer, referred = await referral_pair()

        outcome = await container.engine_rewards.process_activity(referred.id, "task_completion", 1000)

        assert outcome.entry.amount == 50
        assert outcome.entry.kind == "referral_activity"
        assert outcome.entry.correlation == {
            "type": "referral",
            "referred_account_id": referred.id,
            "activity_type": "task_completion",
        }
        assert await container.accounts.get_balance(referrer.id) == 1050
        assert "referral_activity_reward" in notifier.kinds_for(referrer.id)

    async def test_daily_cap_clamps_then_skips(self, container, referral_pair):
        referrer, referred = await referral_pair()

        first = await container.engine_rewards.process_activity(referred.id, "task_completion", 8000)
        second = await container.engine_rewards.process_activity(referred.id, "task_completion", 8000)
        third = await container.engine_rewards.process_activity(referred.id, "balance_topup", 100)

        assert first.entry.amount == 400
        assert second.entry.amount == 100
        assert second.details == {"computed": 400, "clamped": True}
        assert third.skip is SkipReason.CAP_EXCEEDED

    async def test_concurrent_events_respect_cap(self, container, referral_pair):
        referrer, referred = await referral_pair()

        outcomes = await asyncio.gather(
            container.engine_rewards.process_activity(referred.id, "task_completion", 8000),
            container.engine_rewards.process_activity(referred.id, "task_completion", 8000),
        )

        paid = sum(o.entry.amount for o in outcomes if o.issued)
        assert paid == 500
        assert sum(e.amount for e in await _kind_entries(container, referrer.id, "referral_activity")) <= 500

    async def test_below_minimum(self, container, referral_pair):
        _, referred = await referral_pair()
        outcome = await container.engine_rewards.process_activity(referred.id, "task_completion", 9)
        assert outcome.skip is SkipReason.BELOW_MINIMUM

    async def test_tiny_reward_rounds_to_zero(self, container, referral_pair):
        _, referred = await referral_pair()
        outcome = await container.engine_rewards.process_activity(referred.id, "task_completion", 19)
        assert outcome.skip is SkipReason.ZERO_REWARD

    async def test_unknown_activity_type_pays_nothing(self, container, referral_pair):
        _, referred = await referral_pair()
        outcome = await container.engine_rewards.process_activity(referred.id, "lottery", 1000)
        assert outcome.skip is SkipReason.ZERO_REWARD

    async def test_no_referrer(self, container, make_account):
        account = await make_account()
        outcome = await container.engine_rewards.process_activity(account.id, "task_completion", 1000)
        assert outcome.skip is SkipReason.NO_REFERRER

    async def test_disabled(self, container, referral_pair):
        _, referred = await referral_pair()
        await container.config_store.update({"enable_activity_rewards": False})
        outcome = await container.engine_rewards.process_activity(referred.id, "task_completion", 1000)
        assert outcome.skip is SkipReason.FEATURE_DISABLED

    async def test_negative_amount(self, container, referral_pair):
        _, referred = await referral_pair()
        with pytest.raises(ValidationError):
            await container.engine_rewards.process_activity(referred.id, "task_completion", -1)


class TestMixedConcurrency:
    async def test_registration_and_activity_keep_referrer_history_chained(
        self, container, make_account, referral_pair
    ):
        referrer, existing = await referral_pair()
        newcomers = [await make_account() for _ in range(3)]

        outcomes = await asyncio.gather(
            *[container.engine_rewards.process_registration(a.id, referrer.referral_code) for a in newcomers],
            *[container.engine_rewards.process_activity(existing.id, "task_completion", 1000) for _ in range(3)],
        )

        assert all(o.issued for o in outcomes)
        async with container.session_factory() as session:
            stmt = select(LedgerEntry).where(LedgerEntry.account_id == referrer.id).order_by(LedgerEntry.id)
            entries = list((await session.execute(stmt)).scalars().all())

        for previous, current in zip(entries, entries[1:]):
            assert current.balance_before == previous.balance_after
        assert entries[0].balance_before == 0
        assert await container.accounts.get_balance(referrer.id) == entries[-1].balance_after
        assert sum(e.amount for e in entries if e.kind == "referral_reward") == 4000
        assert sum(e.amount for e in entries if e.kind == "referral_activity") == 150


class TestCampaignMultipliers:
    async def test_joined_campaign_boosts_rewards(self, container, make_account):
        campaign = await container.campaigns.create_campaign(
            name="Autumn x1.5",
            starts_at=utcnow() - timedelta(hours=1),
            ends_at=utcnow() + timedelta(days=1),
            registration_multiplier=1.5,
            activity_multiplier=2.0,
        )
        referrer = await make_account()
        await container.campaigns.join(referrer.id, campaign.id)
        referred = await make_account()

        registration = await container.engine_rewards.process_registration(referred.id, referrer.referral_code)
        activity = await container.engine_rewards.process_activity(referred.id, "task_completion", 1000)

        assert registration.entry.amount == 1500
        assert activity.entry.amount == 100

    async def test_campaign_without_membership_has_no_effect(self, container, make_account):
        await container.campaigns.create_campaign(
            name="Members only",
            starts_at=utcnow() - timedelta(hours=1),
            registration_multiplier=3.0,
        )
        referrer, referred = await make_account(), await make_account()
        outcome = await container.engine_rewards.process_registration(referred.id, referrer.referral_code)
        assert outcome.entry.amount == 1000
