from __future__ import annotations

from sqlalchemy import select

from gramledger.app.models import Achievement, EarnedAchievement, LedgerEntry
from gramledger.app.services.referral_service import SkipReason


async def _achievement_entries(container, account_id):
    async with container.session_factory() as session:
        stmt = select(LedgerEntry).where(
            LedgerEntry.account_id == account_id, LedgerEntry.kind == "achievement_reward"
        )
        return list((await session.execute(stmt)).scalars().all())


class TestCheckAchievements:
    async def test_first_referral_is_awarded_once(self, container, make_account, notifier):
        referrer, referred = await make_account(), await make_account()
        await container.engine_rewards.process_registration(referred.id, referrer.referral_code)

        first = await container.achievements.check_achievements(referrer.id)
        second = await container.achievements.check_achievements(referrer.id)

        assert sorted(a.id for a in first) == ["first_referral", "first_thousand"]
        assert second == []
        entries = await _achievement_entries(container, referrer.id)
        assert sorted(e.amount for e in entries) == [100, 500]
        assert {e.idempotency_key for e in entries} == {
            f"achievement:{referrer.id}:first_referral",
            f"achievement:{referrer.id}:first_thousand",
        }
        assert await container.accounts.get_balance(referrer.id) == 1600
        assert notifier.kinds_for(referrer.id).count("achievement_earned") == 2

    async def test_nothing_to_award(self, container, make_account):
        account = await make_account()
        assert await container.achievements.check_achievements(account.id) == []

    async def test_inactive_achievement_is_ignored(self, container, make_account):
        async with container.session_factory() as session:
            async with session.begin():
                row = await session.get(Achievement, "first_referral")
                row.is_active = False
        referrer, referred = await make_account(), await make_account()
        await container.engine_rewards.process_registration(referred.id, referrer.referral_code)

        earned = await container.achievements.check_achievements(referrer.id)

        assert [a.id for a in earned] == ["first_thousand"]

    async def test_zero_reward_achievement_writes_no_entry(self, container, make_account):
        async with container.session_factory() as session:
            async with session.begin():
                session.add(
                    Achievement(
                        id="welcome",
                        name="Welcome",
                        description="Have an account",
                        requirement_type="referrals_count",
                        threshold=0,
                        reward_amount=0,
                    )
                )
        account = await make_account()

        earned = await container.achievements.check_achievements(account.id)

        assert [a.id for a in earned] == ["welcome"]
        assert await _achievement_entries(container, account.id) == []
        async with container.session_factory() as session:
            rows = (
                await session.execute(select(EarnedAchievement).where(EarnedAchievement.account_id == account.id))
            ).scalars().all()
        assert [r.achievement_id for r in rows] == ["welcome"]


class TestProgress:
    async def test_progress_reports_current_and_target(self, container, make_account):
        referrer, referred = await make_account(), await make_account()
        await container.engine_rewards.process_registration(referred.id, referrer.referral_code)
        await container.achievements.check_achievements(referrer.id)

        progress = {p.achievement_id: p for p in await container.achievements.achievement_progress(referrer.id)}

        assert progress["first_referral"].earned
        assert progress["first_referral"].progress == 1.0
        master = progress["referral_master"]
        assert (master.current, master.target, master.earned) == (1.0, 100.0, False)
        assert master.progress == 0.01

    async def test_hidden_unearned_achievement_is_not_listed(self, container, make_account):
        async with container.session_factory() as session:
            async with session.begin():
                (await session.get(Achievement, "referral_master")).is_hidden = True
        account = await make_account()

        ids = [p.achievement_id for p in await container.achievements.achievement_progress(account.id)]

        assert "referral_master" not in ids
        assert "first_referral" in ids


class TestRewardEvents:
    async def test_registration_event_runs_achievements(self, container, make_account):
        referrer, referred = await make_account(), await make_account()

        result = await container.events.on_registration(referred.id, referrer.referral_code)

        assert result.outcome.issued
        assert {a.id for a in result.achievements} == {"first_referral", "first_thousand"}
        assert await container.accounts.get_balance(referrer.id) == 1600

    async def test_skipped_registration_checks_nothing(self, container, make_account):
        account = await make_account()
        result = await container.events.on_registration(account.id, "UNKNOWN1")
        assert result.outcome.skip is SkipReason.INVALID_CODE
        assert result.achievements == []

    async def test_premium_event_marks_account_and_pays_bonus(self, container, make_account):
        referrer, referred = await make_account(), await make_account()
        await container.events.on_registration(referred.id, referrer.referral_code)

        result = await container.events.on_premium_upgrade(referred.id)

        assert result.outcome.entry.amount == 2000
        assert (await container.accounts.get_account(referred.id)).is_premium
        replay = await container.events.on_premium_upgrade(referred.id)
        assert replay.outcome.skip is SkipReason.ALREADY_REWARDED

    async def test_activity_event(self, container, make_account):
        referrer, referred = await make_account(), await make_account()
        await container.events.on_registration(referred.id, referrer.referral_code)

        result = await container.events.on_activity(referred.id, "balance_topup", 1000)

        assert result.outcome.entry.amount == 100
        assert result.achievements == []
