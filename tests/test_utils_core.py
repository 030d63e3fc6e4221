from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import pytest

from gramledger.app.core.config_core import Settings
from gramledger.app.core.errors_core import (
    CampaignError,
    DuplicateRewardError,
    InsufficientBalanceError,
    InvalidReferralCodeError,
    NotFoundError,
    ReferralCycleError,
    SelfReferralError,
    StorageError,
    ValidationError,
    normalize_exception,
)
from gramledger.app.core.logging_core import RedactingFilter, get_logger
from gramledger.app.core.system_locks import LockViolation, assert_direction_matches_kind, direction_for_kind
from gramledger.app.core.utils_core import (
    REF_CODE_ALPHABET,
    as_utc,
    decode_cursor,
    encode_cursor,
    floor_reward,
    gen_ref_code,
    normalize_ref_code,
    period_start,
)
from gramledger.app.services.ledger_service import (
    AdminCorrelation,
    ReferralCorrelation,
    correlation_from_json,
    correlation_to_json,
    level_for_balance,
)
from gramledger.app.services.stats_service import conversion_rate


class TestFloorReward:
    def test_percentage_of_activity(self):
        assert floor_reward(1000, 5, divisor=100) == 50

    def test_rounds_down(self):
        assert floor_reward(199, 5, divisor=100) == 9
        assert floor_reward(1000, 1.5) == 1500
        assert floor_reward(333, 0.5) == 166

    def test_zero(self):
        assert floor_reward(9, 10, divisor=100) == 0


class TestLevels:
    @pytest.mark.parametrize(
        "balance,level",
        [(0, "bronze"), (9_999, "bronze"), (10_000, "silver"), (50_000, "gold"), (100_000, "premium")],
    )
    def test_thresholds(self, balance, level):
        assert level_for_balance(balance) == level


class TestPeriods:
    NOW = datetime(2026, 10, 17, 15, 30, tzinfo=timezone.utc)

    def test_day_starts_at_utc_midnight(self):
        assert period_start("day", self.NOW) == datetime(2026, 10, 17, tzinfo=timezone.utc)

    def test_week_and_month(self):
        assert period_start("week", self.NOW) == self.NOW - timedelta(days=7)
        assert period_start("month", self.NOW) == self.NOW - timedelta(days=30)

    def test_all_is_unbounded(self):
        assert period_start("all", self.NOW) is None
        assert period_start(None, self.NOW) is None

    def test_unknown_period(self):
        with pytest.raises(ValidationError):
            period_start("year", self.NOW)

    def test_naive_is_treated_as_utc(self):
        naive = datetime(2026, 3, 1, 12, 30)
        shifted = datetime(2026, 3, 1, 15, 30, tzinfo=timezone(timedelta(hours=3)))

        assert as_utc(naive) == datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc)
        assert as_utc(shifted).tzinfo == timezone.utc
        assert as_utc(shifted) == as_utc(naive)
        assert as_utc(None) is None


class TestReferralCodes:
    def test_generated_code_uses_alphabet(self):
        code = gen_ref_code(10)
        assert len(code) == 10
        assert set(code) <= set(REF_CODE_ALPHABET)

    def test_normalize(self):
        assert normalize_ref_code("  abcd2345 ") == "ABCD2345"
        assert normalize_ref_code("   ") is None
        assert normalize_ref_code(None) is None


class TestCursor:
    def test_decode_returns_position(self):
        ts = datetime(2026, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)
        assert decode_cursor(encode_cursor(ts, 42)) == (ts, 42)

    def test_garbage_cursor(self):
        with pytest.raises(ValidationError):
            decode_cursor("not-a-cursor")


class TestKinds:
    def test_direction_follows_kind(self):
        assert direction_for_kind("referral_reward") == "credit"
        assert direction_for_kind("withdraw") == "debit"

    def test_mismatch_is_lock_violation(self):
        with pytest.raises(LockViolation):
            assert_direction_matches_kind("deposit", "debit")


class TestCorrelation:
    def test_json_keeps_type_tag(self):
        doc = correlation_to_json(ReferralCorrelation(referred_account_id=7, activity_type="task_completion"))
        assert doc == {"type": "referral", "referred_account_id": 7, "activity_type": "task_completion"}
        assert correlation_from_json(doc) == ReferralCorrelation(7, "task_completion")

    def test_admin_variant(self):
        corr = correlation_from_json({"type": "admin", "admin_id": 1, "reason": "promo"})
        assert isinstance(corr, AdminCorrelation)

    def test_unknown_tag(self):
        with pytest.raises(ValidationError):
            correlation_from_json({"type": "lottery", "id": 1})


def test_conversion_rate_is_percentage():
    assert conversion_rate(1, 4) == 25.0
    assert conversion_rate(1, 3) == 33.33
    assert conversion_rate(0, 0) == 0.0


@pytest.mark.parametrize(
    "error,code,http_status",
    [
        (InsufficientBalanceError(), "insufficient_balance", 400),
        (InvalidReferralCodeError(), "invalid_referral_code", 400),
        (SelfReferralError(), "self_referral", 400),
        (ReferralCycleError(), "referral_cycle", 400),
        (DuplicateRewardError(), "duplicate_reward", 409),
        (StorageError(), "storage_error", 503),
        (NotFoundError(), "not_found", 404),
        (ValidationError(), "validation_error", 422),
        (CampaignError(), "campaign_error", 400),
    ],
)
def test_error_codes(error, code, http_status):
    assert normalize_exception(error) == (http_status, error.to_payload())
    assert error.to_payload()["error"] == code
    assert error.http_status == http_status


def test_unknown_error_hides_details():
    http_status, payload = normalize_exception(RuntimeError("secret dsn"))
    assert http_status == 500
    assert payload["error"] == "internal_error"
    assert "details" not in payload
    assert "secret" not in payload["message"]


class TestLogging:
    def test_component_fields_merge_with_call_extra(self, caplog):
        logger = get_logger("gramledger.tests.component", component="referrals")
        with caplog.at_level(logging.INFO, logger="gramledger.tests.component"):
            logger.info("Referral linked", extra={"referrer_id": 7})

        record = caplog.records[-1]
        assert (record.component, record.referrer_id) == ("referrals", 7)

    def test_secrets_are_masked(self):
        settings = Settings(ENV="test", ADMIN_API_TOKEN="s3cr3t-admin", NOTIFY_VIA_TELEGRAM=False)
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "token=%s in s3cr3t-admin", ("s3cr3t-admin",), None)

        RedactingFilter(settings).filter(record)

        assert record.getMessage() == "token=**** in ****"
