"""
Tests for the entitlement ledger: window rollover, premium override and
the customer-ref index used by billing sync.
"""
import threading
from datetime import datetime, timezone

from services.entitlements import (
    PLAN_FREE,
    PLAN_PREMIUM,
    daily_window_key,
    weekly_window_key,
)


class TestWindowKeys:
    def test_daily_key_is_utc_date(self):
        # 23:30 at UTC-5 is already the next day in UTC.
        from datetime import timedelta

        local = datetime(2026, 3, 4, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
        assert daily_window_key(local) == "2026-03-05"

    def test_weekly_key_is_utc_monday(self):
        assert weekly_window_key(datetime(2026, 3, 4, tzinfo=timezone.utc)) == "2026-03-02"
        assert weekly_window_key(datetime(2026, 3, 2, tzinfo=timezone.utc)) == "2026-03-02"
        assert weekly_window_key(datetime(2026, 3, 8, 23, 59, tzinfo=timezone.utc)) == "2026-03-02"
        assert weekly_window_key(datetime(2026, 3, 9, tzinfo=timezone.utc)) == "2026-03-09"


class TestLedger:
    def test_unknown_identity_materializes_free(self, ledger):
        rec = ledger.get("new-id")
        assert rec.plan == PLAN_FREE
        assert rec.daily_count == 0
        assert rec.weekly_count == 0
        assert ledger.daily_remaining("new-id") == 3

    def test_daily_rollover_resets_before_increment(self, ledger, clock):
        """Yesterday's exhausted count must not leak into today."""
        for _ in range(3):
            ledger.increment_daily("sess")
        assert ledger.daily_remaining("sess") == 0

        clock.advance(days=1)
        rec = ledger.increment_daily("sess")
        assert rec.daily_count == 1
        assert rec.daily_window == "2026-03-05"
        assert ledger.daily_remaining("sess") == 2

    def test_weekly_rolls_over_on_monday_only(self, ledger, clock):
        ledger.record_usage("sess")
        clock.advance(days=2)  # Friday, same week
        rec = ledger.record_usage("sess")
        assert rec.weekly_count == 2
        assert rec.daily_count == 1

        clock.advance(days=3)  # Monday
        rec = ledger.get("sess")
        assert rec.weekly_count == 0
        assert rec.weekly_window == "2026-03-09"

    def test_remaining_never_negative(self, ledger):
        ledger.increment_daily("sess", by=10)
        assert ledger.daily_remaining("sess") == 0

    def test_premium_is_unlimited_but_still_counts(self, ledger):
        ledger.set_plan("vip", PLAN_PREMIUM)
        for _ in range(5):
            ledger.record_usage("vip")

        assert ledger.daily_remaining("vip") is None
        assert ledger.weekly_remaining("vip") is None
        assert ledger.get("vip").daily_count == 5

    def test_snapshot_reports_nulls_for_premium(self, ledger):
        ledger.set_plan("vip", PLAN_PREMIUM)
        body = ledger.snapshot("vip").to_response()
        assert body["isPremium"] is True
        assert body["dailyLimit"] is None
        assert body["dailyRemaining"] is None
        assert body["weeklyRemaining"] is None

    def test_set_plan_rejects_unknown(self, ledger):
        import pytest

        with pytest.raises(ValueError):
            ledger.set_plan("sess", "gold")

    def test_customer_ref_index_follows_updates(self, ledger):
        ledger.set_billing_refs("a", customer_ref="cus_1")
        ledger.set_billing_refs("b", customer_ref="cus_1")
        assert ledger.find_by_customer_ref("cus_1") == ["a", "b"]

        ledger.set_billing_refs("b", customer_ref="cus_2")
        assert ledger.find_by_customer_ref("cus_1") == ["a"]
        assert ledger.find_by_customer_ref("cus_2") == ["b"]
        assert ledger.find_by_customer_ref("cus_missing") == []

    def test_billing_refs_leave_omitted_fields(self, ledger):
        end = datetime(2026, 4, 1, tzinfo=timezone.utc)
        ledger.set_billing_refs("a", customer_ref="cus_1", subscription_ref="sub_1", period_end=end)
        rec = ledger.set_billing_refs("a", period_end=None)
        assert rec.billing_customer_ref == "cus_1"
        assert rec.billing_subscription_ref == "sub_1"
        assert rec.current_period_end is None

    def test_concurrent_increments_are_not_lost(self, ledger):
        def worker():
            for _ in range(50):
                ledger.record_usage("shared")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        rec = ledger.get("shared")
        assert rec.daily_count == 400
        assert rec.weekly_count == 400
