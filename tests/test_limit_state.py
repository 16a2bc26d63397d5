from datetime import datetime

from models import Limit, LimitKind, LimitPeriod
from limits import limit_state, next_reset_after, status_for_percent


def _limit(amount_cents: int, accrued_cents: int, **alerts: bool) -> Limit:
    return Limit(
        id=1,
        user_id=1,
        name="Groceries",
        kind=LimitKind.general,
        amount_cents=amount_cents,
        accrued_cents=accrued_cents,
        period=LimitPeriod.monthly,
        active=True,
        alert_50=alerts.get("alert_50", True),
        alert_75=alerts.get("alert_75", True),
        alert_90=alerts.get("alert_90", True),
        alert_100=alerts.get("alert_100", True),
        last_reset_at=datetime(2025, 1, 1),
        next_reset_at=datetime(2025, 2, 1),
    )


def test_percent_used_is_clamped_but_exceeded_is_not():
    state = limit_state(_limit(10_000, 15_000))
    assert state.percent_used == 100
    assert state.exceeded is True
    assert state.remaining_cents == 0
    assert state.status == "exceeded"


def test_exactly_at_ceiling_is_exceeded_tier_but_not_exceeded_flag():
    state = limit_state(_limit(10_000, 10_000))
    assert state.percent_used == 100
    assert state.exceeded is False
    assert state.status == "exceeded"


def test_tier_uses_exact_ratio_just_below_ceiling():
    state = limit_state(_limit(100_000, 99_995))
    assert state.percent_used == 100.0
    assert state.exceeded is False
    assert state.remaining_cents == 5
    assert state.status == "critical"
    assert state.alerts == (50, 75, 90)


def test_tier_uses_exact_ratio_just_below_alert_threshold():
    state = limit_state(_limit(100_000, 49_999))
    assert state.percent_used == 50.0
    assert state.status == "normal"
    assert state.alerts == ()


def test_zero_ceiling_never_divides():
    state = limit_state(_limit(0, 5_000))
    assert state.percent_used == 0
    assert state.status == "normal"
    assert state.remaining_cents == 0


def test_partial_usage_reports_remaining_and_tier():
    state = limit_state(_limit(50_000, 35_000))
    assert state.percent_used == 70
    assert state.remaining_cents == 15_000
    assert state.exceeded is False
    assert state.status == "caution"


def test_status_tiers_evaluated_high_to_low():
    assert status_for_percent(0) == "normal"
    assert status_for_percent(49.99) == "normal"
    assert status_for_percent(50) == "caution"
    assert status_for_percent(75) == "warning"
    assert status_for_percent(89.99) == "warning"
    assert status_for_percent(90) == "critical"
    assert status_for_percent(100) == "exceeded"


def test_triggered_alerts_respect_disabled_flags():
    state = limit_state(_limit(10_000, 9_500, alert_75=False))
    assert state.alerts == (50, 90)


def test_next_reset_daily_and_weekly():
    base = datetime(2025, 3, 10, 8, 30)
    assert next_reset_after(base, LimitPeriod.daily) == datetime(2025, 3, 11, 8, 30)
    assert next_reset_after(base, LimitPeriod.weekly) == datetime(2025, 3, 17, 8, 30)


def test_next_reset_monthly_clamps_to_month_length():
    assert next_reset_after(datetime(2024, 1, 31, 9, 0), LimitPeriod.monthly) == (
        datetime(2024, 2, 29, 9, 0)
    )
    assert next_reset_after(datetime(2025, 12, 15), LimitPeriod.monthly) == (
        datetime(2026, 1, 15)
    )


def test_next_reset_yearly_from_leap_day():
    assert next_reset_after(datetime(2024, 2, 29), LimitPeriod.yearly) == (
        datetime(2025, 2, 28)
    )
