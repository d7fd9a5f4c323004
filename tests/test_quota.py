from datetime import date, timedelta

import pytest

from researcher.errors import QuotaExceeded
from researcher.services.quota import QuotaTracker


def test_acquire_until_limit_then_raise():
    quota = QuotaTracker(limit=2, period_start=date(2026, 3, 1))
    quota.acquire()
    quota.acquire()

    with pytest.raises(QuotaExceeded) as exc_info:
        quota.acquire()

    assert exc_info.value.resets_at == date(2026, 3, 2)
    assert "Daily completion limit of 2" in exc_info.value.message
    assert quota.remaining == 0


def test_release_refunds_but_never_goes_negative():
    quota = QuotaTracker(limit=5)
    quota.acquire()
    quota.release()
    quota.release()
    assert quota.count == 0


def test_new_period_resets_count():
    start = date(2026, 3, 1)
    quota = QuotaTracker(limit=1, period_start=start, count=1)

    assert quota.reset_if_new_period(start) is False
    with pytest.raises(QuotaExceeded):
        quota.acquire()

    assert quota.reset_if_new_period(start + timedelta(days=1)) is True
    quota.acquire()
    assert quota.count == 1


def test_zero_limit_is_unlimited():
    quota = QuotaTracker(limit=0)
    for _ in range(1000):
        quota.acquire()
    assert quota.remaining is None
