from __future__ import annotations

import threading
from datetime import date, timedelta

from researcher.errors import QuotaExceeded
from researcher.services import logger as log_service


class QuotaTracker:
    """Per-calendar-day budget of completion calls.

    One instance is shared by every run in the process and injected into each
    orchestrator. `reset_if_new_period` is called at the start of a run; the
    orchestrator acquires before each completion call and releases when the
    call fails, so failed calls do not count against the budget.
    """

    def __init__(self, limit: int, period_start: date | None = None, count: int = 0):
        self.limit = max(int(limit), 0)
        self.period_start = period_start or date.today()
        self.count = count
        self._lock = threading.Lock()

    @property
    def resets_at(self) -> date:
        return self.period_start + timedelta(days=1)

    @property
    def remaining(self) -> int | None:
        if not self.limit:
            return None
        return max(self.limit - self.count, 0)

    def reset_if_new_period(self, today: date | None = None) -> bool:
        today = today or date.today()
        with self._lock:
            if today != self.period_start:
                self.period_start = today
                self.count = 0
                return True
        return False

    def acquire(self) -> None:
        with self._lock:
            if self.limit and self.count >= self.limit:
                log_service.log_quota_exhausted(self.limit, self.count, self.resets_at)
                raise QuotaExceeded(self.limit, self.resets_at)
            self.count += 1

    def release(self) -> None:
        with self._lock:
            self.count = max(0, self.count - 1)
