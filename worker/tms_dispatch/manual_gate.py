from __future__ import annotations

import logging

from .clock import CivilTime
from .models import NotificationCategory, NotificationRecord
from .storage import Storage

logger = logging.getLogger(__name__)


class ManualGate:
    """Selects operator-authored notifications whose send window is open right now.

    A record is due when it is unsent, dated today, and the current civil time is
    within ``window_minutes`` after its ``notification_time``. Records outside the
    window stay pending for a later invocation the same day.
    """

    def __init__(self, storage: Storage, *, window_minutes: int, default_time: str) -> None:
        self._storage = storage
        self._window_minutes = window_minutes
        self._default_time = default_time

    def in_window(self, record: NotificationRecord, civil: CivilTime) -> bool:
        elapsed = civil.minutes_after(_hh_mm(record.notification_time) or self._default_time)
        return 0 <= elapsed < self._window_minutes

    async def collect(self, civil: CivilTime) -> list[NotificationRecord]:
        pending = await self._storage.fetch_pending_manual_notifications(civil.today)
        due = [
            record
            for record in pending
            if record.category is NotificationCategory.MANUAL
            and not record.is_sent
            and record.notification_date == civil.today
            and self.in_window(record, civil)
        ]
        if pending:
            logger.info("Manual notifications: %d pending today, %d in window at %s", len(pending), len(due), civil.now_hm)
        return due


def _hh_mm(value: str | None) -> str | None:
    # Postgres "time" columns come back as "HH:MM:SS".
    if not value:
        return None
    return value[:5]
