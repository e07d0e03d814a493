from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .models import NotificationCategory, NotificationSchedule
from .storage import Storage

logger = logging.getLogger(__name__)

# Unattended triggers (cron without a category) only send tax reminders;
# station-schedule reminders must be requested explicitly.
DEFAULT_CATEGORIES: tuple[NotificationCategory, ...] = (NotificationCategory.TAX,)

SCHEDULED_CATEGORIES: tuple[NotificationCategory, ...] = (
    NotificationCategory.TAX,
    NotificationCategory.STATION_SCHEDULE,
)


@dataclass
class LoadedSchedules:
    tax: list[NotificationSchedule] = field(default_factory=list)
    station: list[NotificationSchedule] = field(default_factory=list)


class ScheduleLoader:
    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    @staticmethod
    def categories_for(requested: NotificationCategory | None) -> tuple[NotificationCategory, ...]:
        if requested is None:
            return DEFAULT_CATEGORIES
        if requested not in SCHEDULED_CATEGORIES:
            raise ValueError(f"{requested.value} notifications have no schedules")
        return (requested,)

    async def load(self, requested: NotificationCategory | None) -> LoadedSchedules:
        loaded = LoadedSchedules()
        for category in self.categories_for(requested):
            schedules = await self._storage.fetch_active_schedules(category)
            schedules = [schedule for schedule in schedules if schedule.is_active and schedule.category is category]
            if category is NotificationCategory.TAX:
                loaded.tax = schedules
            else:
                loaded.station = schedules
        logger.info("Loaded %d tax and %d station schedules", len(loaded.tax), len(loaded.station))
        return loaded
