from __future__ import annotations

import logging

from .clock import CivilTime
from .models import (
    NotificationCategory,
    NotificationIntent,
    NotificationSchedule,
    TaxGrouping,
    TaxRecord,
)
from .storage import Storage

logger = logging.getLogger(__name__)

TAX_HEADLINE = "세금 납부일 알림입니다."
DEFAULT_TITLE = "알림"


class TaxReminderGenerator:
    """Turns tax schedules into notification intents for taxes due ``days_before`` days from today."""

    def __init__(
        self,
        storage: Storage,
        *,
        deep_link: str,
        notification_time: str,
        grouping: TaxGrouping = TaxGrouping.PER_TAX,
    ) -> None:
        self._storage = storage
        self._deep_link = deep_link
        self._notification_time = notification_time
        self._grouping = grouping

    async def generate(self, schedule: NotificationSchedule, civil: CivilTime) -> list[NotificationIntent]:
        target_date = civil.plus_days(schedule.days_before)
        taxes = await self._storage.fetch_taxes_due_on(target_date)
        logger.info(
            "Tax schedule %s (D-%d): %d taxes due on %s",
            schedule.id,
            schedule.days_before,
            len(taxes),
            target_date,
        )
        if not taxes:
            return []
        if self._grouping is TaxGrouping.PER_DUE_DATE:
            return [self._grouped_intent(schedule, taxes, target_date, civil)]
        return [self._intent_for(schedule, tax, civil) for tax in taxes]

    def _intent_for(self, schedule: NotificationSchedule, tax: TaxRecord, civil: CivilTime) -> NotificationIntent:
        message = "\n".join(
            [
                _headline(schedule),
                f"{tax.station_name or '-'} / {tax.tax_type.label} / {tax.due_date}",
                self._deep_link,
            ]
        )
        return self._build(schedule, subject_id=tax.id, message=message, civil=civil)

    def _grouped_intent(
        self,
        schedule: NotificationSchedule,
        taxes: list[TaxRecord],
        target_date: str,
        civil: CivilTime,
    ) -> NotificationIntent:
        lines = [_headline(schedule), f"납부 기한: {target_date} (총 {len(taxes)}건)"]
        lines.extend(f"• {tax.station_name or '-'} / {tax.tax_type.label}" for tax in taxes)
        lines.append(self._deep_link)
        return self._build(schedule, subject_id=None, message="\n".join(lines), civil=civil)

    def _build(
        self,
        schedule: NotificationSchedule,
        *,
        subject_id: str | None,
        message: str,
        civil: CivilTime,
    ) -> NotificationIntent:
        return NotificationIntent(
            category=NotificationCategory.TAX,
            schedule_id=schedule.id,
            subject_id=subject_id,
            missing_field=None,
            notification_date=civil.today,
            notification_time=self._notification_time,
            title=schedule.name or DEFAULT_TITLE,
            message=message,
            teams_channel_id=schedule.teams_channel_id,
        )


def _headline(schedule: NotificationSchedule) -> str:
    if schedule.name:
        return f"[{schedule.name}] {TAX_HEADLINE}"
    return TAX_HEADLINE
