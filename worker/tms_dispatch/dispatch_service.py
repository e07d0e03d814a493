from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from .clock import CivilTime, resolve_civil_time
from .config import Settings
from .dispatcher import NO_CHANNELS_MESSAGE, TeamsDispatcher
from .errors import ChannelNotFound, ConfigurationError, NotificationNotFound, StoreWriteError
from .ledger import NotificationLedger
from .manual_gate import ManualGate
from .models import (
    DEFAULT_TAX_GROUPING,
    DeliveryOutcome,
    NotificationCategory,
    NotificationIntent,
    NotificationRecord,
    TaxGrouping,
    TeamsChannel,
)
from .schedules import ScheduleLoader
from .station_reminders import StationReminderGenerator, StationSnapshot, UpcomingStationDateGenerator
from .storage import Storage
from .tax_reminders import TaxReminderGenerator

logger = logging.getLogger(__name__)


@dataclass
class CategoryTally:
    dispatched: int = 0
    sent: int = 0
    failed: int = 0
    existing: int = 0
    refreshed: int = 0


@dataclass
class DispatchSummary:
    today: str = ""
    now: str = ""
    now_hm: str = ""
    categories: list[str] = field(default_factory=list)
    tax_schedules: int = 0
    station_schedules: int = 0
    tax: CategoryTally = field(default_factory=CategoryTally)
    station_schedule: CategoryTally = field(default_factory=CategoryTally)
    manual: CategoryTally = field(default_factory=CategoryTally)


class NotificationDispatchService:
    def __init__(self, storage: Storage, dispatcher: TeamsDispatcher, settings: Settings) -> None:
        self._storage = storage
        self._dispatcher = dispatcher
        self._delivery_log_enabled = settings.delivery_log_enabled
        self._loader = ScheduleLoader(storage)
        self._ledger = NotificationLedger(storage)
        self._tax_generator = TaxReminderGenerator(
            storage,
            deep_link=settings.app_base_url,
            notification_time=settings.default_notification_time,
            grouping=_parse_grouping(settings.tax_reminder_grouping),
        )
        self._station_generator = StationReminderGenerator(
            deep_link=settings.app_base_url,
            notification_time=settings.default_notification_time,
        )
        self._upcoming_generator = UpcomingStationDateGenerator(
            deep_link=settings.app_base_url,
            notification_time=settings.default_notification_time,
        )
        self._manual_gate = ManualGate(
            storage,
            window_minutes=settings.manual_window_minutes,
            default_time=settings.default_notification_time,
        )

    async def dispatch(
        self,
        category: NotificationCategory | None = None,
        instant: datetime | None = None,
    ) -> DispatchSummary:
        civil = resolve_civil_time(instant)
        summary = DispatchSummary(today=civil.today, now=civil.iso, now_hm=civil.now_hm)
        summary.categories = [item.value for item in ScheduleLoader.categories_for(category)]

        # Every read happens before the first write so a failed read dispatches nothing.
        schedules = await self._loader.load(category)
        summary.tax_schedules = len(schedules.tax)
        summary.station_schedules = len(schedules.station)
        channels = await self._storage.fetch_active_channels()

        tax_intents: list[NotificationIntent] = []
        for schedule in schedules.tax:
            tax_intents.extend(await self._tax_generator.generate(schedule, civil))

        station_intents: list[NotificationIntent] = []
        if schedules.station:
            snapshot = await StationSnapshot.load(self._storage)
            for schedule in schedules.station:
                station_intents.extend(self._station_generator.generate(schedule, snapshot, civil))
                station_intents.extend(self._upcoming_generator.generate(schedule, snapshot, civil))

        manual_due = await self._manual_gate.collect(civil)

        for intent in tax_intents:
            await self._process_intent(intent, channels, civil, summary.tax)
        for intent in station_intents:
            await self._process_intent(intent, channels, civil, summary.station_schedule)
        for record in manual_due:
            await self._deliver_record(record, channels, civil, summary.manual)

        logger.info(
            "Dispatch %s %s: tax=%s station=%s manual=%s",
            civil.today,
            civil.now_hm,
            asdict(summary.tax),
            asdict(summary.station_schedule),
            asdict(summary.manual),
        )
        return summary

    async def resend(self, notification_id: str, instant: datetime | None = None) -> DeliveryOutcome:
        civil = resolve_civil_time(instant)
        record = await self._storage.fetch_notification(notification_id)
        if record is None:
            raise NotificationNotFound(notification_id)
        channels = await self._storage.fetch_active_channels()
        outcome = await self._dispatcher.deliver(record.message, record.teams_channel_id, channels, civil)
        await self._write_outcome(record.id, outcome)
        return outcome

    async def send_text(
        self,
        text: str,
        channel_ids: list[str] | None = None,
        notification_id: str | None = None,
        instant: datetime | None = None,
    ) -> DeliveryOutcome:
        civil = resolve_civil_time(instant)
        channels = await self._storage.fetch_active_channels()
        targets: list[str] = []
        if channel_ids:
            for channel_id in channel_ids:
                try:
                    targets.extend(self._dispatcher.resolve_targets(channel_id, channels))
                except ChannelNotFound as exc:
                    logger.warning("Skipping requested channel: %s", exc)
            targets = list(dict.fromkeys(targets))
        else:
            targets = self._dispatcher.resolve_targets(None, channels)
        if not targets:
            raise ConfigurationError(NO_CHANNELS_MESSAGE)

        outcome = await self._dispatcher.send_to(targets, text, civil)
        if notification_id:
            await self._write_outcome(notification_id, outcome)
        return outcome

    async def _process_intent(
        self,
        intent: NotificationIntent,
        channels: list[TeamsChannel],
        civil: CivilTime,
        tally: CategoryTally,
    ) -> None:
        try:
            entry = await self._ledger.record(intent)
        except StoreWriteError as exc:
            logger.error("Failed to record %s notification %s: %s", intent.category.value, intent.key, exc)
            tally.failed += 1
            return
        if not entry.created:
            tally.existing += 1
            if entry.refreshed:
                tally.refreshed += 1
            return
        await self._deliver_record(entry.record, channels, civil, tally)

    async def _deliver_record(
        self,
        record: NotificationRecord,
        channels: list[TeamsChannel],
        civil: CivilTime,
        tally: CategoryTally,
    ) -> None:
        outcome = await self._dispatcher.deliver(record.message, record.teams_channel_id, channels, civil)
        await self._write_outcome(record.id, outcome)
        tally.dispatched += 1
        if outcome.sent:
            tally.sent += 1
        else:
            tally.failed += 1

    async def _write_outcome(self, notification_id: str, outcome: DeliveryOutcome) -> None:
        try:
            await self._storage.update_delivery_status(notification_id, outcome)
        except StoreWriteError as exc:
            logger.error("Failed to store delivery status of notification %s: %s", notification_id, exc)
            return
        if not self._delivery_log_enabled:
            return
        try:
            await self._storage.insert_delivery_log(notification_id, outcome)
        except StoreWriteError as exc:
            logger.warning("Failed to append delivery log for notification %s: %s", notification_id, exc)


def _parse_grouping(raw: str | None) -> TaxGrouping:
    if not raw:
        return DEFAULT_TAX_GROUPING
    try:
        return TaxGrouping(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid TAX_REMINDER_GROUPING: {raw}") from exc


def summary_to_dict(summary: DispatchSummary) -> dict[str, Any]:
    return asdict(summary)
