from __future__ import annotations

import logging
from dataclasses import dataclass

from .clock import CivilTime
from .models import (
    ChargingStation,
    MissingField,
    NotificationCategory,
    NotificationIntent,
    NotificationSchedule,
    StationSchedule,
)
from .storage import Storage

logger = logging.getLogger(__name__)

CALL_TO_ACTION = "날짜를 입력해 주세요."
DEFAULT_TITLE = "알림"


@dataclass(frozen=True)
class StationSnapshot:
    """Stations and their schedule rows, loaded once per run and indexed by station id."""

    stations: list[ChargingStation]
    schedules_by_station: dict[str, StationSchedule]

    @classmethod
    async def load(cls, storage: Storage) -> "StationSnapshot":
        stations = await storage.fetch_stations()
        rows = await storage.fetch_station_schedules()
        return cls(stations=stations, schedules_by_station={row.station_id: row for row in rows})


def missing_fields(station: ChargingStation, schedule: StationSchedule | None) -> list[MissingField]:
    missing: list[MissingField] = []
    if station.canopy_installed and (
        schedule is None or not schedule.use_approval_enabled or not schedule.use_approval_date
    ):
        missing.append(MissingField.USE_APPROVAL)
    if schedule is None or not schedule.safety_inspection_date:
        missing.append(MissingField.SAFETY_INSPECTION)
    return missing


class StationReminderGenerator:
    def __init__(self, *, deep_link: str, notification_time: str) -> None:
        self._deep_link = deep_link
        self._notification_time = notification_time

    def generate(
        self,
        schedule: NotificationSchedule,
        snapshot: StationSnapshot,
        civil: CivilTime,
    ) -> list[NotificationIntent]:
        intents: list[NotificationIntent] = []
        for station in snapshot.stations:
            if civil.days_since(station.created_at) < schedule.days_before:
                continue
            for field in missing_fields(station, snapshot.schedules_by_station.get(station.id)):
                intents.append(self._intent_for(schedule, station, field, civil))
        logger.info(
            "Station schedule %s (>= %d days): %d missing dates across %d stations",
            schedule.id,
            schedule.days_before,
            len(intents),
            len(snapshot.stations),
        )
        return intents

    def _intent_for(
        self,
        schedule: NotificationSchedule,
        station: ChargingStation,
        field: MissingField,
        civil: CivilTime,
    ) -> NotificationIntent:
        message = "\n".join(
            [
                f"{station.name} {field.label} 미입력 상태입니다.",
                CALL_TO_ACTION,
                self._deep_link,
            ]
        )
        return NotificationIntent(
            category=NotificationCategory.STATION_SCHEDULE,
            schedule_id=schedule.id,
            subject_id=station.id,
            missing_field=field,
            notification_date=civil.today,
            notification_time=self._notification_time,
            title=schedule.name or DEFAULT_TITLE,
            message=message,
            teams_channel_id=schedule.teams_channel_id,
        )


class UpcomingStationDateGenerator:
    """One digest per station schedule listing stations whose dates fall ``days_before`` days ahead.

    The digest carries no station and no missing field, so its key never
    collides with the per-station completeness reminders of the same schedule.
    """

    def __init__(self, *, deep_link: str, notification_time: str) -> None:
        self._deep_link = deep_link
        self._notification_time = notification_time

    def generate(
        self,
        schedule: NotificationSchedule,
        snapshot: StationSnapshot,
        civil: CivilTime,
    ) -> list[NotificationIntent]:
        target = civil.plus_days(schedule.days_before)
        use_approval: list[ChargingStation] = []
        safety_inspection: list[ChargingStation] = []
        for station in snapshot.stations:
            row = snapshot.schedules_by_station.get(station.id)
            if row is None:
                continue
            if row.use_approval_enabled and row.use_approval_date == target:
                use_approval.append(station)
            if row.safety_inspection_date == target:
                safety_inspection.append(station)

        if not use_approval and not safety_inspection:
            return []
        station_count = len({station.id for station in use_approval + safety_inspection})
        logger.info(
            "Station schedule %s: %d stations with dates on %s",
            schedule.id,
            station_count,
            target,
        )

        lines = [f"충전소 일정 알림 ({schedule.days_before}일 전)", ""]
        for field, stations in (
            (MissingField.USE_APPROVAL, use_approval),
            (MissingField.SAFETY_INSPECTION, safety_inspection),
        ):
            if not stations:
                continue
            lines.append(f"{field.label} ({target}):")
            lines.extend(f"• {station.name} - {station.location or '-'}" for station in stations)
            lines.append("")
        lines.append(f"총 {station_count}개 충전소의 일정이 예정되어 있습니다.")
        lines.append(self._deep_link)

        return [
            NotificationIntent(
                category=NotificationCategory.STATION_SCHEDULE,
                schedule_id=schedule.id,
                subject_id=None,
                missing_field=None,
                notification_date=civil.today,
                notification_time=self._notification_time,
                title=schedule.name or DEFAULT_TITLE,
                message="\n".join(lines),
                teams_channel_id=schedule.teams_channel_id,
            )
        ]
