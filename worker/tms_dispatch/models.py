from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from .clock import to_civil_date
from .errors import ConfigurationError


class NotificationCategory(str, Enum):
    TAX = "tax"
    STATION_SCHEDULE = "station_schedule"
    MANUAL = "manual"


class DeliveryState(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class MissingField(str, Enum):
    USE_APPROVAL = "use_approval"
    SAFETY_INSPECTION = "safety_inspection"

    @property
    def label(self) -> str:
        return "사용 승인일" if self is MissingField.USE_APPROVAL else "안전 점검일"


class TaxType(str, Enum):
    ACQUISITION = "acquisition"
    PROPERTY = "property"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "TaxType":
        try:
            return cls(str(value))
        except ValueError:
            return cls.OTHER

    @property
    def label(self) -> str:
        return {
            TaxType.ACQUISITION: "취득세",
            TaxType.PROPERTY: "재산세",
        }.get(self, "기타세")


class TaxGrouping(str, Enum):
    """How taxes sharing a due date are turned into notifications."""

    PER_TAX = "per_tax"
    PER_DUE_DATE = "per_due_date"


DEFAULT_TAX_GROUPING = TaxGrouping.PER_TAX


@dataclass(frozen=True)
class NotificationSchedule:
    id: str
    category: NotificationCategory
    days_before: int
    name: str | None
    teams_channel_id: str | None
    is_active: bool = True

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "NotificationSchedule":
        schedule_id = _to_str(row.get("id"))
        if schedule_id is None:
            raise ConfigurationError(f"notification schedule without id: {row!r}")
        try:
            category = NotificationCategory(str(row.get("notification_type")))
        except ValueError as exc:
            raise ConfigurationError(
                f"schedule {schedule_id} has unknown notification_type {row.get('notification_type')!r}"
            ) from exc
        days_before = _to_int(row.get("days_before"))
        if days_before is None or days_before < 0:
            raise ConfigurationError(
                f"schedule {schedule_id} has invalid days_before {row.get('days_before')!r}"
            )
        return cls(
            id=schedule_id,
            category=category,
            days_before=days_before,
            name=_to_str(row.get("name")),
            teams_channel_id=_to_str(row.get("teams_channel_id")),
            is_active=bool(row.get("is_active", True)),
        )


@dataclass(frozen=True)
class TaxRecord:
    id: str
    tax_type: TaxType
    amount: int | None
    due_date: str
    station_name: str | None
    status: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "TaxRecord":
        tax_id = _require_str(row, "id", "tax")
        station = row.get("charging_stations")
        station_name = _to_str(station.get("station_name")) if isinstance(station, dict) else None
        return cls(
            id=tax_id,
            tax_type=TaxType.parse(row.get("tax_type")),
            amount=_to_int(row.get("tax_amount")),
            due_date=_require_date(row, "due_date", f"tax {tax_id}"),
            station_name=station_name,
            status=_to_str(row.get("status")),
        )


@dataclass(frozen=True)
class ChargingStation:
    id: str
    name: str
    canopy_installed: bool
    created_at: str
    location: str | None = None
    address: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ChargingStation":
        station_id = _require_str(row, "id", "charging station")
        return cls(
            id=station_id,
            name=_to_str(row.get("station_name")) or "-",
            canopy_installed=bool(row.get("canopy_installed")),
            created_at=_require_date(row, "created_at", f"charging station {station_id}"),
            location=_to_str(row.get("location")),
            address=_to_str(row.get("address")),
        )


@dataclass(frozen=True)
class StationSchedule:
    station_id: str
    use_approval_enabled: bool
    use_approval_date: str | None
    safety_inspection_date: str | None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "StationSchedule":
        return cls(
            station_id=_require_str(row, "station_id", "station schedule"),
            use_approval_enabled=bool(row.get("use_approval_enabled")),
            use_approval_date=_to_str(row.get("use_approval_date")),
            safety_inspection_date=_to_str(row.get("safety_inspection_date")),
        )


@dataclass(frozen=True)
class TeamsChannel:
    id: str
    webhook_url: str
    name: str | None = None
    is_active: bool = True

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "TeamsChannel":
        url = _to_str(row.get("webhook_url"))
        if url is None or not url.startswith("http"):
            raise ConfigurationError(f"teams channel {row.get('id')} has no usable webhook_url")
        return cls(
            id=str(row["id"]),
            webhook_url=url,
            name=_to_str(row.get("channel_name")),
            is_active=bool(row.get("is_active", True)),
        )


@dataclass(frozen=True)
class NotificationKey:
    category: NotificationCategory
    schedule_id: str | None
    subject_id: str | None
    missing_field: MissingField | None
    notification_date: str


@dataclass(frozen=True)
class NotificationIntent:
    category: NotificationCategory
    schedule_id: str | None
    subject_id: str | None
    missing_field: MissingField | None
    notification_date: str
    notification_time: str
    title: str
    message: str
    teams_channel_id: str | None

    @property
    def key(self) -> NotificationKey:
        return NotificationKey(
            category=self.category,
            schedule_id=self.schedule_id,
            subject_id=self.subject_id,
            missing_field=self.missing_field,
            notification_date=self.notification_date,
        )

    def to_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {
            "notification_type": self.category.value,
            "schedule_id": self.schedule_id,
            "tax_id": None,
            "station_id": None,
            "station_missing_type": self.missing_field.value if self.missing_field else None,
            "notification_date": self.notification_date,
            "notification_time": self.notification_time,
            "title": self.title,
            "message": self.message,
            "teams_channel_id": self.teams_channel_id,
            "is_sent": False,
        }
        row[subject_column(self.category)] = self.subject_id
        return row


@dataclass(frozen=True)
class NotificationRecord:
    id: str
    category: NotificationCategory
    schedule_id: str | None
    subject_id: str | None
    missing_field: MissingField | None
    notification_date: str
    notification_time: str | None
    title: str | None
    message: str
    teams_channel_id: str | None
    is_sent: bool
    sent_at: str | None
    error_message: str | None
    last_attempt_at: str | None

    @property
    def delivery_state(self) -> DeliveryState:
        if self.is_sent:
            return DeliveryState.SENT
        if self.error_message:
            return DeliveryState.FAILED
        return DeliveryState.PENDING

    @property
    def key(self) -> NotificationKey:
        return NotificationKey(
            category=self.category,
            schedule_id=self.schedule_id,
            subject_id=self.subject_id,
            missing_field=self.missing_field,
            notification_date=self.notification_date,
        )

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "NotificationRecord":
        category = NotificationCategory(str(row.get("notification_type")))
        missing_raw = _to_str(row.get("station_missing_type"))
        return cls(
            id=str(row["id"]),
            category=category,
            schedule_id=_to_str(row.get("schedule_id")),
            subject_id=_to_str(row.get(subject_column(category))),
            missing_field=MissingField(missing_raw) if missing_raw else None,
            notification_date=str(row["notification_date"]),
            notification_time=_to_str(row.get("notification_time")),
            title=_to_str(row.get("title")),
            message=str(row.get("message") or ""),
            teams_channel_id=_to_str(row.get("teams_channel_id")),
            is_sent=bool(row.get("is_sent")),
            sent_at=_to_str(row.get("sent_at")),
            error_message=_to_str(row.get("error_message")),
            last_attempt_at=_to_str(row.get("last_attempt_at")),
        )


@dataclass(frozen=True)
class DeliveryOutcome:
    sent: bool
    attempted: int
    failed: int
    last_attempt_at: str
    sent_at: str | None = None
    error_message: str | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            "is_sent": self.sent,
            "sent_at": self.sent_at,
            "error_message": self.error_message,
            "last_attempt_at": self.last_attempt_at,
        }


def subject_column(category: NotificationCategory) -> str:
    # Manual notifications may reference a tax, like generated tax reminders.
    if category is NotificationCategory.STATION_SCHEDULE:
        return "station_id"
    return "tax_id"


def _to_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def _require_str(row: dict[str, Any], column: str, what: str) -> str:
    value = _to_str(row.get(column))
    if value is None:
        raise ConfigurationError(f"{what} row without {column}: {row.get('id')!r}")
    return value


def _require_date(row: dict[str, Any], column: str, what: str) -> str:
    """The raw date or timestamp text, once it is known to parse as a civil date."""
    value = _to_str(row.get(column))
    if value is None:
        raise ConfigurationError(f"{what} has no {column}")
    try:
        to_civil_date(value)
    except ValueError as exc:
        raise ConfigurationError(f"{what} has invalid {column} {value!r}") from exc
    return value
