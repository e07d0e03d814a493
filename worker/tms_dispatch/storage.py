from __future__ import annotations

import logging
from typing import Any, Callable, Protocol, TypeVar
from urllib.parse import quote

import httpx

from .config import Settings
from .errors import ConfigurationError, DuplicateKeyError, StoreReadError, StoreWriteError
from .models import (
    ChargingStation,
    DeliveryOutcome,
    NotificationCategory,
    NotificationIntent,
    NotificationKey,
    NotificationRecord,
    NotificationSchedule,
    StationSchedule,
    TaxRecord,
    TeamsChannel,
    subject_column,
)
from .redaction import redact_sensitive

logger = logging.getLogger(__name__)

T = TypeVar("T")

NOTIFICATION_FIELDS = (
    "id,notification_type,schedule_id,tax_id,station_id,station_missing_type,"
    "notification_date,notification_time,title,message,teams_channel_id,"
    "is_sent,sent_at,error_message,last_attempt_at"
)

# SQLSTATE unique_violation, as reported in PostgREST error bodies.
UNIQUE_VIOLATION = "23505"


class Storage(Protocol):
    async def fetch_active_schedules(self, category: NotificationCategory) -> list[NotificationSchedule]: ...

    async def fetch_active_channels(self) -> list[TeamsChannel]: ...

    async def fetch_taxes_due_on(self, due_date: str) -> list[TaxRecord]: ...

    async def fetch_stations(self) -> list[ChargingStation]: ...

    async def fetch_station_schedules(self) -> list[StationSchedule]: ...

    async def find_notification(self, key: NotificationKey) -> NotificationRecord | None: ...

    async def fetch_notification(self, notification_id: str) -> NotificationRecord | None: ...

    async def fetch_pending_manual_notifications(self, notification_date: str) -> list[NotificationRecord]: ...

    async def insert_notification(self, intent: NotificationIntent) -> NotificationRecord: ...

    async def update_notification_message(self, notification_id: str, message: str) -> None: ...

    async def update_delivery_status(self, notification_id: str, outcome: DeliveryOutcome) -> None: ...

    async def insert_delivery_log(self, notification_id: str, outcome: DeliveryOutcome) -> None: ...

    async def aclose(self) -> None: ...


class NoopStorage:
    """Storage used when Supabase is not configured: nothing is due, nothing is written."""

    async def fetch_active_schedules(self, category: NotificationCategory) -> list[NotificationSchedule]:
        return []

    async def fetch_active_channels(self) -> list[TeamsChannel]:
        return []

    async def fetch_taxes_due_on(self, due_date: str) -> list[TaxRecord]:
        return []

    async def fetch_stations(self) -> list[ChargingStation]:
        return []

    async def fetch_station_schedules(self) -> list[StationSchedule]:
        return []

    async def find_notification(self, key: NotificationKey) -> NotificationRecord | None:
        return None

    async def fetch_notification(self, notification_id: str) -> NotificationRecord | None:
        return None

    async def fetch_pending_manual_notifications(self, notification_date: str) -> list[NotificationRecord]:
        return []

    async def insert_notification(self, intent: NotificationIntent) -> NotificationRecord:
        raise StoreWriteError("NoopStorage cannot persist notifications; configure Supabase.")

    async def update_notification_message(self, notification_id: str, message: str) -> None:
        return None

    async def update_delivery_status(self, notification_id: str, outcome: DeliveryOutcome) -> None:
        return None

    async def insert_delivery_log(self, notification_id: str, outcome: DeliveryOutcome) -> None:
        return None

    async def aclose(self) -> None:
        return None


class SupabaseStorage:
    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        if not settings.supabase_url or not settings.supabase_service_role_key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required for Supabase storage.")
        base_url = f"{settings.supabase_url.rstrip('/')}/rest/v1"
        timeout = httpx.Timeout(settings.supabase_request_timeout_ms / 1000)
        key = settings.supabase_service_role_key
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "apikey": key,
                "Authorization": f"Bearer {key}",
                "Content-Type": "application/json",
            },
        )

    async def fetch_active_schedules(self, category: NotificationCategory) -> list[NotificationSchedule]:
        query = (
            "/notification_schedules?"
            "select=id,name,notification_type,days_before,is_active,teams_channel_id&"
            f"notification_type=eq.{_encode_eq_value(category.value)}&"
            "is_active=eq.true&"
            "order=days_before.asc"
        )
        return _parse_rows(await self._get_rows(query), NotificationSchedule.from_row, "notification schedule")

    async def fetch_active_channels(self) -> list[TeamsChannel]:
        query = "/teams_channels?select=id,channel_name,webhook_url,is_active&is_active=eq.true"
        return _parse_rows(await self._get_rows(query), TeamsChannel.from_row, "teams channel")

    async def fetch_taxes_due_on(self, due_date: str) -> list[TaxRecord]:
        query = (
            "/taxes?"
            "select=id,tax_type,tax_amount,due_date,status,charging_stations(station_name)&"
            f"due_date=eq.{_encode_eq_value(due_date)}&"
            "order=id.asc"
        )
        return _parse_rows(await self._get_rows(query), TaxRecord.from_row, "tax")

    async def fetch_stations(self) -> list[ChargingStation]:
        query = (
            "/charging_stations?"
            "select=id,station_name,location,address,canopy_installed,created_at&"
            "order=created_at.asc"
        )
        return _parse_rows(await self._get_rows(query), ChargingStation.from_row, "charging station")

    async def fetch_station_schedules(self) -> list[StationSchedule]:
        query = "/station_schedules?select=station_id,use_approval_enabled,use_approval_date,safety_inspection_date"
        return _parse_rows(await self._get_rows(query), StationSchedule.from_row, "station schedule")

    async def find_notification(self, key: NotificationKey) -> NotificationRecord | None:
        subject = subject_column(key.category)
        filters = [
            f"notification_type=eq.{_encode_eq_value(key.category.value)}",
            _eq_or_null("schedule_id", key.schedule_id),
            _eq_or_null(subject, key.subject_id),
            _eq_or_null("station_missing_type", key.missing_field.value if key.missing_field else None),
            f"notification_date=eq.{_encode_eq_value(key.notification_date)}",
        ]
        query = f"/notifications?select={NOTIFICATION_FIELDS}&{'&'.join(filters)}&limit=1"
        rows = await self._get_rows(query)
        return NotificationRecord.from_row(rows[0]) if rows else None

    async def fetch_notification(self, notification_id: str) -> NotificationRecord | None:
        query = f"/notifications?select={NOTIFICATION_FIELDS}&id=eq.{_encode_eq_value(notification_id)}&limit=1"
        rows = await self._get_rows(query)
        return NotificationRecord.from_row(rows[0]) if rows else None

    async def fetch_pending_manual_notifications(self, notification_date: str) -> list[NotificationRecord]:
        query = (
            f"/notifications?select={NOTIFICATION_FIELDS}&"
            "notification_type=eq.manual&"
            "is_sent=eq.false&"
            f"notification_date=eq.{_encode_eq_value(notification_date)}&"
            "order=created_at.asc"
        )
        return [NotificationRecord.from_row(row) for row in await self._get_rows(query)]

    async def insert_notification(self, intent: NotificationIntent) -> NotificationRecord:
        try:
            response = await self._client.post(
                f"/notifications?select={NOTIFICATION_FIELDS}",
                json=intent.to_row(),
                headers={"Prefer": "return=representation"},
            )
        except httpx.HTTPError as exc:
            raise StoreWriteError(f"notifications insert failed: {exc}") from exc
        if response.status_code == 409 and _error_code(response) == UNIQUE_VIOLATION:
            raise DuplicateKeyError(f"notification already exists for {intent.key}")
        _raise_for_write(response, "notifications insert")
        rows = response.json()
        if not isinstance(rows, list) or not rows or not isinstance(rows[0], dict):
            raise StoreWriteError("notifications insert returned no representation")
        return NotificationRecord.from_row(rows[0])

    async def update_notification_message(self, notification_id: str, message: str) -> None:
        await self._patch_notification(notification_id, {"message": message})

    async def update_delivery_status(self, notification_id: str, outcome: DeliveryOutcome) -> None:
        await self._patch_notification(notification_id, outcome.to_row())

    async def insert_delivery_log(self, notification_id: str, outcome: DeliveryOutcome) -> None:
        payload = {
            "notification_id": notification_id,
            "send_status": "success" if outcome.sent else "failed",
            "error_message": outcome.error_message,
            "sent_at": outcome.last_attempt_at,
        }
        try:
            response = await self._client.post(
                "/notification_logs",
                json=payload,
                headers={"Prefer": "return=minimal"},
            )
        except httpx.HTTPError as exc:
            raise StoreWriteError(f"notification_logs insert failed: {exc}") from exc
        _raise_for_write(response, "notification_logs insert")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _patch_notification(self, notification_id: str, payload: dict[str, Any]) -> None:
        try:
            response = await self._client.patch(
                f"/notifications?id=eq.{_encode_eq_value(notification_id)}",
                json=payload,
                headers={"Prefer": "return=minimal"},
            )
        except httpx.HTTPError as exc:
            raise StoreWriteError(f"notifications update failed: {exc}") from exc
        _raise_for_write(response, "notifications update")

    async def _get_rows(self, query: str) -> list[dict[str, Any]]:
        try:
            response = await self._client.get(query)
            response.raise_for_status()
            rows = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            table = query.split("?", 1)[0].lstrip("/")
            raise StoreReadError(f"{table} read failed: {exc}") from exc
        if not isinstance(rows, list):
            return []
        return [row for row in rows if isinstance(row, dict)]


def create_storage(settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> Storage:
    has_url = bool(settings.supabase_url)
    has_key = bool(settings.supabase_service_role_key)
    if has_url and has_key:
        return SupabaseStorage(settings, transport=transport)
    if has_url or has_key:
        raise RuntimeError("Set both SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY, or leave both empty.")
    return NoopStorage()


def _raise_for_write(response: httpx.Response, action: str) -> None:
    if response.is_success:
        return
    raise StoreWriteError(f"{action} failed: HTTP {response.status_code} {response.text[:500]}")


def _eq_or_null(column: str, value: str | None) -> str:
    if value is None:
        return f"{column}=is.null"
    return f"{column}=eq.{_encode_eq_value(value)}"


def _encode_eq_value(value: str) -> str:
    return quote(value, safe="")


def _parse_rows(rows: list[dict[str, Any]], parse: Callable[[dict[str, Any]], T], what: str) -> list[T]:
    parsed: list[T] = []
    for row in rows:
        try:
            parsed.append(parse(row))
        except ConfigurationError as exc:
            logger.warning("Skipping %s %s: %s", what, redact_sensitive(row), exc)
    return parsed


def _error_code(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    return str(body.get("code")) if isinstance(body, dict) and body.get("code") else None
