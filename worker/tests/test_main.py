import json
from collections.abc import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from fakes import HOOK_A, make_settings, tax, tax_schedule
from tms_dispatch.dispatch_service import NotificationDispatchService
from tms_dispatch.main import app
from tms_dispatch.models import NotificationCategory
from tms_dispatch.storage import SupabaseStorage


def _install(storage, dispatcher, settings):
    app.state.settings = settings
    app.state.storage = storage
    app.state.dispatcher = dispatcher
    app.state.dispatch_service = NotificationDispatchService(storage, dispatcher, settings)


@pytest_asyncio.fixture
async def client(storage, dispatcher) -> AsyncGenerator[AsyncClient, None]:
    _install(storage, dispatcher, make_settings(cron_secret="s3cret"))
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_storage_info(client):
    response = await client.get("/storage")
    assert response.json() == {"storage": "FakeStorage"}


@pytest.mark.asyncio
async def test_dispatch_rejects_missing_or_wrong_secret(client):
    assert (await client.post("/jobs/dispatch-notifications")).status_code == 401
    response = await client.post("/jobs/dispatch-notifications", headers={"x-cron-key": "nope"})
    assert response.status_code == 401
    assert response.json() == {"detail": "Unauthorized"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("path", "headers"),
    [
        ("/jobs/dispatch-notifications", {"x-cron-key": "s3cret"}),
        ("/jobs/dispatch-notifications?key=s3cret", {}),
        ("/api/dispatch-notifications", {"x-vercel-cron": "1"}),
    ],
)
async def test_dispatch_accepts_secret_query_key_or_trusted_scheduler(client, path, headers):
    response = await client.get(path, headers=headers)
    assert response.status_code == 200
    assert response.json()["ok"] is True


@pytest.mark.asyncio
async def test_dispatch_without_secret_configured_is_open(storage, dispatcher):
    _install(storage, dispatcher, make_settings(cron_secret=None))
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        response = await http.post("/jobs/dispatch-notifications")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_dispatch_response_shape(client, storage):
    storage.schedules = [tax_schedule(days_before=0)]
    storage.taxes = [tax("tax-1", due_date="2099-01-01")]

    response = await client.post("/jobs/dispatch-notifications", headers={"x-cron-key": "s3cret"})

    body = response.json()
    assert response.status_code == 200
    assert set(body) >= {"ok", "dispatched", "dispatchedStation", "dispatchedManual", "now", "summary"}
    assert body["dispatched"] == 0
    assert body["summary"]["categories"] == ["tax"]


@pytest.mark.asyncio
async def test_category_from_body_or_query(client, storage):
    headers = {"x-cron-key": "s3cret"}

    by_body = await client.post(
        "/jobs/dispatch-notifications", json={"notification_type": "station_schedule"}, headers=headers
    )
    by_query = await client.get("/jobs/dispatch-notifications?type=station_schedule", headers=headers)

    assert by_body.json()["summary"]["categories"] == ["station_schedule"]
    assert by_query.json()["summary"]["categories"] == ["station_schedule"]


@pytest.mark.asyncio
async def test_unknown_category_is_rejected(client):
    response = await client.get("/jobs/dispatch-notifications?type=sms", headers={"x-cron-key": "s3cret"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_read_failure_returns_server_error(client, storage):
    storage.failing_reads.add("notification_schedules")

    response = await client.post("/jobs/dispatch-notifications", headers={"x-cron-key": "s3cret"})

    assert response.status_code == 500
    assert "Dispatch failed" in response.json()["detail"]


@pytest.mark.asyncio
async def test_resend_endpoint(client, storage, webhooks):
    record = storage.add_manual("재발송", notification_date="2025-03-01", teams_channel_id="ch-a")

    response = await client.post(f"/notifications/{record.id}/resend", headers={"x-cron-key": "s3cret"})

    assert response.status_code == 200
    assert response.json()["sent"] is True
    assert webhooks.urls == [HOOK_A]
    missing = await client.post("/notifications/unknown/resend", headers={"x-cron-key": "s3cret"})
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_teams_send_endpoint(client, storage, webhooks):
    response = await client.post(
        "/teams/send", json={"channel_ids": ["ch-a"], "text": "점검 테스트"}, headers={"x-cron-key": "s3cret"}
    )

    assert response.status_code == 200
    assert response.json() == {"ok": True, "sent": 1, "failed": 0}
    assert webhooks.texts == ["점검 테스트"]
    assert storage.by_category(NotificationCategory.TAX) == []


@pytest.mark.asyncio
async def test_teams_send_defaults_to_test_message_and_rejects_no_targets(client, storage, webhooks):
    ok = await client.post("/teams/send", json={}, headers={"x-cron-key": "s3cret"})
    assert ok.json()["sent"] == 2
    assert webhooks.texts[0].startswith("TMS 테스트 메시지")

    storage.channels = []
    empty = await client.post("/teams/send", json={}, headers={"x-cron-key": "s3cret"})
    assert empty.status_code == 400


def _postgrest(tables):
    def handler(request: httpx.Request) -> httpx.Response:
        table = request.url.path.rsplit("/", 1)[-1]
        if request.method == "GET":
            return httpx.Response(200, json=tables.get(table, []))
        if request.method == "POST" and table == "notifications":
            return httpx.Response(201, json=[{"id": 1, **json.loads(request.content)}])
        return httpx.Response(204)

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_station_row_without_created_at_is_skipped_not_fatal(dispatcher, webhooks):
    settings = make_settings(supabase_url="https://db.example.test", supabase_service_role_key="service-key")
    tables = {
        "notification_schedules": [
            {"id": "s-1", "notification_type": "station_schedule", "days_before": 0, "is_active": True}
        ],
        "teams_channels": [{"id": "ch-a", "webhook_url": HOOK_A, "is_active": True}],
        "charging_stations": [
            {"id": "st-1", "station_name": "판교", "canopy_installed": False, "created_at": "2025-01-01T00:00:00+00:00"},
            {"id": "st-2", "station_name": "분당", "canopy_installed": False, "created_at": None},
        ],
    }
    storage = SupabaseStorage(settings, transport=_postgrest(tables))
    _install(storage, dispatcher, settings)
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
            response = await http.post(
                "/jobs/dispatch-notifications", json={"notification_type": "station_schedule"}
            )
    finally:
        await storage.aclose()

    assert response.status_code == 200
    assert response.json()["dispatchedStation"] == 1
    assert webhooks.urls == [HOOK_A]
    assert webhooks.texts[0].startswith("판교 안전 점검일 미입력 상태입니다.")


@pytest.mark.asyncio
async def test_unexpected_failure_is_reported_as_json(client, monkeypatch):
    async def broken(**kwargs):
        raise ValueError("unparseable row")

    monkeypatch.setattr(app.state.dispatch_service, "dispatch", broken)

    response = await client.post("/jobs/dispatch-notifications", headers={"x-cron-key": "s3cret"})

    assert response.status_code == 500
    assert response.headers["content-type"].startswith("application/json")
    assert response.json() == {"detail": "Dispatch failed: unparseable row"}
