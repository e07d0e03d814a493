from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Literal

from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from .auth import authorize_trigger
from .clock import resolve_civil_time
from .config import Settings
from .dispatch_service import NotificationDispatchService, summary_to_dict
from .dispatcher import TeamsDispatcher
from .errors import ConfigurationError, DispatchError, NotificationNotFound
from .models import NotificationCategory
from .storage import Storage, create_storage

logger = logging.getLogger(__name__)

CategoryName = Literal["tax", "station_schedule"]


class DispatchRequest(BaseModel):
    notification_type: CategoryName | None = Field(default=None, description="tax or station_schedule")


class TeamsSendRequest(BaseModel):
    channel_ids: list[str] = Field(default_factory=list, max_length=50)
    text: str | None = Field(default=None, max_length=4000)
    notification_id: str | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.worker_log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    storage = create_storage(settings)
    dispatcher = TeamsDispatcher(settings)
    app.state.settings = settings
    app.state.storage = storage
    app.state.dispatcher = dispatcher
    app.state.dispatch_service = NotificationDispatchService(storage, dispatcher, settings)
    try:
        yield
    finally:
        await dispatcher.aclose()
        await storage.aclose()


app = FastAPI(
    title="TMS Notification Worker",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/storage")
async def storage_info() -> dict[str, str]:
    storage: Storage = app.state.storage
    return {"storage": storage.__class__.__name__}


@app.api_route(
    "/jobs/dispatch-notifications",
    methods=["GET", "POST"],
    dependencies=[Depends(authorize_trigger)],
)
@app.api_route(
    "/api/dispatch-notifications",
    methods=["GET", "POST"],
    dependencies=[Depends(authorize_trigger)],
)
async def dispatch_notifications(
    request: DispatchRequest | None = None,
    type_param: CategoryName | None = Query(default=None, alias="type"),
) -> dict[str, Any]:
    service: NotificationDispatchService = app.state.dispatch_service
    requested = (request.notification_type if request else None) or type_param
    category = NotificationCategory(requested) if requested else None

    try:
        summary = await service.dispatch(category=category)
    except DispatchError as exc:
        logger.exception("Notification dispatch aborted")
        raise HTTPException(status_code=500, detail=f"Dispatch failed: {exc}") from exc
    except Exception as exc:
        logger.exception("Notification dispatch crashed")
        raise HTTPException(status_code=500, detail=f"Dispatch failed: {exc}") from exc

    return {
        "ok": True,
        "dispatched": summary.tax.dispatched,
        "dispatchedStation": summary.station_schedule.dispatched,
        "dispatchedManual": summary.manual.dispatched,
        "now": summary.now,
        "summary": summary_to_dict(summary),
    }


@app.post("/notifications/{notification_id}/resend", dependencies=[Depends(authorize_trigger)])
async def resend_notification(notification_id: str) -> dict[str, Any]:
    service: NotificationDispatchService = app.state.dispatch_service
    try:
        outcome = await service.resend(notification_id)
    except NotificationNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except DispatchError as exc:
        raise HTTPException(status_code=500, detail=f"Resend failed: {exc}") from exc
    except Exception as exc:
        logger.exception("Resend of notification %s crashed", notification_id)
        raise HTTPException(status_code=500, detail=f"Resend failed: {exc}") from exc
    return {"ok": True, "sent": outcome.sent, "outcome": asdict(outcome)}


@app.post("/teams/send", dependencies=[Depends(authorize_trigger)])
async def send_teams_message(request: TeamsSendRequest) -> dict[str, Any]:
    service: NotificationDispatchService = app.state.dispatch_service
    text = request.text if request.text and request.text.strip() else None
    if text is None:
        local = resolve_civil_time().local
        text = f"TMS 테스트 메시지 ({local.strftime('%Y-%m-%d %H:%M')})"
    try:
        outcome = await service.send_text(
            text,
            channel_ids=request.channel_ids,
            notification_id=request.notification_id,
        )
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except DispatchError as exc:
        raise HTTPException(status_code=500, detail=f"Teams send failed: {exc}") from exc
    except Exception as exc:
        logger.exception("Teams send crashed")
        raise HTTPException(status_code=500, detail=f"Teams send failed: {exc}") from exc
    return {
        "ok": True,
        "sent": outcome.attempted - outcome.failed,
        "failed": outcome.failed,
    }
