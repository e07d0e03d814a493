from __future__ import annotations

import hmac
import logging

from fastapi import HTTPException, Request

from .config import Settings

logger = logging.getLogger(__name__)

CRON_KEY_HEADER = "x-cron-key"
CRON_KEY_QUERY = "key"


def is_trusted_scheduler(request: Request, settings: Settings) -> bool:
    if settings.trusted_scheduler_header is None:
        return False
    name, expected = settings.trusted_scheduler_header
    return request.headers.get(name) == expected


def check_trigger_secret(request: Request, settings: Settings) -> bool:
    """True when no secret is configured, the caller is the trusted scheduler, or the key matches."""
    if not settings.cron_secret:
        return True
    if is_trusted_scheduler(request, settings):
        return True
    provided = request.headers.get(CRON_KEY_HEADER) or request.query_params.get(CRON_KEY_QUERY)
    if not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), settings.cron_secret.encode("utf-8"))


async def authorize_trigger(request: Request) -> None:
    settings: Settings = request.app.state.settings
    if not check_trigger_secret(request, settings):
        logger.warning("Rejected unauthorized call to %s", request.url.path)
        raise HTTPException(status_code=401, detail="Unauthorized")
