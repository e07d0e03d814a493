from __future__ import annotations

import asyncio
import logging

import httpx

from .clock import CivilTime
from .config import Settings
from .errors import ChannelNotFound, DeliveryError
from .models import DeliveryOutcome, TeamsChannel
from .redaction import redact_text, redact_url

logger = logging.getLogger(__name__)

NO_CHANNELS_MESSAGE = "no channels configured"
FAILURE_PREFIX = "Teams 발송 실패"


class TeamsDispatcher:
    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._deadline_ms = settings.webhook_timeout_ms
        timeout = httpx.Timeout(settings.webhook_timeout_ms / 1000)
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._http.aclose()

    @staticmethod
    def resolve_targets(channel_id: str | None, channels: list[TeamsChannel]) -> list[str]:
        active = [channel for channel in channels if channel.is_active]
        if channel_id:
            for channel in active:
                if channel.id == channel_id:
                    return [channel.webhook_url]
            raise ChannelNotFound(channel_id)
        # dedupe while keeping channel order
        return list(dict.fromkeys(channel.webhook_url for channel in active))

    async def deliver(
        self,
        message: str,
        channel_id: str | None,
        channels: list[TeamsChannel],
        civil: CivilTime,
    ) -> DeliveryOutcome:
        try:
            targets = self.resolve_targets(channel_id, channels)
        except ChannelNotFound as exc:
            logger.warning("Explicit channel unavailable, nothing sent: %s", exc)
            return _failed(civil, attempted=0, failed=0, error_message=str(exc))
        return await self.send_to(targets, message, civil)

    async def send_to(self, targets: list[str], message: str, civil: CivilTime) -> DeliveryOutcome:
        if not targets:
            logger.warning("No active Teams channels; notification left unsent")
            return _failed(civil, attempted=0, failed=0, error_message=NO_CHANNELS_MESSAGE)

        results = await asyncio.gather(
            *(self._post_within_deadline(url, message) for url in targets),
            return_exceptions=True,
        )
        errors: list[str] = []
        for url, result in zip(targets, results):
            if isinstance(result, DeliveryError):
                errors.append(str(result))
            elif isinstance(result, BaseException):
                errors.append(f"{redact_url(url)}: {type(result).__name__}")

        if errors:
            logger.error("Failed to send %d/%d Teams messages: %s", len(errors), len(targets), "; ".join(errors))
            return _failed(
                civil,
                attempted=len(targets),
                failed=len(errors),
                error_message=f"{FAILURE_PREFIX} ({len(errors)}/{len(targets)}): {'; '.join(errors)}"[:1000],
            )
        return DeliveryOutcome(
            sent=True,
            attempted=len(targets),
            failed=0,
            last_attempt_at=civil.iso,
            sent_at=civil.iso,
        )

    async def _post_within_deadline(self, url: str, message: str) -> None:
        # httpx timeouts apply per phase; the deadline caps the whole request.
        try:
            await asyncio.wait_for(self._post(url, message), self._deadline_ms / 1000)
        except TimeoutError as exc:
            raise DeliveryError(redact_url(url), f"timed out after {self._deadline_ms}ms") from exc

    async def _post(self, url: str, message: str) -> None:
        try:
            response = await self._http.post(
                url,
                json={"text": message},
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise DeliveryError(redact_url(url), redact_text(f"{type(exc).__name__}: {exc}")) from exc
        if not response.is_success:
            raise DeliveryError(redact_url(url), f"HTTP {response.status_code}")


def _failed(civil: CivilTime, *, attempted: int, failed: int, error_message: str) -> DeliveryOutcome:
    return DeliveryOutcome(
        sent=False,
        attempted=attempted,
        failed=failed,
        last_attempt_at=civil.iso,
        sent_at=None,
        error_message=error_message,
    )
