"""
Test configuration and fixtures.

- In-memory storage enforcing the notification idempotency key
- Teams webhooks served by an httpx MockTransport recorder
- Dispatch service wired from the two
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from fakes import HOOK_A, HOOK_B, FakeStorage, WebhookRecorder, channel, make_settings
from tms_dispatch.config import Settings
from tms_dispatch.dispatch_service import NotificationDispatchService
from tms_dispatch.dispatcher import TeamsDispatcher


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def storage() -> FakeStorage:
    store = FakeStorage()
    store.channels = [channel("ch-a", HOOK_A), channel("ch-b", HOOK_B)]
    return store


@pytest.fixture
def webhooks() -> WebhookRecorder:
    return WebhookRecorder()


@pytest_asyncio.fixture
async def dispatcher(settings: Settings, webhooks: WebhookRecorder) -> AsyncGenerator[TeamsDispatcher, None]:
    teams = TeamsDispatcher(settings, transport=webhooks.transport)
    try:
        yield teams
    finally:
        await teams.aclose()


@pytest.fixture
def service(storage: FakeStorage, dispatcher: TeamsDispatcher, settings: Settings) -> NotificationDispatchService:
    return NotificationDispatchService(storage, dispatcher, settings)
