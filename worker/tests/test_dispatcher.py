import asyncio

import httpx
import pytest

from fakes import HOOK_A, HOOK_B, WebhookRecorder, channel, kst, make_settings
from tms_dispatch.clock import resolve_civil_time
from tms_dispatch.dispatcher import NO_CHANNELS_MESSAGE, TeamsDispatcher
from tms_dispatch.errors import ChannelNotFound

CIVIL = resolve_civil_time(kst(2025, 3, 7, 10, 0))
CHANNELS = [channel("ch-a", HOOK_A), channel("ch-b", HOOK_B)]


def test_explicit_channel_resolves_to_single_target():
    assert TeamsDispatcher.resolve_targets("ch-b", CHANNELS) == [HOOK_B]


def test_no_channel_fans_out_to_all_active_channels():
    channels = CHANNELS + [channel("ch-off", "https://hooks.example.test/off", is_active=False)]
    assert TeamsDispatcher.resolve_targets(None, channels) == [HOOK_A, HOOK_B]


@pytest.mark.parametrize("channel_id", ["missing", "ch-off"])
def test_unknown_or_inactive_explicit_channel_raises(channel_id):
    channels = CHANNELS + [channel("ch-off", "https://hooks.example.test/off", is_active=False)]
    with pytest.raises(ChannelNotFound):
        TeamsDispatcher.resolve_targets(channel_id, channels)


@pytest.mark.asyncio
async def test_all_targets_succeed(dispatcher, webhooks):
    outcome = await dispatcher.deliver("hello", None, CHANNELS, CIVIL)

    assert outcome.sent is True
    assert outcome.sent_at == CIVIL.iso
    assert outcome.last_attempt_at == CIVIL.iso
    assert outcome.error_message is None
    assert sorted(webhooks.urls) == sorted([HOOK_A, HOOK_B])
    assert webhooks.texts == ["hello", "hello"]
    assert all(request.headers["content-type"] == "application/json" for request in webhooks.requests)


@pytest.mark.asyncio
async def test_partial_failure_marks_whole_delivery_failed():
    webhooks = WebhookRecorder(statuses={HOOK_A: 500})
    teams = TeamsDispatcher(make_settings(), transport=webhooks.transport)
    try:
        outcome = await teams.deliver("hello", None, CHANNELS, CIVIL)
    finally:
        await teams.aclose()

    assert outcome.sent is False
    assert outcome.sent_at is None
    assert outcome.last_attempt_at == CIVIL.iso
    assert (outcome.attempted, outcome.failed) == (2, 1)
    assert "(1/2)" in outcome.error_message
    assert "HTTP 500" in outcome.error_message
    assert sorted(webhooks.urls) == sorted([HOOK_A, HOOK_B])


@pytest.mark.asyncio
async def test_network_error_is_captured_and_url_path_redacted():
    webhooks = WebhookRecorder(unreachable={HOOK_B})
    teams = TeamsDispatcher(make_settings(), transport=webhooks.transport)
    try:
        outcome = await teams.deliver("hello", "ch-b", CHANNELS, CIVIL)
    finally:
        await teams.aclose()

    assert outcome.sent is False
    assert "ConnectError" in outcome.error_message
    assert "bbb" not in outcome.error_message
    assert webhooks.urls == [HOOK_B]


@pytest.mark.asyncio
async def test_zero_targets_is_a_distinct_failure(dispatcher, webhooks):
    outcome = await dispatcher.deliver("hello", None, [], CIVIL)

    assert outcome.sent is False
    assert outcome.error_message == NO_CHANNELS_MESSAGE
    assert outcome.attempted == 0
    assert webhooks.requests == []


@pytest.mark.asyncio
async def test_missing_explicit_channel_sends_nothing(dispatcher, webhooks):
    outcome = await dispatcher.deliver("hello", "gone", CHANNELS, CIVIL)

    assert outcome.sent is False
    assert "gone" in outcome.error_message
    assert webhooks.requests == []


@pytest.mark.asyncio
async def test_slow_webhook_is_cut_off_at_the_deadline():
    async def slow(request: httpx.Request) -> httpx.Response:
        if str(request.url) == HOOK_A:
            await asyncio.sleep(5)
        return httpx.Response(200)

    teams = TeamsDispatcher(make_settings(webhook_timeout_ms=50), transport=httpx.MockTransport(slow))
    try:
        outcome = await teams.deliver("hello", None, CHANNELS, CIVIL)
    finally:
        await teams.aclose()

    assert outcome.sent is False
    assert (outcome.attempted, outcome.failed) == (2, 1)
    assert "timed out after 50ms" in outcome.error_message
    assert "aaa" not in outcome.error_message
