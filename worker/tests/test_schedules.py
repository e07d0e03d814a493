import pytest

from fakes import station_schedule, tax_schedule
from tms_dispatch.errors import StoreReadError
from tms_dispatch.models import NotificationCategory
from tms_dispatch.schedules import DEFAULT_CATEGORIES, ScheduleLoader


def test_default_policy_is_tax_only():
    assert DEFAULT_CATEGORIES == (NotificationCategory.TAX,)
    assert ScheduleLoader.categories_for(None) == (NotificationCategory.TAX,)


def test_manual_category_has_no_schedules():
    with pytest.raises(ValueError):
        ScheduleLoader.categories_for(NotificationCategory.MANUAL)


@pytest.mark.asyncio
async def test_unattended_load_skips_station_schedules(storage):
    storage.schedules = [tax_schedule(), station_schedule()]
    loaded = await ScheduleLoader(storage).load(None)
    assert [item.id for item in loaded.tax] == ["sched-tax"]
    assert loaded.station == []


@pytest.mark.asyncio
async def test_explicit_station_request_loads_only_station_schedules(storage):
    storage.schedules = [tax_schedule(), station_schedule()]
    loaded = await ScheduleLoader(storage).load(NotificationCategory.STATION_SCHEDULE)
    assert loaded.tax == []
    assert [item.id for item in loaded.station] == ["sched-station"]


@pytest.mark.asyncio
async def test_inactive_schedules_are_never_loaded(storage):
    storage.schedules = [tax_schedule(is_active=False)]
    loaded = await ScheduleLoader(storage).load(NotificationCategory.TAX)
    assert loaded.tax == []
    assert loaded.station == []


@pytest.mark.asyncio
async def test_read_failure_propagates(storage):
    storage.failing_reads.add("notification_schedules")
    with pytest.raises(StoreReadError):
        await ScheduleLoader(storage).load(None)
