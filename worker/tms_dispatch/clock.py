from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta, timezone

KST = timezone(timedelta(hours=9))


@dataclass(frozen=True)
class CivilTime:
    """The single time reference for one dispatch invocation, fixed at UTC+9.

    Every due-date, age and window comparison in a run goes through one instance,
    so a run that straddles midnight or a window edge still sees one "today".
    """

    instant: datetime
    local: datetime

    @property
    def today(self) -> str:
        return self.local.date().isoformat()

    @property
    def now_hm(self) -> str:
        return self.local.strftime("%H:%M")

    @property
    def iso(self) -> str:
        return self.instant.isoformat()

    def plus_days(self, days: int) -> str:
        return (self.local.date() + timedelta(days=days)).isoformat()

    def days_since(self, value: str | datetime | date) -> int:
        """Whole civil days between ``value`` (read in UTC+9) and today."""
        return (self.local.date() - to_civil_date(value)).days

    def minutes_after(self, hh_mm: str) -> int:
        """Minutes elapsed since ``hh_mm`` today; negative when that time is still ahead."""
        hours, _, minutes = hh_mm.strip().partition(":")
        target = int(hours) * 60 + int(minutes or 0)
        current = self.local.hour * 60 + self.local.minute
        return current - target


def resolve_civil_time(instant: datetime | None = None) -> CivilTime:
    if instant is None:
        instant = datetime.now(UTC)
    elif instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    return CivilTime(instant=instant.astimezone(UTC), local=instant.astimezone(KST))


def to_civil_date(value: str | datetime | date) -> date:
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        return value
    else:
        text = value.strip()
        if len(text) == 10:
            return date.fromisoformat(text)
        # PostgREST renders timestamptz as "...+00:00"; older rows may carry "Z".
        moment = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(KST).date()
