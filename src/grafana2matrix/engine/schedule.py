"""Summary schedule evaluation.

Each severity class has a list of daily UTC times at which a summary of the
active alerts is posted. The last trigger is persisted as an absolute
timestamp, so restarts never repeat a summary and a new day needs no reset.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, time

from grafana2matrix.engine.models import Severity
from grafana2matrix.storage.store import StateStore

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULE = "6:00,14:30"

# Stored values below this were written as minutes since midnight
MINUTES_PER_DAY = 24 * 60


def parse_schedule(schedule: str | None, day: date) -> list[datetime]:
    """Parse a comma-separated list of ``H:MM`` times into timestamps on ``day``.

    Entries that do not parse or are out of range are logged and dropped.

    Args:
        schedule: Schedule string such as ``"6:00,14:30"``. Empty or None
            falls back to DEFAULT_SCHEDULE.
        day: UTC date to anchor the times to.

    Returns:
        Sorted list of timezone-aware UTC datetimes.
    """
    slots: list[datetime] = []
    for entry in (schedule or DEFAULT_SCHEDULE).split(","):
        entry = entry.strip()
        if not entry:
            continue
        hours, sep, minutes = entry.partition(":")
        try:
            if not sep:
                raise ValueError("missing ':'")
            slot = time(int(hours), int(minutes))
        except ValueError as e:
            logger.warning("Ignoring invalid schedule entry %r: %s", entry, e)
            continue
        slots.append(datetime.combine(day, slot, tzinfo=UTC))
    return sorted(slots)


def _minute_of_day(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


class ScheduleEvaluator:
    """Decides once per tick whether a severity summary is due.

    Example:
        ```python
        evaluator = ScheduleEvaluator(store)
        if evaluator.is_due(Severity.CRIT, "8:00,16:00", datetime.now(UTC)):
            ...  # send the CRIT summary
        ```
    """

    def __init__(self, store: StateStore) -> None:
        self._store = store

    def is_due(self, severity: Severity, schedule: str | None, now: datetime) -> bool:
        """Check the schedule and record the trigger if one is due.

        The first scheduled time that has passed and is later than the last
        trigger wins. The trigger is recorded as ``now``, so when the process
        was down across several scheduled times only one summary is sent.

        Args:
            severity: Severity class the schedule belongs to.
            schedule: Comma-separated ``H:MM`` UTC times.
            now: Current time (UTC).

        Returns:
            True if a summary is due now.
        """
        now = now.astimezone(UTC)
        slots = parse_schedule(schedule, now.date())
        if not slots:
            return False

        last_fired = self._last_fired(severity, slots, now)
        for slot in slots:
            if slot <= now and (last_fired is None or slot > last_fired):
                self._store.set_last_summary_time(severity.value, int(now.timestamp()))
                logger.info("%s summary due (scheduled %s)", severity.value, slot.strftime("%H:%M"))
                return True
        return False

    def _last_fired(
        self, severity: Severity, slots: list[datetime], now: datetime
    ) -> datetime | None:
        stored = self._store.get_last_summary_time(severity.value)
        if stored is None or stored < 0:
            return None
        if stored >= MINUTES_PER_DAY:
            return datetime.fromtimestamp(stored, tz=UTC)

        # Minute-of-day record from an older release
        last_slot_minute = _minute_of_day(slots[-1])
        if stored >= last_slot_minute and stored > _minute_of_day(now):
            logger.debug("Discarding stale %s schedule record %d", severity.value, stored)
            return None
        return datetime.combine(now.date(), time(stored // 60, stored % 60), tzinfo=UTC)
