"""
Visit and Greeting Counters

Per-user counters kept in the local key-value store. They only decide
which greeting the dashboard shows, so every storage failure degrades
to a default count instead of an error.

Keys:
- daily_visit_count_{user}_{date}          visits today
- last_visit_date_{user}                   date of the last counted visit
- period_visit_count_{user}_{date}-{period} visits this period of the day
- last_visit_period_{user}                 last counted {date}-{period}

Dates are local, formatted Y-M-D without zero padding.
"""

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable, Optional

import structlog

from budgetwise.services.storage import KeyValueStoreInterface, StorageError


logger = structlog.get_logger("budgetwise.services.visits")

RETENTION_DAYS = 7
RETURN_VISIT_THRESHOLD = 5


class DayPeriod(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"


class GreetingType(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    RETURN_VISIT = "return_visit"


def period_of_day(hour: int) -> DayPeriod:
    """Morning is 05-11, afternoon 12-17, evening everything else."""
    if 5 <= hour < 12:
        return DayPeriod.MORNING
    if 12 <= hour < 18:
        return DayPeriod.AFTERNOON
    return DayPeriod.EVENING


def greeting_type(visit_count: int, hour: int) -> GreetingType:
    """Frequent visitors get the return-visit greeting, everyone else a time greeting."""
    if visit_count > RETURN_VISIT_THRESHOLD:
        return GreetingType.RETURN_VISIT
    return GreetingType(period_of_day(hour).value)


def date_key(moment: date) -> str:
    return f"{moment.year}-{moment.month}-{moment.day}"


def parse_date_key(value: str) -> Optional[date]:
    try:
        year, month, day = (int(part) for part in value.split("-")[:3])
        return date(year, month, day)
    except ValueError:
        return None


def consistent_hash(value: str) -> int:
    """32-bit shift-and-add string hash, stable across runs and devices."""
    result = 0
    for char in value:
        result = ((result << 5) - result + ord(char)) & 0xFFFFFFFF
    # Interpret as signed 32-bit, then take the magnitude
    if result >= 0x80000000:
        result -= 0x100000000
    return abs(result)


def consistent_message_index(user_id: Optional[str], day_key: str, length: int) -> int:
    """Pick the same message for a user all day long."""
    if not user_id or length <= 0:
        return 0
    return consistent_hash(f"{user_id}-{day_key}") % length


class VisitCounterService:
    """Daily and per-period visit counters for one device."""

    def __init__(
        self,
        store: KeyValueStoreInterface,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._store = store
        self._clock = clock

    @staticmethod
    def _daily_key(user_id: str, day_key: str) -> str:
        return f"daily_visit_count_{user_id}_{day_key}"

    @staticmethod
    def _period_key(user_id: str, period_key: str) -> str:
        return f"period_visit_count_{user_id}_{period_key}"

    def _current_keys(self) -> tuple[str, str]:
        now = self._clock()
        day_key = date_key(now.date())
        return day_key, f"{day_key}-{period_of_day(now.hour).value}"

    async def _read_count(self, key: str) -> int:
        try:
            value = await self._store.get_item(key)
            return int(value) if value else 0
        except (StorageError, ValueError) as e:
            logger.debug("visit_count_read_failed", key=key, error=str(e))
            return 0

    async def _increment(self, count_key: str, marker_key: str, marker: str, old_key) -> int:
        try:
            previous = await self._store.get_item(marker_key)
            if previous and previous != marker:
                await self._store.remove_item(old_key(previous))

            count = await self._read_count(count_key) + 1
            await self._store.set_item(count_key, str(count))
            await self._store.set_item(marker_key, marker)
            return count
        except StorageError as e:
            logger.debug("visit_count_increment_failed", key=count_key, error=str(e))
            return 1

    # -------------------------------------------------------------------------
    # Daily counter
    # -------------------------------------------------------------------------

    async def get_daily_visit_count(self, user_id: str) -> int:
        day_key, _ = self._current_keys()
        return await self._read_count(self._daily_key(user_id, day_key))

    async def increment_daily_visit_count(self, user_id: str) -> int:
        """Count a visit today. A new day drops the previous day's counter."""
        day_key, _ = self._current_keys()
        return await self._increment(
            self._daily_key(user_id, day_key),
            f"last_visit_date_{user_id}",
            day_key,
            lambda previous: self._daily_key(user_id, previous),
        )

    async def reset_daily_visit_count(self, user_id: str) -> None:
        day_key, _ = self._current_keys()
        try:
            await self._store.remove_item(self._daily_key(user_id, day_key))
        except StorageError as e:
            logger.debug("visit_count_reset_failed", user_id=user_id, error=str(e))

    # -------------------------------------------------------------------------
    # Per-period counter
    # -------------------------------------------------------------------------

    async def get_period_visit_count(self, user_id: str) -> int:
        _, period_key = self._current_keys()
        return await self._read_count(self._period_key(user_id, period_key))

    async def increment_period_visit_count(self, user_id: str) -> int:
        """Count a visit this period. A new period drops the previous period's counter."""
        _, period_key = self._current_keys()
        return await self._increment(
            self._period_key(user_id, period_key),
            f"last_visit_period_{user_id}",
            period_key,
            lambda previous: self._period_key(user_id, previous),
        )

    async def reset_period_visit_count(self, user_id: str) -> None:
        _, period_key = self._current_keys()
        try:
            await self._store.remove_item(self._period_key(user_id, period_key))
        except StorageError as e:
            logger.debug("visit_count_reset_failed", user_id=user_id, error=str(e))

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    async def cleanup_old_visit_data(self, user_id: str) -> int:
        """Remove daily and period counters older than seven days. Returns keys removed."""
        cutoff = self._clock().date() - timedelta(days=RETENTION_DAYS)
        prefixes = (
            f"daily_visit_count_{user_id}_",
            f"period_visit_count_{user_id}_",
        )
        try:
            keys = await self._store.get_all_keys()
            stale = []
            for key in keys:
                for prefix in prefixes:
                    if key.startswith(prefix):
                        key_date = parse_date_key(key[len(prefix):])
                        if key_date is not None and key_date < cutoff:
                            stale.append(key)
                        break
            if stale:
                await self._store.multi_remove(stale)
            return len(stale)
        except StorageError as e:
            logger.debug("visit_cleanup_failed", user_id=user_id, error=str(e))
            return 0
