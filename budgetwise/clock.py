"""Injectable time source. Services take a Clock so tests can pin "now"."""

from datetime import datetime, timezone
from typing import Callable


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def unix_millis(moment: datetime) -> int:
    """Milliseconds since the epoch, the unit used in stored timestamps."""
    return int(moment.timestamp() * 1000)
