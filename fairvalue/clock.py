"""Injectable wall clock."""

from collections.abc import Callable
from datetime import datetime
from datetime import timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
  """Return the current UTC time without microseconds."""
  return datetime.now(timezone.utc).replace(microsecond=0)


def fixed_clock(moment: datetime) -> Clock:
  """Clock that always returns moment (for tests and replays)."""
  return lambda: moment
