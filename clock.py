import datetime
import threading


def utcnow() -> datetime.datetime:
    # naive UTC, the way SQLite hands datetimes back
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class SystemClock:
    def now(self) -> datetime.datetime:
        return utcnow()


class ManualClock:
    """Clock that only moves when told to. Used to drive the lifecycle in tests."""

    def __init__(self, start: datetime.datetime = None):
        self._now = start or utcnow()
        self._lock = threading.Lock()

    def now(self) -> datetime.datetime:
        with self._lock:
            return self._now

    def set(self, value: datetime.datetime):
        with self._lock:
            self._now = value

    def advance(self, **kwargs):
        with self._lock:
            self._now += datetime.timedelta(**kwargs)
