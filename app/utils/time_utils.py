"""
Time helpers shared by the registries and the wire layer
"""
import time
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def to_utc_isoformat(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def now_ms() -> int:
    """Wall-clock milliseconds since the epoch, used for wire timestamps"""
    return int(time.time() * 1000)
