from datetime import datetime, timedelta, timezone

_EPOCH = datetime(1970, 1, 1)
_MS = timedelta(milliseconds=1)


def get_utc_now() -> datetime:
    # Naive UTC at millisecond precision, so an epoch-ms sync cursor compares exactly
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def to_epoch_ms(value: datetime | None) -> int:
    if value is None:
        return 0
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return (value - _EPOCH) // _MS


def from_epoch_ms(value: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=value)
