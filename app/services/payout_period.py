from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone


@dataclass(frozen=True)
class BatchPeriod:
    batch_id: str
    week_key: str
    period_start: datetime
    period_end: datetime


def _to_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _week_number(sunday: date) -> int:
    # Weeks are counted from the (Sunday-aligned) week containing Jan 1.
    jan1 = date(sunday.year, 1, 1)
    jan1_offset = (jan1.weekday() + 1) % 7
    return ((sunday - jan1).days + jan1_offset) // 7 + 1


def compute_batch_period(now: datetime) -> BatchPeriod:
    """Return the payout week containing ``now``.

    Weeks run Sunday 00:00:00 UTC through Saturday 23:59:59.999999 UTC and are
    labelled by the year of their Sunday, so every Sunday maps to exactly one
    batch id.
    """
    now_utc = _to_utc(now)
    days_since_sunday = (now_utc.weekday() + 1) % 7
    sunday = now_utc.date() - timedelta(days=days_since_sunday)

    period_start = datetime.combine(sunday, time.min, tzinfo=timezone.utc)
    period_end = period_start + timedelta(days=7) - timedelta(microseconds=1)
    week_key = f"{sunday.year}-W{_week_number(sunday):02d}"

    return BatchPeriod(
        batch_id=f"BATCH-{week_key}",
        week_key=week_key,
        period_start=period_start,
        period_end=period_end,
    )
