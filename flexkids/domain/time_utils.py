from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone


def now_local() -> datetime:
    return datetime.now().astimezone()


def epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def parse_timestamp(value: object) -> datetime | None:
    """Convierte lo que venga en el registro a un datetime con zona.

    Acepta datetime, fecha ISO (con o sin "Z") o milisegundos epoch. Los
    valores sin zona se interpretan en la hora local del equipo.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.astimezone()
    if isinstance(value, date):
        return datetime.combine(value, time.min).astimezone()
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.astimezone()
    return None


def to_iso(value: object) -> str | None:
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return parsed.isoformat()


def day_bounds(now: datetime) -> tuple[datetime, datetime]:
    reference = now if now.tzinfo else now.astimezone()
    start = reference.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def same_local_day(value: object, now: datetime) -> bool:
    parsed = parse_timestamp(value)
    if parsed is None:
        return False
    start, end = day_bounds(now)
    return start <= parsed.astimezone(start.tzinfo) < end
