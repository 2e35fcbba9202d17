# src/domain/scheduling.py
"""
Time math for showtime scheduling.

Instants are stored and compared in UTC. The target timezone is only used
where a wall-clock value has to be interpreted (HH:mm slots, calendar days,
naive input) or rendered for a message.
"""

import re
from datetime import date, datetime, time, timedelta, timezone

from src.domain.exceptions import ValidationError


TARGET_TIMEZONE = timezone(timedelta(hours=5, minutes=30), name="IST")
BUFFER_TIME_MINUTES = 15
BUFFER_TIME = timedelta(minutes=BUFFER_TIME_MINUTES)

_TIME_SLOT_RE = re.compile(r"^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """
    Normalises a datetime to aware UTC.
    Naive values are storage values and are already UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_local(value: datetime) -> datetime:
    return to_utc(value).astimezone(TARGET_TIMEZONE)


def format_local(value: datetime, fmt: str = "%b %d, %Y %I:%M %p") -> str:
    return to_local(value).strftime(fmt)


def occupied_interval(
    start: datetime,
    duration_minutes: int,
) -> tuple[datetime, datetime]:
    """
    Returns [start, start + duration + buffer) in UTC.
    """
    if duration_minutes <= 0:
        raise ValidationError("Movie duration must be positive to schedule a showtime.")
    start_utc = to_utc(start)
    return start_utc, start_utc + timedelta(minutes=duration_minutes) + BUFFER_TIME


def intervals_overlap(
    start_a: datetime,
    end_a: datetime,
    start_b: datetime,
    end_b: datetime,
) -> bool:
    # Half-open intervals: touching boundaries do not overlap.
    return to_utc(start_a) < to_utc(end_b) and to_utc(end_a) > to_utc(start_b)


def parse_local_datetime(value: str) -> datetime:
    """
    Parses an ISO timestamp. Values without an offset are
    interpreted in the target timezone. Returns UTC.
    """
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            "Invalid start_time format. Use ISO format (e.g. YYYY-MM-DDTHH:MM)."
        ) from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=TARGET_TIMEZONE)
    return to_utc(parsed)


def parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            f"Invalid date '{value}'. Use YYYY-MM-DD."
        ) from exc


def parse_time_slots(value: str | list[str]) -> list[time]:
    """
    Parses HH:mm slots given as a comma separated string or a list.
    Any malformed slot rejects the whole request.
    """
    raw = value.split(",") if isinstance(value, str) else list(value)
    slots = [item.strip() for item in raw if item and item.strip()]
    if not slots:
        raise ValidationError(
            "No show times provided. Use HH:mm format (e.g. 09:00,14:30,21:00)."
        )

    parsed: list[time] = []
    for slot in slots:
        match = _TIME_SLOT_RE.match(slot)
        if not match:
            raise ValidationError(f"Invalid show time '{slot}'. Use HH:mm format.")
        parsed.append(time(hour=int(match.group(1)), minute=int(match.group(2))))

    return sorted(parsed)


def local_today(now: datetime | None = None) -> date:
    return to_local(now or utc_now()).date()


def generate_candidate_starts(
    start_date: date,
    end_date: date,
    slots: list[time],
) -> list[datetime]:
    """
    One UTC start per (day x slot), in chronological order,
    each slot read as wall-clock time in the target timezone.
    """
    if start_date > end_date:
        raise ValidationError("Start date must be before or same as end date.")

    candidates = []
    current = start_date
    while current <= end_date:
        for slot in slots:
            local_start = datetime.combine(current, slot, tzinfo=TARGET_TIMEZONE)
            candidates.append(to_utc(local_start))
        current += timedelta(days=1)
    return candidates
