from datetime import date, datetime, timedelta
from typing import List, NamedTuple, Optional, Tuple, Union

DateLike = Union[date, datetime, str]

# Office hours: 60 minute slots from 08:00 until 17:00
DAY_START_MINS = 8 * 60
DAY_END_MINS = 17 * 60
SLOT_MINUTES = 60

# Danish abbreviations, Monday first (weekend kept so any date can be labelled)
DK_DAY = ["Man", "Tir", "Ons", "Tor", "Fre", "Lør", "Søn"]
DK_MONTH = [
    "jan", "feb", "mar", "apr", "maj", "jun",
    "jul", "aug", "sep", "okt", "nov", "dec",
]


class Slot(NamedTuple):
    start_mins: int
    label: str


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return parse_iso_date(value)


def parse_iso_date(text: str) -> date:
    return date.fromisoformat(text)


def iso_date(value: DateLike) -> str:
    """YYYY-MM-DD of the local calendar date (no UTC conversion)."""
    d = _as_date(value)
    return f"{d.year:04d}-{d.month:02d}-{d.day:02d}"


def add_days(value: DateLike, days: int) -> date:
    return _as_date(value) + timedelta(days=days)


def start_of_week_monday(value: Optional[DateLike] = None) -> date:
    """Monday of the week containing `value`. Sunday belongs to the week that started 6 days earlier."""
    d = _as_date(value) if value is not None else date.today()
    return d - timedelta(days=d.weekday())


def week_days(monday: DateLike) -> List[date]:
    start = _as_date(monday)
    return [start + timedelta(days=i) for i in range(5)]


def minutes_to_hhmm(mins: int) -> str:
    hours, minutes = divmod(mins, 60)
    return f"{hours:02d}:{minutes:02d}"


def format_slot_label(start_mins: int) -> str:
    return f"{minutes_to_hhmm(start_mins)}-{minutes_to_hhmm(start_mins + SLOT_MINUTES)}"


_SLOTS: Tuple[Slot, ...] = tuple(
    Slot(start_mins=m, label=format_slot_label(m))
    for m in range(DAY_START_MINS, DAY_END_MINS, SLOT_MINUTES)
)

SLOT_STARTS = frozenset(slot.start_mins for slot in _SLOTS)


def slots_of_day() -> Tuple[Slot, ...]:
    return _SLOTS


def day_label(value: DateLike) -> str:
    # e.g. "Man 10. mar"
    d = _as_date(value)
    return f"{DK_DAY[d.weekday()]} {d.day}. {DK_MONTH[d.month - 1]}"


def week_range_label(monday: DateLike) -> str:
    start = _as_date(monday)
    end = start + timedelta(days=4)
    if start.month == end.month:
        return f"{start.day}.–{end.day}. {DK_MONTH[start.month - 1]}"
    return f"{start.day}. {DK_MONTH[start.month - 1]} – {end.day}. {DK_MONTH[end.month - 1]}"
