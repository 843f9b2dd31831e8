from typing import Dict, Iterable, Optional

from calendar_math import DateLike, iso_date
from models import Booking

KEY_SEP = "__"

SlotIndex = Dict[str, Booking]


def booking_key(room: str, date: DateLike, start_mins: int) -> str:
    # stored dates are already ISO strings and are used as-is
    day = date if isinstance(date, str) else iso_date(date)
    return f"{room}{KEY_SEP}{day}{KEY_SEP}{start_mins}"


def build_index(bookings: Iterable[Booking]) -> SlotIndex:
    # Key: room__date__start_mins -> Booking. A later duplicate overwrites an earlier one.
    return {booking_key(b.room, b.date, b.start_mins): b for b in bookings}


def lookup(index: SlotIndex, room: str, date: DateLike, start_mins: int) -> Optional[Booking]:
    return index.get(booking_key(room, date, start_mins))
