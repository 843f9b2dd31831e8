from datetime import datetime, timezone
from typing import Any, Iterable, List, Mapping

from sqlmodel import SQLModel, Field

# Fixed set of bookable rooms
ROOMS = [
    "Lokale 301 (22 personer)",
    "Lokale 308 (6 personer)",
    "Lokale 315 (6 personer)",
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Booking(SQLModel):
    """One claimed slot. Created or deleted, never edited."""

    room: str = Field(index=True)
    date: str = Field(index=True)  # YYYY-MM-DD
    start_mins: int  # 480, 540, ... 960
    name: str


class BookingRecord(Booking, table=True):
    __tablename__ = "bookings"

    # room__date__start_mins, the primary key is what rejects double booking
    id: str = Field(primary_key=True)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


def _is_well_typed(row: Any) -> bool:
    if not isinstance(row, Mapping):
        return False
    start = row.get("start_mins")
    return (
        isinstance(row.get("room"), str)
        and isinstance(row.get("date"), str)
        and isinstance(start, int)
        and not isinstance(start, bool)
        and isinstance(row.get("name"), str)
    )


def normalize_bookings(rows: Iterable[Any]) -> List[Booking]:
    """Turn raw store rows into bookings, silently dropping malformed ones."""
    if rows is None or isinstance(rows, (str, bytes, Mapping)):
        return []
    try:
        candidates = list(rows)
    except TypeError:
        return []

    return [
        Booking(
            room=row["room"],
            date=row["date"],
            start_mins=row["start_mins"],
            name=row["name"].strip(),
        )
        for row in candidates
        if _is_well_typed(row)
    ]
