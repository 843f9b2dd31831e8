import asyncio
import os
import tempfile
from typing import Dict, List

# database.py fails fast without a URL, so point it at a throwaway file before anything imports it
os.environ["DATABASE_URL"] = (
    "sqlite+aiosqlite:///" + os.path.join(tempfile.mkdtemp(prefix="bookings-"), "test.db")
)

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from database import init_db, make_session_factory
from models import Booking
from slot_index import booking_key
from store import BookingConflict, ChangeFeed, ChangeKind, SqlBookingStore

ROOM = "Lokale 308 (6 personer)"
OTHER_ROOM = "Lokale 301 (22 personer)"


class FakeBookingStore:
    """In-memory store with switches for failures and for holding calls in flight."""

    def __init__(self):
        self.rows: Dict[str, dict] = {}
        self.feed = ChangeFeed()
        self.calls: List[tuple] = []
        self.failures: Dict[str, Exception] = {}
        self.holds: Dict[str, asyncio.Event] = {}

    def add_row(self, room, date, start_mins, name, **extra):
        row = {"room": room, "date": date, "start_mins": start_mins, "name": name, **extra}
        self.rows[booking_key(room, date, start_mins)] = row
        return row

    def fail_next(self, operation: str, error: Exception):
        self.failures[operation] = error

    def hold(self, operation: str) -> asyncio.Event:
        event = asyncio.Event()
        self.holds[operation] = event
        return event

    async def _enter(self, operation: str, arg):
        self.calls.append((operation, arg))
        # let concurrent callers reach this point too
        await asyncio.sleep(0)
        event = self.holds.get(operation)
        if event is not None:
            await event.wait()
        error = self.failures.pop(operation, None)
        if error is not None:
            raise error

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)

    async def fetch_by_room(self, room):
        # the table is read when the call starts, a held call answers with that read
        rows = [dict(row) for row in self.rows.values() if row.get("room") == room]
        await self._enter("fetch", room)
        return rows

    async def insert(self, booking: Booking):
        key = booking_key(booking.room, booking.date, booking.start_mins)
        await self._enter("insert", key)
        if key in self.rows:
            raise BookingConflict(f"Slot already booked: {key}")
        self.add_row(booking.room, booking.date, booking.start_mins, booking.name)
        self.feed.publish(booking.room, ChangeKind.INSERT)

    async def delete(self, key):
        await self._enter("delete", key)
        row = self.rows.pop(key, None)
        if row is not None:
            self.feed.publish(row["room"], ChangeKind.DELETE)

    def subscribe_to_changes(self, callback):
        return self.feed.subscribe(callback)


@pytest.fixture
def fake_store():
    return FakeBookingStore()


@pytest_asyncio.fixture
async def sql_store(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}", poolclass=NullPool)
    await init_db(engine)
    yield SqlBookingStore(make_session_factory(engine))
    await engine.dispose()


def make_booking(name="Ida", room=ROOM, date="2025-03-10", start_mins=600) -> Booking:
    return Booking(room=room, date=date, start_mins=start_mins, name=name)
