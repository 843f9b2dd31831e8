"""
Booking store client.

The session controller only ever talks to the narrow `BookingStore`
interface: fetch a room's rows, insert a booking, delete a key and
subscribe to table-wide change notifications. `SqlBookingStore` implements
it on top of the async SQLAlchemy engine from `database.py`; notifications
are broadcast in-process by a `ChangeFeed`.
"""
import asyncio
import enum
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Set, Tuple

from sqlmodel import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from models import Booking, BookingRecord
from slot_index import booking_key

logger = logging.getLogger(__name__)


class ChangeKind(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


ChangeCallback = Callable[[str, ChangeKind], Awaitable[None]]


class StoreError(Exception):
    """The store could not be reached or refused the operation."""


class BookingConflict(StoreError):
    """A booking with the same room/date/start already exists."""


class Subscription:
    """Handle for one change subscriber. Must be closed to stop delivery."""

    def __init__(self, feed: "ChangeFeed", callback: ChangeCallback, maxsize: int):
        self._feed = feed
        self._callback = callback
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        # notifications queued but not yet taken by the pump
        self._waiting: Set[Tuple[str, ChangeKind]] = set()
        self._task = asyncio.create_task(self._pump())
        self.closed = False

    async def _pump(self):
        while True:
            room, kind = await self._queue.get()
            self._waiting.discard((room, kind))
            try:
                await self._callback(room, kind)
            except Exception:
                logger.exception("Change callback failed for room %r (%s)", room, kind.value)
            finally:
                self._queue.task_done()

    def offer(self, room: str, kind: ChangeKind) -> bool:
        """Queue a notification. An identical one still waiting absorbs it."""
        item = (room, kind)
        if item in self._waiting:
            return True
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            return False
        self._waiting.add(item)
        return True

    async def drain(self):
        """Wait until every queued notification has been handled."""
        if not self.closed:
            await self._queue.join()

    async def close(self):
        if self.closed:
            return
        self.closed = True
        self._feed.discard(self)
        self._task.cancel()
        if asyncio.current_task() is self._task:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class ChangeFeed:
    """Broadcasts (room, kind) to every subscriber, unfiltered."""

    def __init__(self, maxsize: int = 256):
        self._maxsize = maxsize
        self._subscribers: List[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: ChangeCallback) -> Subscription:
        subscription = Subscription(self, callback, self._maxsize)
        self._subscribers.append(subscription)
        return subscription

    def discard(self, subscription: Subscription):
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def publish(self, room: str, kind: ChangeKind):
        for subscription in list(self._subscribers):
            if not subscription.offer(room, kind):
                # the subscriber stays, it only misses this one notification
                logger.warning("Change queue full, skipping %s on %r", kind.value, room)


class BookingStore(Protocol):
    async def fetch_by_room(self, room: str) -> List[Dict[str, Any]]:
        ...

    async def insert(self, booking: Booking) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    def subscribe_to_changes(self, callback: ChangeCallback) -> Subscription:
        ...


class SqlBookingStore:
    def __init__(self, session_factory: sessionmaker, feed: Optional[ChangeFeed] = None):
        self._session_factory = session_factory
        self.feed = feed or ChangeFeed()

    async def fetch_by_room(self, room: str) -> List[Dict[str, Any]]:
        statement = select(BookingRecord).where(BookingRecord.room == room)
        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                records = result.scalars().all()
        except SQLAlchemyError as err:
            raise StoreError(f"Could not fetch bookings for {room!r}") from err

        return [record.model_dump() for record in records]

    async def insert(self, booking: Booking) -> None:
        key = booking_key(booking.room, booking.date, booking.start_mins)
        record = BookingRecord(
            id=key,
            room=booking.room,
            date=booking.date,
            start_mins=booking.start_mins,
            name=booking.name,
        )

        async with self._session_factory() as session:
            try:
                session.add(record)
                await session.commit()
            except IntegrityError as err:
                # Primary key violation: somebody else got there first
                await session.rollback()
                raise BookingConflict(f"Slot already booked: {key}") from err
            except SQLAlchemyError as err:
                await session.rollback()
                raise StoreError(f"Could not save booking {key}") from err

        logger.info("Booked %s for %s", key, booking.name)
        self.feed.publish(booking.room, ChangeKind.INSERT)

    async def delete(self, key: str) -> None:
        async with self._session_factory() as session:
            try:
                record = await session.get(BookingRecord, key)
                if record is None:
                    # Nothing to remove, deleting is idempotent
                    return
                room = record.room
                await session.delete(record)
                await session.commit()
            except SQLAlchemyError as err:
                await session.rollback()
                raise StoreError(f"Could not delete booking {key}") from err

        logger.info("Deleted booking %s", key)
        self.feed.publish(room, ChangeKind.DELETE)

    def subscribe_to_changes(self, callback: ChangeCallback) -> Subscription:
        return self.feed.subscribe(callback)
