"""
Booking session controller.

One `BookingSession` per open client. It loads the bookings of the selected
room, applies create/delete optimistically, confirms them against the
store and rolls back on failure. Change notifications for the selected room
trigger a full re-fetch, which is the only way other clients' writes reach
the local state.

Typical use::

    async with BookingSession(store) as session:
        await session.select_room("Lokale 308 (6 personer)")
        session.open_slot("2025-03-10", 600)
        session.set_name("Ida")
        await session.confirm_create()
"""
import enum
import logging
from dataclasses import dataclass
from datetime import date
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple

import calendar_math
from calendar_math import DateLike
from models import ROOMS, Booking, normalize_bookings
from slot_index import SlotIndex, booking_key, build_index, lookup
from store import BookingConflict, BookingStore, ChangeKind, StoreError, Subscription

logger = logging.getLogger(__name__)

# User facing messages
MSG_NAME_REQUIRED = "Indtast venligst dit navn."
MSG_ALREADY_BOOKED = "Tidsrummet er allerede booket."
MSG_SAVE_FAILED = "Kunne ikke gemme booking. Prøv igen."
MSG_DELETE_FAILED = "Kunne ikke slette booking. Prøv igen."
UNKNOWN_BOOKER = "(ukendt)"

Bookings = Tuple[Booking, ...]


class SessionState(str, enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"


class FlowMode(str, enum.Enum):
    CREATE = "create"
    DELETE = "delete"


@dataclass
class PendingFlow:
    mode: FlowMode
    room: str
    date: str
    start_mins: int
    name_input: str = ""
    error: str = ""

    @property
    def key(self) -> str:
        return booking_key(self.room, self.date, self.start_mins)

    @property
    def slot_label(self) -> str:
        return calendar_math.format_slot_label(self.start_mins)

    @property
    def day_label(self) -> str:
        return calendar_math.day_label(self.date)


class BookingSession:
    def __init__(
        self,
        store: BookingStore,
        today: Callable[[], date] = date.today,
        rooms: Sequence[str] = ROOMS,
    ):
        self._store = store
        self._today = today
        self.rooms = list(rooms)

        self.state = SessionState.IDLE
        self.room: Optional[str] = None
        self.week_start = calendar_math.start_of_week_monday(today())
        self.pending: Optional[PendingFlow] = None

        self._bookings: Bookings = ()
        self._index: SlotIndex = {}
        self._subscription: Optional[Subscription] = None
        # Bumped on every room change so late fetches for an old room are ignored
        self._generation = 0
        # Every fetch is numbered; a response older than the last one applied is dropped
        self._fetch_seq = 0
        self._applied_seq = 0

    async def __aenter__(self) -> "BookingSession":
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    # --- read side ---

    @property
    def bookings(self) -> Bookings:
        return self._bookings

    @property
    def index(self) -> SlotIndex:
        return self._index

    @property
    def week_days(self) -> List[date]:
        return calendar_math.week_days(self.week_start)

    @property
    def week_label(self) -> str:
        return calendar_math.week_range_label(self.week_start)

    def booking_at(self, day: DateLike, start_mins: int) -> Optional[Booking]:
        if self.room is None:
            return None
        return lookup(self._index, self.room, day, start_mins)

    def booked_by(self) -> str:
        """Name shown in the delete dialog."""
        flow = self.pending
        if flow is None:
            return ""
        booking = lookup(self._index, flow.room, flow.date, flow.start_mins)
        return booking.name if booking is not None else UNKNOWN_BOOKER

    def _set_bookings(self, bookings: Iterable[Booking]):
        self._bookings = tuple(bookings)
        self._index = build_index(self._bookings)

    # --- room selection and reconciliation ---

    async def select_room(self, room: str):
        if room not in self.rooms:
            raise ValueError(f"Unknown room: {room!r}")

        await self._release_subscription()
        self._generation += 1
        self.room = room
        self.pending = None
        self._set_bookings(())
        self.state = SessionState.LOADING

        self._subscription = self._store.subscribe_to_changes(self._on_change)
        await self._load(self._generation)

    async def refresh(self):
        """Re-fetch the selected room and replace the local bookings wholesale."""
        if self.room is None:
            return
        self.state = SessionState.LOADING
        await self._load(self._generation)

    async def _load(self, generation: int):
        room = self.room
        self._fetch_seq += 1
        seq = self._fetch_seq
        try:
            rows = await self._store.fetch_by_room(room)
        except StoreError:
            logger.exception("Could not load bookings for %r", room)
            if generation == self._generation and seq >= self._applied_seq:
                self.state = SessionState.READY
            return

        if generation != self._generation:
            logger.debug("Ignoring bookings fetched for previously selected room %r", room)
            return
        if seq < self._applied_seq:
            logger.debug("Ignoring out of date bookings for %r", room)
            return

        self._applied_seq = seq
        self._set_bookings(b for b in normalize_bookings(rows) if b.room == room)
        self.state = SessionState.READY

    async def _on_change(self, room: str, kind: ChangeKind):
        # Notifications are table wide, only the selected room matters here
        if room != self.room:
            return
        logger.debug("%s on %r, reloading", kind.value, room)
        await self.refresh()

    async def settle(self):
        """Wait for queued change notifications to be handled."""
        if self._subscription is not None:
            await self._subscription.drain()

    async def back_to_room_selection(self):
        await self._release_subscription()
        self._generation += 1
        self.room = None
        self.pending = None
        self._set_bookings(())
        self.week_start = calendar_math.start_of_week_monday(self._today())
        self.state = SessionState.IDLE

    async def close(self):
        await self._release_subscription()

    async def _release_subscription(self):
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.close()

    # --- week navigation (local only) ---

    def next_week(self):
        self.week_start = calendar_math.add_days(self.week_start, 7)

    def previous_week(self):
        self.week_start = calendar_math.add_days(self.week_start, -7)

    def current_week(self):
        self.week_start = calendar_math.start_of_week_monday(self._today())

    # --- flows ---

    def open_slot(self, day: DateLike, start_mins: int) -> PendingFlow:
        if self.booking_at(day, start_mins) is not None:
            return self.open_delete(day, start_mins)
        return self.open_create(day, start_mins)

    def open_create(self, day: DateLike, start_mins: int) -> PendingFlow:
        return self._open(FlowMode.CREATE, day, start_mins)

    def open_delete(self, day: DateLike, start_mins: int) -> PendingFlow:
        return self._open(FlowMode.DELETE, day, start_mins)

    def _open(self, mode: FlowMode, day: DateLike, start_mins: int) -> PendingFlow:
        if self.room is None:
            raise RuntimeError("Select a room before opening a slot")
        if start_mins not in calendar_math.SLOT_STARTS:
            raise ValueError(f"Not a slot start: {start_mins}")

        self.pending = PendingFlow(
            mode=mode,
            room=self.room,
            date=calendar_math.iso_date(day),
            start_mins=start_mins,
        )
        return self.pending

    def set_name(self, text: str):
        if self.pending is not None:
            self.pending.name_input = text

    def cancel(self):
        self.pending = None

    async def confirm_create(self) -> bool:
        flow = self.pending
        if flow is None or flow.mode is not FlowMode.CREATE:
            return False

        name = flow.name_input.strip()
        if not name:
            flow.error = MSG_NAME_REQUIRED
            return False

        # Someone may have booked the slot while the dialog was open
        if flow.key in self._index:
            flow.error = MSG_ALREADY_BOOKED
            return False

        flow.error = ""
        booking = Booking(room=flow.room, date=flow.date, start_mins=flow.start_mins, name=name)

        try:
            await self._optimistic(
                apply=lambda current: current + (booking,),
                remote=lambda: self._store.insert(booking),
                revert=lambda current, snapshot: tuple(b for b in current if b is not booking),
            )
        except BookingConflict:
            logger.info("Lost the race for %s", flow.key)
            self._fail(flow, MSG_ALREADY_BOOKED)
            return False
        except StoreError:
            logger.exception("Could not save booking %s", flow.key)
            self._fail(flow, MSG_SAVE_FAILED)
            return False

        self._finish(flow)
        return True

    async def confirm_delete(self) -> bool:
        flow = self.pending
        if flow is None or flow.mode is not FlowMode.DELETE:
            return False

        flow.error = ""
        key = flow.key

        def remove(current: Bookings) -> Bookings:
            return tuple(b for b in current if booking_key(b.room, b.date, b.start_mins) != key)

        try:
            await self._optimistic(
                apply=remove,
                remote=lambda: self._store.delete(key),
                # whole snapshot, not a patch: anything that happened meanwhile is undone too
                revert=lambda current, snapshot: snapshot,
            )
        except StoreError:
            logger.exception("Could not delete booking %s", key)
            self._fail(flow, MSG_DELETE_FAILED)
            return False

        self._finish(flow)
        return True

    async def _optimistic(
        self,
        apply: Callable[[Bookings], Bookings],
        remote: Callable[[], Awaitable[None]],
        revert: Callable[[Bookings, Bookings], Bookings],
    ):
        """Apply a tentative change, run the remote call, then commit or revert.

        `revert(current, snapshot)` computes the rolled back collection. The
        store error is re-raised after reverting. If the room changed while
        the call was in flight the current collection belongs to another
        room and is left alone.
        """
        generation = self._generation
        snapshot = self._bookings
        self._set_bookings(apply(snapshot))

        try:
            await remote()
        except StoreError:
            if generation == self._generation:
                self._set_bookings(revert(self._bookings, snapshot))
            raise

    def _finish(self, flow: PendingFlow):
        # A flow dismissed while its call was in flight stays dismissed
        if self.pending is flow:
            self.pending = None

    def _fail(self, flow: PendingFlow, message: str):
        if self.pending is flow:
            flow.error = message
