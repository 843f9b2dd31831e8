import logging
from datetime import date
from typing import List

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from fastapi.requests import HTTPConnection
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, field_validator

import calendar_math
from database import LOG_LEVEL, async_session, init_db
from models import ROOMS, Booking, normalize_bookings
from slot_index import booking_key, build_index, lookup
from store import BookingConflict, ChangeFeed, ChangeKind, SqlBookingStore, StoreError

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Room Booking Calendar")


# Pydantic Schemas for Request/Response
class BookingCreate(BaseModel):
    room: str
    date: date
    start_mins: int
    name: str

    @field_validator("room")
    @classmethod
    def known_room(cls, value: str) -> str:
        if value not in ROOMS:
            raise ValueError("Unknown room")
        return value

    @field_validator("start_mins")
    @classmethod
    def slot_start(cls, value: int) -> int:
        if value not in calendar_math.SLOT_STARTS:
            raise ValueError("Invalid time slot. Slots start on the hour from 08:00 to 16:00")
        return value

    @field_validator("name")
    @classmethod
    def trimmed_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Name must not be empty")
        return value


class BookingRead(BaseModel):
    room: str
    date: str
    start_mins: int
    name: str


class SlotStatus(BaseModel):
    time_label: str
    start_mins: int
    status: str
    name: str | None


class DaySchedule(BaseModel):
    date: str
    label: str
    slots: List[SlotStatus]


class WeekSchedule(BaseModel):
    room: str
    monday: str
    label: str
    days: List[DaySchedule]


def get_store(conn: HTTPConnection) -> SqlBookingStore:
    return conn.app.state.store


def require_room(room: str) -> str:
    if room not in ROOMS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown room")
    return room


@app.on_event("startup")
async def on_startup():
    await init_db()
    app.state.store = SqlBookingStore(async_session, ChangeFeed())


@app.get("/rooms", response_model=List[str])
async def list_rooms():
    return ROOMS


@app.get("/bookings", response_model=List[BookingRead])
async def list_bookings(room: str, request: Request):
    require_room(room)

    try:
        rows = await get_store(request).fetch_by_room(room)
    except StoreError:
        logger.exception("Fetching bookings for %r failed", room)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Could not load bookings.")
    return normalize_bookings(rows)


@app.post("/bookings", status_code=status.HTTP_201_CREATED)
async def create_booking(booking_data: BookingCreate, request: Request):
    booking = Booking(
        room=booking_data.room,
        date=calendar_math.iso_date(booking_data.date),
        start_mins=booking_data.start_mins,
        name=booking_data.name,
    )

    try:
        await get_store(request).insert(booking)
    except BookingConflict:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Slot already booked for this room and time."
        )
    except StoreError:
        logger.exception("Saving booking failed")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Could not save booking.")

    return {"message": "Booking successful", "id": booking_key(booking.room, booking.date, booking.start_mins)}


@app.delete("/bookings/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_booking(booking_id: str, request: Request):
    try:
        await get_store(request).delete(booking_id)
    except StoreError:
        logger.exception("Deleting booking %s failed", booking_id)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Could not delete booking.")


@app.get("/week-grid", response_model=WeekSchedule)
async def get_week_grid(room: str, day: date, request: Request):
    require_room(room)

    # Step 1: All bookings of the room in one query
    try:
        rows = await get_store(request).fetch_by_room(room)
    except StoreError:
        logger.exception("Fetching bookings for %r failed", room)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Could not load bookings.")

    # Step 2: Lookup dictionary keyed by room__date__start_mins
    index = build_index(normalize_bookings(rows))

    # Step 3: Construct the grid for Monday..Friday
    monday = calendar_math.start_of_week_monday(day)
    days = []
    for current in calendar_math.week_days(monday):
        slots = []
        for slot in calendar_math.slots_of_day():
            existing = lookup(index, room, current, slot.start_mins)
            slots.append(SlotStatus(
                time_label=slot.label,
                start_mins=slot.start_mins,
                status="occupied" if existing else "available",
                name=existing.name if existing else None,
            ))
        days.append(DaySchedule(
            date=calendar_math.iso_date(current),
            label=calendar_math.day_label(current),
            slots=slots,
        ))

    return WeekSchedule(
        room=room,
        monday=calendar_math.iso_date(monday),
        label=calendar_math.week_range_label(monday),
        days=days,
    )


@app.websocket("/changes")
async def stream_changes(ws: WebSocket):
    async def forward(room: str, kind: ChangeKind):
        await ws.send_json({"room": room, "kind": kind.value})

    await ws.accept()
    subscription = get_store(ws).subscribe_to_changes(forward)
    try:
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        return
    finally:
        await subscription.close()


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
