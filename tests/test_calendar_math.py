from datetime import date, datetime, timedelta

import pytest

import calendar_math
from calendar_math import (
    add_days,
    day_label,
    format_slot_label,
    iso_date,
    minutes_to_hhmm,
    slots_of_day,
    start_of_week_monday,
    week_days,
    week_range_label,
)


@pytest.mark.parametrize(
    "day, expected",
    [
        (date(2025, 3, 10), date(2025, 3, 10)),  # Monday
        (date(2025, 3, 12), date(2025, 3, 10)),  # Wednesday
        (date(2025, 3, 15), date(2025, 3, 10)),  # Saturday
        (date(2025, 3, 16), date(2025, 3, 10)),  # Sunday goes back 6 days
        (date(2025, 1, 1), date(2024, 12, 30)),  # across a year boundary
    ],
)
def test_start_of_week_monday(day, expected):
    assert start_of_week_monday(day) == expected


def test_start_of_week_monday_contains_day_for_every_weekday():
    day = date(2024, 1, 1)
    for _ in range(800):
        monday = start_of_week_monday(day)
        assert monday.weekday() == 0
        assert monday <= day <= monday + timedelta(days=6)
        day += timedelta(days=1)


def test_start_of_week_monday_accepts_datetime_and_string():
    assert start_of_week_monday(datetime(2025, 3, 16, 23, 59)) == date(2025, 3, 10)
    assert start_of_week_monday("2025-03-13") == date(2025, 3, 10)


def test_start_of_week_monday_defaults_to_today():
    assert start_of_week_monday() == start_of_week_monday(date.today())


def test_week_days_are_five_consecutive_days():
    days = week_days(date(2025, 4, 28))
    assert days == [date(2025, 4, 28) + timedelta(days=i) for i in range(5)]
    assert [d.weekday() for d in days] == [0, 1, 2, 3, 4]


def test_slots_of_day():
    slots = slots_of_day()
    assert len(slots) == 9
    assert slots[0].label == "08:00-09:00"
    assert slots[-1].label == "16:00-17:00"
    assert [s.start_mins for s in slots] == list(range(480, 1020, 60))
    for previous, current in zip(slots, slots[1:]):
        assert current.start_mins == previous.start_mins + 60
        assert previous.label.split("-")[1] == current.label.split("-")[0]
    assert slots_of_day() is slots
    assert calendar_math.SLOT_STARTS == {s.start_mins for s in slots}


def test_minutes_and_slot_labels():
    assert minutes_to_hhmm(480) == "08:00"
    assert minutes_to_hhmm(965) == "16:05"
    assert format_slot_label(600) == "10:00-11:00"


def test_iso_date_is_zero_padded_local_date():
    assert iso_date(date(2025, 3, 9)) == "2025-03-09"
    assert iso_date(datetime(2025, 3, 9, 23, 59, 59)) == "2025-03-09"
    assert iso_date(datetime(2025, 3, 10, 0, 0, 1)) == "2025-03-10"


def test_add_days_crosses_month():
    assert add_days(date(2025, 1, 31), 1) == date(2025, 2, 1)
    assert add_days("2025-03-10", -7) == date(2025, 3, 3)


@pytest.mark.parametrize(
    "day, expected",
    [
        (date(2025, 3, 10), "Man 10. mar"),
        ("2025-05-02", "Fre 2. maj"),
        (date(2025, 10, 12), "Søn 12. okt"),
    ],
)
def test_day_label(day, expected):
    assert day_label(day) == expected


def test_week_range_label_within_month():
    assert week_range_label(date(2025, 1, 27)) == "27.–31. jan"


def test_week_range_label_across_months():
    assert week_range_label("2025-04-28") == "28. apr – 2. maj"
