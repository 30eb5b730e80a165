"""
Slot availability and appointment start times.

A test carries a catalog of slot labels such as "10.00 - 11.00 AM". For a
given booking date the free slots are the catalog minus the slots already
held by non-cancelled appointments. The catalog listing computes this inside
MongoDB (available_slots_pipeline); single test lookups compute it here
(remaining_slots). Both read the same booked-slot predicate.
"""
import re
from datetime import date, datetime, time, timezone
from typing import Iterable, List, Optional

from errors import InvalidSlotError

CANCELLED = "cancelled"

_SLOT_RE = re.compile(
    r"^\s*(\d{1,2})\.(\d{2})\s*(AM|PM)?\s*-\s*(\d{1,2})\.(\d{2})\s*(AM|PM)?\s*$",
    re.IGNORECASE,
)
_DATE_RE = re.compile(r"^(\d{2})-(\d{2})-(\d{4})$")

CATALOG_FIELDS = ("title", "slug", "description", "image", "price", "discount_percent", "promo_code")


def remaining_slots(all_slots: Iterable[str], booked_slots: Optional[Iterable[str]] = None) -> List[str]:
    """Catalog slots not yet booked, in catalog order."""
    booked = set(booked_slots or ())
    return [slot for slot in all_slots or () if slot not in booked]


def booked_filter(booking_date: str, test_slug: Optional[str] = None) -> dict:
    """Appointments that hold a slot on booking_date."""
    query = {"booking_date": booking_date, "status": {"$ne": CANCELLED}}
    if test_slug is not None:
        query["test_slug"] = test_slug
    return query


def available_slots_pipeline(booking_date: str) -> list:
    """Aggregation over the tests collection yielding remaining slots per test."""
    projection = {field: 1 for field in CATALOG_FIELDS}
    projection.update({"slots": "$remaining", "available_slots": {"$size": "$remaining"}})
    return [
        {
            "$lookup": {
                "from": "appointments",
                "localField": "slug",
                "foreignField": "test_slug",
                "pipeline": [
                    {"$match": booked_filter(booking_date)},
                    {"$project": {"_id": 0, "booking_slot": 1}},
                ],
                "as": "booked",
            }
        },
        {
            "$addFields": {
                "remaining": {
                    "$filter": {
                        "input": {"$ifNull": ["$slots", []]},
                        "as": "slot",
                        "cond": {"$not": [{"$in": ["$$slot", {"$ifNull": ["$booked.booking_slot", []]}]}]},
                    }
                }
            }
        },
        {"$project": projection},
    ]


def parse_booking_date(booking_date: str) -> date:
    """Parse a dd-mm-yyyy booking date, rejecting anything else."""
    match = _DATE_RE.match(booking_date or "")
    if not match:
        raise InvalidSlotError(f"Booking date must look like dd-mm-yyyy, got {booking_date!r}")
    day, month, year = (int(g) for g in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        raise InvalidSlotError(f"Booking date {booking_date!r} is not a calendar date") from None


def _to_minutes(hour: int, minute: int, meridiem: Optional[str]) -> int:
    if minute > 59:
        raise InvalidSlotError("Slot minutes must be between 00 and 59")
    if meridiem is None:
        if hour > 23:
            raise InvalidSlotError("Slot hour must be between 0 and 23")
        return hour * 60 + minute
    if not 1 <= hour <= 12:
        raise InvalidSlotError("Slot hour must be between 1 and 12 with AM/PM")
    hour = hour % 12
    if meridiem == "PM":
        hour += 12
    return hour * 60 + minute


def parse_slot_start(slot_label: str) -> time:
    """
    Start time of a slot label such as "10.00 - 11.00 AM".

    A trailing AM/PM belongs to the end of the window. When the start has no
    suffix of its own, it takes the 12-hour reading that falls at or before
    the end, so "12.00 - 1.00 PM" starts at noon and "1.00 - 2.00 PM" at
    13:00. Labels without any suffix are read on a 24-hour clock.
    """
    match = _SLOT_RE.match(slot_label or "")
    if not match:
        raise InvalidSlotError(f"Slot label must look like 'HH.MM - HH.MM', got {slot_label!r}")
    sh, sm, s_mer, eh, em, e_mer = match.groups()
    s_mer = s_mer.upper() if s_mer else None
    e_mer = e_mer.upper() if e_mer else None

    end = _to_minutes(int(eh), int(em), e_mer)
    if s_mer or not e_mer:
        start = _to_minutes(int(sh), int(sm), s_mer)
    else:
        morning = _to_minutes(int(sh), int(sm), "AM")
        evening = morning + 12 * 60
        start = evening if evening <= end else morning
    return time(start // 60, start % 60)


def resolve_start(slot_label: str, booking_date: str, tz=timezone.utc) -> datetime:
    """Appointment start as naive UTC, from a slot label and a dd-mm-yyyy date in tz."""
    day = parse_booking_date(booking_date)
    local = datetime.combine(day, parse_slot_start(slot_label), tzinfo=tz)
    return local.astimezone(timezone.utc).replace(tzinfo=None)
