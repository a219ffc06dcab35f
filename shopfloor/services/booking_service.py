from __future__ import annotations

import calendar
import hmac
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time

from shopfloor.models.catalog import ALL_VENUES, END_OF_DAY, TIME_SLOTS, venue_group
from shopfloor.models.records import Booking, dump_record
from shopfloor.schemas.bookings import BookingCreateRequest
from shopfloor.services.errors import LocalValidationError
from shopfloor.services.normalize_service import dates_in_range
from shopfloor.services.reservation_store import ReservationStore
from shopfloor.settings import local_now


@dataclass
class CancellationProposal:
    ok: bool
    resulting_booking: Booking | None = None
    reason: str | None = None
    full_deletion: bool = False
    dates: list[date] = field(default_factory=list)


def is_slot_taken(store: ReservationStore, venue: str, day: date, slot: str) -> bool:
    # End time is exclusive: a booking until 17:30 leaves the 17:30 slot free.
    for booking in store.covering(day, venue):
        if booking.startTime <= slot < booking.endTime:
            return True
    return False


def slot_board(store: ReservationStore, venue: str, day: date) -> list[dict]:
    return [{"time": slot, "taken": is_slot_taken(store, venue, day, slot)} for slot in TIME_SLOTS]


def valid_dates(booking: Booking) -> list[date]:
    excluded = set(booking.excludedDates)
    return [day for day in dates_in_range(booking.startDate, booking.endDate) if day not in excluded]


def is_day_started(day: date, start_time: str, now: datetime | None = None) -> bool:
    current = now or local_now()
    hour, minute = (int(part) for part in start_time.split(":")[:2])
    return current >= datetime.combine(day, time(hour, minute))


def cancellable_dates(booking: Booking, now: datetime | None = None) -> list[date]:
    current = now or local_now()
    return [day for day in valid_dates(booking) if not is_day_started(day, booking.startTime, current)]


def propose_cancellation(
    booking: Booking,
    selected_dates: list[date],
    password: str,
    now: datetime | None = None,
) -> CancellationProposal:
    """Work out what cancelling `selected_dates` does to `booking`.

    Pure: the booking passed in is never modified. Either every selected
    date is cancelled or nothing is.
    """
    selected = sorted(set(selected_dates))
    allowed = set(cancellable_dates(booking, now))
    if not selected or not set(selected).issubset(allowed):
        return CancellationProposal(ok=False, reason="NoCancellableDates", dates=selected)
    if not hmac.compare_digest(str(password or "").encode("utf-8"), booking.password.encode("utf-8")):
        return CancellationProposal(ok=False, reason="BadPassword", dates=selected)

    if set(selected) == set(valid_dates(booking)):
        return CancellationProposal(ok=True, resulting_booking=None, full_deletion=True, dates=selected)

    updated = booking.model_copy(deep=True)
    updated.excludedDates = sorted(set(booking.excludedDates) | set(selected))
    return CancellationProposal(ok=True, resulting_booking=updated, dates=selected)


def require_cancellation(
    booking: Booking,
    selected_dates: list[date],
    password: str,
    now: datetime | None = None,
) -> CancellationProposal:
    proposal = propose_cancellation(booking, selected_dates, password, now)
    if proposal.ok:
        return proposal
    if proposal.reason == "BadPassword":
        raise LocalValidationError("BadPassword", "Cancellation password does not match.")
    raise LocalValidationError("NoCancellableDates", "Select at least one date that has not started yet.")


def apply_cancellation(store: ReservationStore, booking_id: str, proposal: CancellationProposal) -> None:
    if proposal.full_deletion:
        store.remove(booking_id)
    elif proposal.resulting_booking is not None:
        store.replace(proposal.resulting_booking)


def _require_slot(value: str, field_name: str, closing: bool = False) -> str:
    slot = (value or "").strip()
    if slot not in TIME_SLOTS and not (closing and slot == END_OF_DAY):
        raise LocalValidationError("InvalidTimeSlot", f"{field_name} must be a half-hour mark such as 08:30.")
    return slot


def build_booking(store: ReservationStore, draft: BookingCreateRequest, booking_id: str | None = None) -> Booking:
    venue = (draft.venue or "").strip()
    if venue not in ALL_VENUES:
        raise LocalValidationError("UnknownVenue", f"Unknown venue: {venue}")
    start_time = _require_slot(draft.startTime, "startTime")
    end_time = _require_slot(draft.endTime, "endTime", closing=True)
    if draft.endDate < draft.startDate:
        raise LocalValidationError("InvalidDateRange", "endDate must be on or after startDate.")
    if end_time <= start_time:
        raise LocalValidationError("InvalidTimeRange", "endTime must be after startTime.")
    password = (draft.password or "").strip()
    if len(password) != 5 or not password.isdigit():
        raise LocalValidationError("InvalidPassword", "Password must be exactly 5 digits.")
    for label, value in (("applicant", draft.applicant), ("carModel", draft.carModel), ("purpose", draft.purpose)):
        if not (value or "").strip():
            raise LocalValidationError("MissingField", f"{label} is required.")

    for day in dates_in_range(draft.startDate, draft.endDate):
        for slot in TIME_SLOTS:
            if start_time <= slot < end_time and is_slot_taken(store, venue, day, slot):
                raise LocalValidationError("SlotTaken", f"{venue} is already booked on {day} at {slot}.")

    return Booking(
        id=booking_id or uuid.uuid4().hex[:9],
        venue=venue,
        startDate=draft.startDate,
        endDate=draft.endDate,
        startTime=start_time,
        endTime=end_time,
        applicant=draft.applicant.strip(),
        dept=(draft.dept or "").strip(),
        carModel=draft.carModel.strip(),
        purpose=draft.purpose.strip(),
        password=password,
        excludedDates=[],
    )


def monthly_used_days(store: ReservationStore, year: int, month: int, venue: str | None = None) -> int:
    days_in_month = calendar.monthrange(year, month)[1]
    used = 0
    for day_number in range(1, days_in_month + 1):
        if store.covering(date(year, month, day_number), venue):
            used += 1
    return used


def serialize_booking(booking: Booking, now: datetime | None = None) -> dict:
    payload = dump_record(booking, exclude={"password"})
    payload["venueGroup"] = venue_group(booking.venue)
    payload["validDates"] = [day.isoformat() for day in valid_dates(booking)]
    payload["cancellableDates"] = [day.isoformat() for day in cancellable_dates(booking, now)]
    return payload


def bookings_for_applicant(store: ReservationStore, applicant: str, now: datetime | None = None) -> list[dict]:
    current = now or local_now()
    rows = []
    for booking in store.all():
        if booking.applicant != applicant:
            continue
        if not valid_dates(booking):
            continue
        rows.append(serialize_booking(booking, current))
    rows.sort(key=lambda item: (item["startDate"], item["startTime"]))
    return rows
