from __future__ import annotations

from datetime import date

from shopfloor.models.records import Booking


class ReservationStore:
    """Process-scoped set of bookings as last known to this service.

    Reads hand out deep copies, so no caller holds a reference into the
    store; every write goes through the sync coordinator.
    """

    def __init__(self, bookings: list[Booking] | None = None):
        self._bookings: list[Booking] = [booking.model_copy(deep=True) for booking in bookings or []]

    def __len__(self) -> int:
        return len(self._bookings)

    def all(self) -> list[Booking]:
        return [booking.model_copy(deep=True) for booking in self._bookings]

    def get(self, booking_id: str) -> Booking | None:
        for booking in self._bookings:
            if booking.id == booking_id:
                return booking.model_copy(deep=True)
        return None

    def for_venue(self, venue: str) -> list[Booking]:
        return [booking.model_copy(deep=True) for booking in self._bookings if booking.venue == venue]

    def covering(self, day: date, venue: str | None = None) -> list[Booking]:
        """Bookings whose range includes `day` and which have not excluded it."""
        out: list[Booking] = []
        for booking in self._bookings:
            if venue is not None and booking.venue != venue:
                continue
            if booking.startDate <= day <= booking.endDate and day not in booking.excludedDates:
                out.append(booking.model_copy(deep=True))
        return out

    def add(self, booking: Booking) -> None:
        if any(existing.id == booking.id for existing in self._bookings):
            raise ValueError(f"Booking {booking.id} already exists.")
        self._bookings.append(booking.model_copy(deep=True))

    def replace(self, booking: Booking) -> None:
        for index, existing in enumerate(self._bookings):
            if existing.id == booking.id:
                self._bookings[index] = booking.model_copy(deep=True)
                return
        raise KeyError(booking.id)

    def remove(self, booking_id: str) -> None:
        remaining = [booking for booking in self._bookings if booking.id != booking_id]
        if len(remaining) == len(self._bookings):
            raise KeyError(booking_id)
        self._bookings = remaining

    def replace_all(self, bookings: list[Booking]) -> None:
        self._bookings = [booking.model_copy(deep=True) for booking in bookings]

    def snapshot(self) -> list[Booking]:
        return self.all()

    def restore(self, snapshot: list[Booking]) -> None:
        self.replace_all(snapshot)

    def restore_one(self, booking_id: str, snapshot: list[Booking]) -> None:
        """Put back the snapshot version of one booking, leaving the others as they are now."""
        remaining = [booking for booking in self._bookings if booking.id != booking_id]
        for position, booking in enumerate(snapshot):
            if booking.id == booking_id:
                remaining.insert(min(position, len(remaining)), booking.model_copy(deep=True))
                break
        self._bookings = remaining
