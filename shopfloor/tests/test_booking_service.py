import os
import unittest
from datetime import date, datetime

os.environ.setdefault("SHOPFLOOR_AUDIT_DB_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("SHOPFLOOR_SYNC_ON_STARTUP", "false")
os.environ.setdefault("SHOPFLOOR_TIMEZONE", "Asia/Taipei")
os.environ.setdefault("REMOTE_API_URL", "http://remote.invalid/exec")

from shopfloor.models.records import Booking
from shopfloor.schemas.bookings import BookingCreateRequest
from shopfloor.services.booking_service import (
    apply_cancellation,
    bookings_for_applicant,
    build_booking,
    cancellable_dates,
    is_day_started,
    is_slot_taken,
    monthly_used_days,
    propose_cancellation,
    require_cancellation,
    serialize_booking,
    slot_board,
)
from shopfloor.services.errors import LocalValidationError
from shopfloor.services.reservation_store import ReservationStore

BEFORE_JUNE = datetime(2024, 5, 20, 9, 0)


def make_booking(**overrides):
    fields = {
        "id": "bk1",
        "venue": "工位一",
        "startDate": date(2024, 6, 1),
        "endDate": date(2024, 6, 3),
        "startTime": "08:00",
        "endTime": "10:00",
        "applicant": "王小明",
        "dept": "開發驗證部",
        "carModel": "Model X",
        "purpose": "路試前檢查",
        "password": "12345",
        "excludedDates": [],
    }
    fields.update(overrides)
    return Booking(**fields)


def make_draft(**overrides):
    fields = {
        "venue": "工位一",
        "startDate": "2024-06-10",
        "endDate": "2024-06-11",
        "startTime": "13:00",
        "endTime": "15:30",
        "applicant": "陳大文",
        "dept": "測試課",
        "carModel": "Model Y",
        "purpose": "底盤量測",
        "password": "04321",
    }
    fields.update(overrides)
    return BookingCreateRequest(**fields)


class ConflictDetectionTests(unittest.TestCase):
    def setUp(self):
        self.store = ReservationStore([make_booking(endTime="09:00")])

    def test_end_time_is_exclusive(self):
        self.assertTrue(is_slot_taken(self.store, "工位一", date(2024, 6, 2), "08:00"))
        self.assertTrue(is_slot_taken(self.store, "工位一", date(2024, 6, 2), "08:30"))
        self.assertFalse(is_slot_taken(self.store, "工位一", date(2024, 6, 2), "09:00"))
        self.assertFalse(is_slot_taken(self.store, "工位一", date(2024, 6, 2), "07:30"))

    def test_other_venue_and_dates_outside_range_are_free(self):
        self.assertFalse(is_slot_taken(self.store, "工位二", date(2024, 6, 2), "08:30"))
        self.assertFalse(is_slot_taken(self.store, "工位一", date(2024, 6, 4), "08:30"))

    def test_excluded_date_frees_the_slot(self):
        store = ReservationStore([make_booking(excludedDates=[date(2024, 6, 2)])])
        self.assertFalse(is_slot_taken(store, "工位一", date(2024, 6, 2), "08:30"))
        self.assertTrue(is_slot_taken(store, "工位一", date(2024, 6, 3), "08:30"))

    def test_slot_board_covers_every_half_hour(self):
        board = slot_board(self.store, "工位一", date(2024, 6, 1))
        self.assertEqual(len(board), 48)
        taken = [row["time"] for row in board if row["taken"]]
        self.assertEqual(taken, ["08:00", "08:30"])


class CancellationTests(unittest.TestCase):
    def test_partial_then_full_cancellation(self):
        store = ReservationStore([make_booking()])

        first = require_cancellation(store.get("bk1"), [date(2024, 6, 2)], "12345", BEFORE_JUNE)
        self.assertFalse(first.full_deletion)
        apply_cancellation(store, "bk1", first)
        self.assertEqual(store.get("bk1").excludedDates, [date(2024, 6, 2)])

        second = require_cancellation(store.get("bk1"), [date(2024, 6, 1), date(2024, 6, 3)], "12345", BEFORE_JUNE)
        self.assertTrue(second.full_deletion)
        apply_cancellation(store, "bk1", second)
        self.assertIsNone(store.get("bk1"))

    def test_wrong_password_changes_nothing(self):
        booking = make_booking()
        proposal = propose_cancellation(booking, [date(2024, 6, 2)], "54321", BEFORE_JUNE)
        self.assertFalse(proposal.ok)
        self.assertEqual(proposal.reason, "BadPassword")
        self.assertIsNone(proposal.resulting_booking)
        self.assertEqual(booking.excludedDates, [])

    def test_empty_selection_is_rejected(self):
        proposal = propose_cancellation(make_booking(), [], "12345", BEFORE_JUNE)
        self.assertEqual(proposal.reason, "NoCancellableDates")

    def test_started_day_cannot_be_cancelled(self):
        booking = make_booking()
        during_first_day = datetime(2024, 6, 1, 8, 0)
        self.assertTrue(is_day_started(date(2024, 6, 1), "08:00", during_first_day))
        self.assertEqual(cancellable_dates(booking, during_first_day), [date(2024, 6, 2), date(2024, 6, 3)])

        proposal = propose_cancellation(booking, [date(2024, 6, 1), date(2024, 6, 2)], "12345", during_first_day)
        self.assertFalse(proposal.ok)
        self.assertEqual(proposal.reason, "NoCancellableDates")

    def test_remaining_unstarted_days_are_partial_while_one_day_has_started(self):
        booking = make_booking()
        proposal = propose_cancellation(
            booking, [date(2024, 6, 2), date(2024, 6, 3)], "12345", datetime(2024, 6, 1, 9, 0)
        )
        self.assertTrue(proposal.ok)
        self.assertFalse(proposal.full_deletion)
        self.assertEqual(proposal.resulting_booking.excludedDates, [date(2024, 6, 2), date(2024, 6, 3)])

    def test_already_excluded_date_is_not_selectable_again(self):
        booking = make_booking(excludedDates=[date(2024, 6, 2)])
        proposal = propose_cancellation(booking, [date(2024, 6, 2)], "12345", BEFORE_JUNE)
        self.assertEqual(proposal.reason, "NoCancellableDates")

    def test_bad_password_raises_with_reason(self):
        with self.assertRaises(LocalValidationError) as ctx:
            require_cancellation(make_booking(), [date(2024, 6, 2)], "00000", BEFORE_JUNE)
        self.assertEqual(ctx.exception.reason, "BadPassword")


class BookingCreationTests(unittest.TestCase):
    def setUp(self):
        self.store = ReservationStore([make_booking()])

    def test_build_booking_assigns_id_and_keeps_fields(self):
        booking = build_booking(self.store, make_draft())
        self.assertEqual(len(booking.id), 9)
        self.assertEqual(booking.password, "04321")
        self.assertEqual(booking.excludedDates, [])

    def test_back_to_back_booking_is_allowed(self):
        booking = build_booking(self.store, make_draft(startDate="2024-06-02", endDate="2024-06-02", startTime="10:00", endTime="11:00"))
        self.assertEqual(booking.startTime, "10:00")

    def test_overlapping_booking_is_rejected(self):
        with self.assertRaises(LocalValidationError) as ctx:
            build_booking(self.store, make_draft(startDate="2024-06-03", endDate="2024-06-04", startTime="09:30", endTime="11:00"))
        self.assertEqual(ctx.exception.reason, "SlotTaken")

    def test_booking_may_run_until_midnight(self):
        booking = build_booking(self.store, make_draft(startTime="22:00", endTime="24:00"))
        self.assertEqual(booking.endTime, "24:00")
        with self.assertRaises(LocalValidationError) as ctx:
            build_booking(self.store, make_draft(startTime="24:00", endTime="24:00"))
        self.assertEqual(ctx.exception.reason, "InvalidTimeSlot")

    def test_validation_reasons(self):
        cases = [
            (make_draft(venue="停車場"), "UnknownVenue"),
            (make_draft(startTime="13:15"), "InvalidTimeSlot"),
            (make_draft(startDate="2024-06-12", endDate="2024-06-11"), "InvalidDateRange"),
            (make_draft(startTime="15:30", endTime="15:30"), "InvalidTimeRange"),
            (make_draft(password="1234"), "InvalidPassword"),
            (make_draft(password="12a45"), "InvalidPassword"),
            (make_draft(carModel="  "), "MissingField"),
            (make_draft(purpose=""), "MissingField"),
        ]
        for draft, reason in cases:
            with self.subTest(reason=reason):
                with self.assertRaises(LocalValidationError) as ctx:
                    build_booking(self.store, draft)
                self.assertEqual(ctx.exception.reason, reason)


class BookingViewTests(unittest.TestCase):
    def test_monthly_used_days_counts_distinct_dates(self):
        store = ReservationStore(
            [
                make_booking(),
                make_booking(id="bk2", venue="工位二", startDate=date(2024, 6, 3), endDate=date(2024, 6, 4)),
                make_booking(id="bk3", startDate=date(2024, 6, 20), endDate=date(2024, 6, 20), excludedDates=[date(2024, 6, 20)]),
            ]
        )
        self.assertEqual(monthly_used_days(store, 2024, 6), 4)
        self.assertEqual(monthly_used_days(store, 2024, 6, "工位一"), 3)
        self.assertEqual(monthly_used_days(store, 2024, 7), 0)

    def test_my_bookings_hide_password_and_fully_excluded_rows(self):
        store = ReservationStore(
            [
                make_booking(),
                make_booking(id="bk2", startDate=date(2024, 6, 5), endDate=date(2024, 6, 5), excludedDates=[date(2024, 6, 5)]),
                make_booking(id="bk3", applicant="someone else"),
            ]
        )
        rows = bookings_for_applicant(store, "王小明", BEFORE_JUNE)
        self.assertEqual([row["id"] for row in rows], ["bk1"])
        self.assertNotIn("password", rows[0])
        self.assertEqual(rows[0]["cancellableDates"], ["2024-06-01", "2024-06-02", "2024-06-03"])

    def test_serialized_booking_reports_venue_group(self):
        payload = serialize_booking(make_booking(venue="保密車間一(白門)"), BEFORE_JUNE)
        self.assertEqual(payload["venueGroup"], "confidential")
        self.assertEqual(payload["startDate"], "2024-06-01")


if __name__ == "__main__":
    unittest.main()
