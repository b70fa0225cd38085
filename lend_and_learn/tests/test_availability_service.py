import unittest
from datetime import date

from lend_and_learn.services.availability_service import (
    find_devices_page,
    find_user_devices,
    get_user_devices_statistics,
)
from lend_and_learn.services.exceptions import Unauthorized
from lend_and_learn.services.reservation_state import ReservationStatus
from lend_and_learn.tests.support import build_session_factory, seed_device, seed_reservation, seed_user


TODAY = date(2020, 6, 15)


class AvailabilityTests(unittest.TestCase):
    def setUp(self):
        self.engine, self.Session = build_session_factory()
        with self.Session() as db:
            self.alice_id = seed_user(db, "alice", "Alice", "Owner")
            self.bob_id = seed_user(db, "bob", "Bob", "Borrower")
            self.free_id = seed_device(db, self.alice_id, "Free board")
            self.booked_id = seed_device(db, self.alice_id, "Booked board")
            self.future_id = seed_device(db, self.alice_id, "Future board")
            self.bob_device_id = seed_device(db, self.bob_id, "Bob's camera")

            seed_reservation(db, self.free_id, self.bob_id, date(2020, 6, 1), date(2020, 6, 30), ReservationStatus.Finished)
            seed_reservation(db, self.booked_id, self.bob_id, date(2020, 6, 10), date(2020, 6, 15), ReservationStatus.InProgress)
            seed_reservation(db, self.future_id, self.bob_id, date(2020, 7, 1), date(2020, 7, 2))

    def tearDown(self):
        self.engine.dispose()

    def test_page_reports_total_and_booked_today(self):
        with self.Session() as db:
            page = find_devices_page(db, limit=10, offset=0, today=TODAY)
        self.assertEqual(page["total"], 4)
        booked = {item["id"]: item["isBookedToday"] for item in page["results"]}
        self.assertEqual(
            booked,
            {self.free_id: False, self.booked_id: True, self.future_id: False, self.bob_device_id: False},
        )

    def test_page_window(self):
        with self.Session() as db:
            page = find_devices_page(db, limit=2, offset=1, today=TODAY)
        self.assertEqual(page["total"], 4)
        self.assertEqual([item["id"] for item in page["results"]], [self.booked_id, self.future_id])

    def test_page_past_end_is_empty(self):
        with self.Session() as db:
            page = find_devices_page(db, limit=5, offset=10, today=TODAY)
        self.assertEqual(page, {"total": 4, "results": []})

    def test_page_lists_only_active_reservations(self):
        with self.Session() as db:
            page = find_devices_page(db, limit=10, offset=0, today=TODAY)
        free = next(item for item in page["results"] if item["id"] == self.free_id)
        self.assertEqual(free["reservations"], [])

    def test_user_devices_slice(self):
        with self.Session() as db:
            page = find_user_devices(db, "alice", "alice", limit=2, offset=0, today=TODAY)
        self.assertEqual(page["total"], 3)
        self.assertEqual([item["id"] for item in page["results"]], [self.free_id, self.booked_id])

    def test_user_devices_clamps_to_end(self):
        with self.Session() as db:
            page = find_user_devices(db, "alice", "alice", limit=5, offset=2, today=TODAY)
            empty = find_user_devices(db, "alice", "alice", limit=5, offset=7, today=TODAY)
        self.assertEqual([item["id"] for item in page["results"]], [self.future_id])
        self.assertEqual(empty, {"total": 3, "results": []})

    def test_user_devices_unknown_user(self):
        with self.Session() as db:
            self.assertEqual(find_user_devices(db, "ghost", "ghost", 5, 0), {"total": 0, "results": []})

    def test_user_devices_requires_same_user(self):
        with self.Session() as db:
            with self.assertRaises(Unauthorized):
                find_user_devices(db, "alice", "bob", 5, 0)

    def test_statistics(self):
        with self.Session() as db:
            stats = get_user_devices_statistics(db, "alice", "alice")
        self.assertEqual(stats, {"count": 3, "lent": 2, "available": 1})

    def test_statistics_follow_cancellation(self):
        with self.Session() as db:
            seed_reservation(db, self.bob_device_id, self.alice_id, date(2020, 6, 1), date(2020, 6, 2), ReservationStatus.Cancelled)
            stats = get_user_devices_statistics(db, "bob", "bob")
        self.assertEqual(stats, {"count": 1, "lent": 0, "available": 1})

    def test_statistics_unknown_user(self):
        with self.Session() as db:
            self.assertEqual(get_user_devices_statistics(db, "ghost", "ghost"), {"count": 0, "lent": 0, "available": 0})

    def test_statistics_requires_same_user(self):
        with self.Session() as db:
            with self.assertRaises(Unauthorized):
                get_user_devices_statistics(db, "alice", "bob")


if __name__ == "__main__":
    unittest.main()
