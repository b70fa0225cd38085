import unittest

from lend_and_learn.models.lending_models import User
from lend_and_learn.services.exceptions import Unauthorized
from lend_and_learn.services.user_service import (
    find_user,
    refresh_user_profile,
    resolve_or_create_user,
    serialize_user,
)
from lend_and_learn.tests.support import FakeDirectory, build_session_factory, directory_down, seed_user


PROFILE = {
    "username": "dana",
    "firstName": "Dana",
    "lastName": "Novak",
    "preferredEmail": "dana@example.test",
}


class ResolveOrCreateUserTests(unittest.TestCase):
    def setUp(self):
        self.engine, self.Session = build_session_factory()

    def tearDown(self):
        self.engine.dispose()

    def test_creates_user_from_directory(self):
        directory = FakeDirectory({"dana": PROFILE})
        with self.Session() as db:
            user = resolve_or_create_user(db, directory, "token-1", "dana")
            self.assertEqual(user.Email, "dana@example.test")
        self.assertEqual(directory.calls, [("token-1", "dana")])
        with self.Session() as db:
            self.assertEqual(db.query(User).count(), 1)

    def test_existing_user_skips_directory(self):
        with self.Session() as db:
            seed_user(db, "dana", "Old", "Name")
        directory = FakeDirectory({"dana": PROFILE})
        with self.Session() as db:
            user = resolve_or_create_user(db, directory, "token-1", "dana")
            self.assertEqual(user.FirstName, "Old")
        self.assertEqual(directory.calls, [])

    def test_existing_user_resolves_while_directory_is_down(self):
        with self.Session() as db:
            seed_user(db, "dana")
            self.assertIsNotNone(resolve_or_create_user(db, directory_down(), "token-1", "dana"))

    def test_empty_username(self):
        directory = FakeDirectory({"dana": PROFILE})
        with self.Session() as db:
            self.assertIsNone(resolve_or_create_user(db, directory, "token-1", ""))
            self.assertIsNone(resolve_or_create_user(db, directory, "token-1", None))
        self.assertEqual(directory.calls, [])

    def test_directory_failure_is_unauthorized(self):
        with self.Session() as db:
            with self.assertRaises(Unauthorized):
                resolve_or_create_user(db, directory_down(), "token-1", "dana")
        with self.Session() as db:
            self.assertEqual(db.query(User).count(), 0)

    def test_directory_spelling_of_stored_user_is_reused(self):
        with self.Session() as db:
            user_id = seed_user(db, "dana", "Dana", "Novak")
        directory = FakeDirectory({"Dana": PROFILE})
        with self.Session() as db:
            user = resolve_or_create_user(db, directory, "token-1", "Dana")
            self.assertEqual(user.UserID, user_id)
        with self.Session() as db:
            self.assertEqual(db.query(User).count(), 1)

    def test_empty_profile_returns_none(self):
        with self.Session() as db:
            self.assertIsNone(resolve_or_create_user(db, FakeDirectory(), "token-1", "dana"))
            self.assertEqual(db.query(User).count(), 0)


class RefreshUserProfileTests(unittest.TestCase):
    def setUp(self):
        self.engine, self.Session = build_session_factory()
        with self.Session() as db:
            self.user_id = seed_user(db, "dana", "Old", "Name", "old@example.test")

    def tearDown(self):
        self.engine.dispose()

    def test_overwrites_stored_fields(self):
        with self.Session() as db:
            user = refresh_user_profile(db, FakeDirectory({"dana": PROFILE}), "dana", "dana", "token-1")
            self.assertEqual(user.UserID, self.user_id)
        with self.Session() as db:
            stored = db.get(User, self.user_id)
            self.assertEqual((stored.FirstName, stored.LastName, stored.Email), ("Dana", "Novak", "dana@example.test"))

    def test_other_user_is_rejected(self):
        directory = FakeDirectory({"dana": PROFILE})
        with self.Session() as db:
            with self.assertRaises(Unauthorized):
                refresh_user_profile(db, directory, "dana", "eve", "token-1")
        self.assertEqual(directory.calls, [])

    def test_directory_failure_is_unauthorized(self):
        with self.Session() as db:
            with self.assertRaises(Unauthorized):
                refresh_user_profile(db, directory_down(), "dana", "dana", "token-1")
        with self.Session() as db:
            self.assertEqual(db.get(User, self.user_id).FirstName, "Old")

    def test_empty_profile_is_unauthorized(self):
        with self.Session() as db:
            with self.assertRaises(Unauthorized):
                refresh_user_profile(db, FakeDirectory(), "dana", "dana", "token-1")

    def test_username_taken_by_another_user_is_unauthorized(self):
        with self.Session() as db:
            seed_user(db, "eve", "Eve", "Other")
        profile = dict(PROFILE, username="eve")
        with self.Session() as db:
            with self.assertRaises(Unauthorized):
                refresh_user_profile(db, FakeDirectory({"dana": profile}), "dana", "dana", "token-1")
            # The session stays usable after the failed write.
            self.assertEqual(find_user(db, "dana").FirstName, "Old")
        with self.Session() as db:
            stored = db.get(User, self.user_id)
            self.assertEqual((stored.Username, stored.Email), ("dana", "old@example.test"))

    def test_unknown_local_user_is_not_created(self):
        profile = dict(PROFILE, username="frank")
        with self.Session() as db:
            self.assertIsNone(refresh_user_profile(db, FakeDirectory({"frank": profile}), "frank", "frank", "token-1"))
            self.assertIsNone(find_user(db, "frank"))


class SerializeUserTests(unittest.TestCase):
    def test_serialize_none(self):
        self.assertIsNone(serialize_user(None))

    def test_serialize_fields(self):
        user = User(UserID=7, Username="dana", FirstName="Dana", LastName="Novak", Email="dana@example.test")
        self.assertEqual(
            serialize_user(user),
            {"id": 7, "username": "dana", "firstName": "Dana", "lastName": "Novak", "email": "dana@example.test"},
        )


if __name__ == "__main__":
    unittest.main()
