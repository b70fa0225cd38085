from __future__ import annotations

from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from lend_and_learn.db.base import Base
from lend_and_learn.models.lending_models import Device, Reservation, User
from lend_and_learn.services.directory_service import DirectoryError
from lend_and_learn.services.reservation_state import ReservationStatus


def build_session_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )
    return engine, factory


def seed_user(db, username: str, first_name: str = "Test", last_name: str = "User", email: str | None = None) -> int:
    user = User(
        Username=username,
        FirstName=first_name,
        LastName=last_name,
        Email=email or f"{username}@example.test",
    )
    db.add(user)
    db.commit()
    return user.UserID


def seed_device(db, owner_id: int, name: str = "Oscilloscope", description: str = "") -> int:
    device = Device(Name=name, Description=description, OwnerID=owner_id)
    db.add(device)
    db.commit()
    return device.DeviceID


def seed_reservation(
    db,
    device_id: int,
    user_id: int,
    start: date,
    end: date,
    status: ReservationStatus = ReservationStatus.Created,
) -> int:
    reservation = Reservation(
        DeviceID=device_id,
        UserID=user_id,
        DateStart=start,
        DateEnd=end,
        Status=status.value,
    )
    db.add(reservation)
    db.commit()
    return reservation.ReservationID


class FakeDirectory:
    def __init__(self, profiles: dict | None = None, error: Exception | None = None):
        self.profiles = dict(profiles or {})
        self.error = error
        self.calls = []

    def fetch_profile(self, access_token, username):
        self.calls.append((access_token, username))
        if self.error is not None:
            raise self.error
        return self.profiles.get(username)


def directory_down() -> FakeDirectory:
    return FakeDirectory(error=DirectoryError("Directory API connection error: refused"))
