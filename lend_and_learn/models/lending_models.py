from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, and_
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from lend_and_learn.db.base import Base
from lend_and_learn.services.reservation_state import ACTIVE_STATUS_VALUES, ReservationStatus


class User(Base):
    __tablename__ = "Users"

    UserID = Column(Integer, primary_key=True)
    Username = Column(String(255), nullable=False, unique=True, index=True)
    FirstName = Column(String(255), nullable=False)
    LastName = Column(String(255), nullable=False)
    Email = Column(String(255), nullable=False)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    OwnedDevices = relationship("Device", back_populates="Owner", order_by="Device.DeviceID")
    Reservations = relationship("Reservation", back_populates="User", order_by="Reservation.ReservationID")


class Device(Base):
    __tablename__ = "Devices"

    DeviceID = Column(Integer, primary_key=True)
    Name = Column(String(255), nullable=False)
    Description = Column(String(2000), nullable=False, default="")
    OwnerID = Column(Integer, ForeignKey("Users.UserID"), nullable=False, index=True)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Owner = relationship("User", back_populates="OwnedDevices")
    Reservations = relationship(
        "Reservation",
        back_populates="Device",
        cascade="all, delete-orphan",
        order_by="Reservation.ReservationID",
    )
    # Created/InProgress only; read-only view over Reservations.
    ActiveReservations = relationship(
        "Reservation",
        primaryjoin=lambda: and_(
            Device.DeviceID == Reservation.DeviceID,
            Reservation.Status.in_(ACTIVE_STATUS_VALUES),
        ),
        viewonly=True,
        order_by=lambda: Reservation.ReservationID,
    )


class Reservation(Base):
    __tablename__ = "Reservations"

    ReservationID = Column(Integer, primary_key=True)
    DateStart = Column(Date, nullable=False)
    DateEnd = Column(Date, nullable=False)
    Status = Column(String(20), nullable=False, default=ReservationStatus.Created.value, index=True)
    UserID = Column(Integer, ForeignKey("Users.UserID"), nullable=False, index=True)
    DeviceID = Column(Integer, ForeignKey("Devices.DeviceID", ondelete="CASCADE"), nullable=False, index=True)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    User = relationship("User", back_populates="Reservations")
    Device = relationship("Device", back_populates="Reservations")
