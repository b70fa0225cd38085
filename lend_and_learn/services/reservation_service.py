from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from lend_and_learn.models.lending_models import Device, Reservation, User
from lend_and_learn.services.device_service import find_device
from lend_and_learn.services.exceptions import (
    DeviceNotFound,
    ReservationCollision,
    ReservationNotFound,
    Unauthorized,
    UserNotFound,
)
from lend_and_learn.services.reservation_state import (
    ACTIVE_STATUS_VALUES,
    ReservationAction,
    ReservationStatus,
    next_status,
)
from lend_and_learn.services.user_service import find_user, serialize_user


RESERVATIONS_LOGGER = logging.getLogger("lend_and_learn.reservations")

# Who may trigger each transition: the device owner, and for cancel also the creator.
CREATOR_MAY = {ReservationAction.Cancel}


def count_collisions(db: Session, date_start: date, date_end: date, device_id: int) -> int:
    stmt = (
        select(func.count(Reservation.ReservationID))
        .where(Reservation.DeviceID == device_id)
        .where(Reservation.Status.in_(ACTIVE_STATUS_VALUES))
        .where(Reservation.DateStart <= date_end)
        .where(Reservation.DateEnd >= date_start)
    )
    return int(db.execute(stmt).scalar() or 0)


def _lock_device_schedule(db: Session, device_id: int) -> None:
    # Row lock on the device holds concurrent creates for it until commit.
    # SQLite renders no FOR UPDATE and relies on its single-writer lock.
    db.execute(
        select(Device.DeviceID)
        .where(Device.DeviceID == device_id)
        .with_for_update()
    ).first()


def create_reservation(db: Session, date_start: date, date_end: date, device_id: int, username: str) -> Reservation:
    _lock_device_schedule(db, device_id)
    if count_collisions(db, date_start, date_end, device_id) != 0:
        db.rollback()
        RESERVATIONS_LOGGER.warning(
            "create reservation rejected | device_id=%s | start=%s | end=%s | reason=collision",
            device_id,
            date_start,
            date_end,
        )
        raise ReservationCollision()

    user = find_user(db, username)
    if user is None:
        db.rollback()
        raise UserNotFound()
    device = find_device(db, device_id)
    if device is None:
        db.rollback()
        raise DeviceNotFound()

    reservation = Reservation(
        DateStart=date_start,
        DateEnd=date_end,
        Status=ReservationStatus.Created.value,
        User=user,
        Device=device,
        CreatedDate=datetime.now(),
        UpdatedDate=datetime.now(),
    )
    db.add(reservation)
    db.commit()
    db.refresh(reservation)
    RESERVATIONS_LOGGER.info(
        "create reservation success | reservation_id=%s | device_id=%s | username=%s",
        reservation.ReservationID,
        device_id,
        username,
    )
    return reservation


def _load_reservation(db: Session, reservation_id: int) -> Reservation | None:
    stmt = (
        select(Reservation)
        .options(selectinload(Reservation.Device).selectinload(Device.Owner))
        .options(selectinload(Reservation.User))
        .where(Reservation.ReservationID == reservation_id)
    )
    return db.execute(stmt).scalars().first()


def _is_authorized(reservation: Reservation, username: str, action: ReservationAction) -> bool:
    owner = reservation.Device.Owner if reservation.Device else None
    if owner is not None and owner.Username == username:
        return True
    if action in CREATOR_MAY and reservation.User is not None:
        return reservation.User.Username == username
    return False


def change_reservation_status(
    db: Session,
    reservation_id: int,
    username: str,
    action: ReservationAction | str,
) -> Reservation:
    step = ReservationAction(action)
    reservation = _load_reservation(db, reservation_id)
    if reservation is None:
        raise ReservationNotFound()
    if not _is_authorized(reservation, username, step):
        RESERVATIONS_LOGGER.warning(
            "%s reservation rejected | reservation_id=%s | username=%s | reason=unauthorized",
            step.value,
            reservation_id,
            username,
        )
        raise Unauthorized()

    target = next_status(reservation.Status, step)
    reservation.Status = target.value
    reservation.UpdatedDate = datetime.now()
    db.commit()
    db.refresh(reservation)
    RESERVATIONS_LOGGER.info(
        "%s reservation success | reservation_id=%s | status=%s | username=%s",
        step.value,
        reservation_id,
        reservation.Status,
        username,
    )
    return reservation


def approve_reservation(db: Session, reservation_id: int, username: str) -> Reservation:
    return change_reservation_status(db, reservation_id, username, ReservationAction.Approve)


def finish_reservation(db: Session, reservation_id: int, username: str) -> Reservation:
    return change_reservation_status(db, reservation_id, username, ReservationAction.Finish)


def cancel_reservation(db: Session, reservation_id: int, username: str) -> Reservation:
    return change_reservation_status(db, reservation_id, username, ReservationAction.Cancel)


def list_incoming_for_owner(db: Session, owner_username: str, status: ReservationStatus | str) -> list[Reservation]:
    stmt = (
        select(Reservation)
        .join(Device, Device.DeviceID == Reservation.DeviceID)
        .join(User, User.UserID == Device.OwnerID)
        .options(selectinload(Reservation.Device))
        .options(selectinload(Reservation.User))
        .where(User.Username == owner_username)
        .where(Reservation.Status == ReservationStatus(status).value)
        .order_by(Reservation.ReservationID)
    )
    return list(db.execute(stmt).scalars().all())


def find_incoming_reservations(
    db: Session,
    owner_username: str,
    auth_username: str,
    status: ReservationStatus | str,
) -> list[Reservation]:
    if owner_username != auth_username:
        raise Unauthorized()
    return list_incoming_for_owner(db, owner_username, status)


def find_user_reservations(
    db: Session,
    username: str,
    auth_username: str,
    status: ReservationStatus | str,
) -> list[Reservation]:
    """Reservations ``username`` created, in the given status, with device and owner."""
    if username != auth_username:
        raise Unauthorized()
    if find_user(db, username) is None:
        return []
    stmt = (
        select(Reservation)
        .join(User, User.UserID == Reservation.UserID)
        .options(selectinload(Reservation.Device).selectinload(Device.Owner))
        .where(User.Username == username)
        .where(Reservation.Status == ReservationStatus(status).value)
        .order_by(Reservation.ReservationID)
    )
    return list(db.execute(stmt).scalars().all())


def serialize_reservation(reservation: Reservation, include_owner: bool = False, include_user: bool = True) -> dict:
    payload = {
        "id": reservation.ReservationID,
        "dateStart": reservation.DateStart,
        "dateEnd": reservation.DateEnd,
        "status": reservation.Status,
        "deviceId": reservation.DeviceID,
        "userId": reservation.UserID,
    }
    device = reservation.Device
    if device is not None:
        payload["device"] = {
            "id": device.DeviceID,
            "name": device.Name,
            "description": device.Description,
        }
        if include_owner:
            payload["device"]["owner"] = serialize_user(device.Owner)
    if include_user:
        payload["user"] = serialize_user(reservation.User)
    return payload
