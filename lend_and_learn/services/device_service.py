from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from lend_and_learn.models.lending_models import Device
from lend_and_learn.services.exceptions import DeviceNotFound, DeviceWithActiveReservations, Unauthorized, UserNotFound
from lend_and_learn.services.reservation_state import is_active_and_covers_today
from lend_and_learn.services.user_service import find_user, serialize_user


DEVICES_LOGGER = logging.getLogger("lend_and_learn.devices")


def find_device(db: Session, device_id: int) -> Device | None:
    return db.get(Device, device_id)


def _load_device_with_owner(db: Session, device_id: int) -> Device | None:
    stmt = (
        select(Device)
        .options(selectinload(Device.Owner))
        .where(Device.DeviceID == device_id)
    )
    return db.execute(stmt).scalars().first()


def find_device_with_owner_and_active_reservations(db: Session, device_id: int) -> Device:
    stmt = (
        select(Device)
        .options(selectinload(Device.Owner))
        .options(selectinload(Device.ActiveReservations))
        .where(Device.DeviceID == device_id)
        .execution_options(populate_existing=True)
    )
    device = db.execute(stmt).scalars().first()
    if device is None:
        raise DeviceNotFound()
    return device


def _require_owner(device: Device, username: str, action: str) -> None:
    owner_username = device.Owner.Username if device.Owner else None
    if owner_username != username:
        DEVICES_LOGGER.warning(
            "%s device rejected | device_id=%s | username=%s | reason=not_owner",
            action,
            device.DeviceID,
            username,
        )
        raise Unauthorized()


def add_new_device(db: Session, name: str, description: str, username: str) -> Device:
    owner = find_user(db, username)
    if owner is None:
        DEVICES_LOGGER.warning("create device failed | username=%s | reason=user_not_found", username)
        raise UserNotFound()
    device = Device(
        Name=name,
        Description=description or "",
        Owner=owner,
        CreatedDate=datetime.now(),
        UpdatedDate=datetime.now(),
    )
    db.add(device)
    db.commit()
    db.refresh(device)
    DEVICES_LOGGER.info("create device success | device_id=%s | owner=%s", device.DeviceID, owner.Username)
    return device


def update_device(db: Session, device_id: int, username: str, name: str, description: str) -> Device:
    device = _load_device_with_owner(db, device_id)
    if device is None:
        raise DeviceNotFound()
    _require_owner(device, username, "update")

    device.Name = name
    device.Description = description or ""
    device.UpdatedDate = datetime.now()
    db.commit()
    db.refresh(device)
    DEVICES_LOGGER.info("update device success | device_id=%s | owner=%s", device.DeviceID, username)
    return device


def delete_device(db: Session, device_id: int, username: str) -> None:
    device = _load_device_with_owner(db, device_id)
    if device is None:
        raise DeviceNotFound()
    _require_owner(device, username, "delete")

    device = find_device_with_owner_and_active_reservations(db, device_id)
    if device.ActiveReservations:
        DEVICES_LOGGER.warning(
            "delete device rejected | device_id=%s | active=%s | reason=active_reservations",
            device_id,
            len(device.ActiveReservations),
        )
        raise DeviceWithActiveReservations()

    db.delete(device)
    db.commit()
    DEVICES_LOGGER.info("delete device success | device_id=%s | owner=%s", device_id, username)


def device_is_booked_today(device: Device, today: date | None = None) -> bool:
    return any(is_active_and_covers_today(reservation, today) for reservation in device.ActiveReservations)


def serialize_device(device: Device, today: date | None = None) -> dict:
    return {
        "id": device.DeviceID,
        "name": device.Name,
        "description": device.Description,
        "owner": serialize_user(device.Owner),
        "reservations": [
            {
                "id": reservation.ReservationID,
                "dateStart": reservation.DateStart,
                "dateEnd": reservation.DateEnd,
                "status": reservation.Status,
            }
            for reservation in device.ActiveReservations
        ],
        "isBookedToday": device_is_booked_today(device, today),
    }
