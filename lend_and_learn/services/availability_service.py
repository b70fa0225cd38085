from __future__ import annotations

from datetime import date

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from lend_and_learn.models.lending_models import Device, User
from lend_and_learn.services.device_service import serialize_device
from lend_and_learn.services.exceptions import Unauthorized


def find_devices_page(db: Session, limit: int, offset: int, today: date | None = None) -> dict:
    total = int(db.execute(select(func.count(Device.DeviceID))).scalar() or 0)
    stmt = (
        select(Device)
        .options(selectinload(Device.Owner))
        .options(selectinload(Device.ActiveReservations))
        .order_by(Device.DeviceID)
        .offset(max(0, int(offset)))
        .limit(max(0, int(limit)))
        .execution_options(populate_existing=True)
    )
    devices = db.execute(stmt).scalars().all()
    return {
        "total": total,
        "results": [serialize_device(device, today) for device in devices],
    }


def _load_user_with_devices(db: Session, username: str) -> User | None:
    stmt = (
        select(User)
        .options(
            selectinload(User.OwnedDevices).selectinload(Device.ActiveReservations),
            selectinload(User.OwnedDevices).selectinload(Device.Owner),
        )
        .where(User.Username == username)
        .execution_options(populate_existing=True)
    )
    return db.execute(stmt).scalars().first()


def find_user_devices(
    db: Session,
    username: str,
    auth_username: str,
    limit: int,
    offset: int,
    today: date | None = None,
) -> dict:
    if username != auth_username:
        raise Unauthorized()
    user = _load_user_with_devices(db, username)
    if user is None:
        return {"total": 0, "results": []}
    # Owned devices are loaded in full and paged in memory.
    devices = list(user.OwnedDevices)
    start = max(0, int(offset))
    page = devices[start:start + max(0, int(limit))]
    return {
        "total": len(devices),
        "results": [serialize_device(device, today) for device in page],
    }


def get_user_devices_statistics(db: Session, username: str, auth_username: str) -> dict:
    if username != auth_username:
        raise Unauthorized()
    user = _load_user_with_devices(db, username)
    if user is None:
        return {"count": 0, "lent": 0, "available": 0}
    count = len(user.OwnedDevices)
    lent = sum(1 for device in user.OwnedDevices if device.ActiveReservations)
    return {"count": count, "lent": lent, "available": count - lent}
