import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

load_dotenv()

from lend_and_learn.db.base import Base
from lend_and_learn.db.deps import get_lending_db
from lend_and_learn.db.session import engine_lending
from lend_and_learn.logging_config import setup_logging
from lend_and_learn.schemas.devices import CreateDeviceDto, UpdateDeviceDto
from lend_and_learn.schemas.reservations import CreateReservationDto
from lend_and_learn.services.availability_service import (
    find_devices_page,
    find_user_devices,
    get_user_devices_statistics,
)
from lend_and_learn.services.device_service import (
    add_new_device,
    delete_device,
    find_device_with_owner_and_active_reservations,
    serialize_device,
    update_device,
)
from lend_and_learn.services.directory_service import UsermapDirectory
from lend_and_learn.services.exceptions import (
    DeviceNotFound,
    DeviceWithActiveReservations,
    LendingError,
    Unauthorized,
)
from lend_and_learn.services.reservation_service import (
    approve_reservation,
    cancel_reservation,
    create_reservation,
    find_incoming_reservations,
    find_user_reservations,
    finish_reservation,
    serialize_reservation,
)
from lend_and_learn.services.reservation_state import ReservationStatus
from lend_and_learn.services.token_service import TokenCheckError, resolve_token_username
from lend_and_learn.services.user_service import find_user, refresh_user_profile, resolve_or_create_user, serialize_user

setup_logging(os.environ.get("LOG_LEVEL", "INFO"))

STARTUP_LOGGER = logging.getLogger("lend_and_learn.startup")


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine_lending)
    STARTUP_LOGGER.info("database tables ready")
    yield


app = FastAPI(title="Lend and Learn", lifespan=lifespan)


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


_CORS_ALLOW_ORIGINS = _parse_csv_env("CORS_ALLOW_ORIGINS", "http://localhost,http://127.0.0.1")
_CORS_ALLOW_CREDENTIALS = str(os.environ.get("CORS_ALLOW_CREDENTIALS", "true")).strip().lower() in {"1", "true", "yes", "on"}
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

AUTH_LOGGER = logging.getLogger("lend_and_learn.auth")
_DIRECTORY = None


def get_directory() -> UsermapDirectory:
    global _DIRECTORY
    if _DIRECTORY is None:
        _DIRECTORY = UsermapDirectory()
    return _DIRECTORY


def get_principal(x_api_key: str | None = Header(None, alias="X-Api-Key")) -> dict:
    if not x_api_key:
        raise HTTPException(status_code=401, detail="Missing access token.")
    try:
        username = resolve_token_username(x_api_key)
    except TokenCheckError as exc:
        AUTH_LOGGER.warning("token check failed | reason=%s", exc)
        raise HTTPException(status_code=401, detail="Invalid access token.") from exc
    return {"username": username, "accessToken": x_api_key}


def _to_http_exception(exc: LendingError, device_not_found_status: int = 400) -> HTTPException:
    if isinstance(exc, Unauthorized):
        return HTTPException(status_code=401, detail=str(exc))
    if isinstance(exc, DeviceWithActiveReservations):
        return HTTPException(status_code=400, detail={"code": exc.code, "message": str(exc)})
    if isinstance(exc, DeviceNotFound):
        return HTTPException(status_code=device_not_found_status, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_lending_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.get("/")
def homepage(
    principal: dict = Depends(get_principal),
    db: Session = Depends(get_lending_db),
    directory: UsermapDirectory = Depends(get_directory),
):
    try:
        user = resolve_or_create_user(db, directory, principal["accessToken"], principal["username"])
    except LendingError as exc:
        raise _to_http_exception(exc) from exc
    if user is None:
        raise HTTPException(status_code=401, detail="User could not be resolved.")
    AUTH_LOGGER.info("login success | username=%s", user.Username)
    payload = serialize_user(user)
    payload["accessToken"] = principal["accessToken"]
    return payload


# ---------- devices ----------


@app.get("/devices")
def get_devices(
    limit: int = Query(..., gt=0),
    offset: int = Query(0, ge=0),
    principal: dict = Depends(get_principal),
    db: Session = Depends(get_lending_db),
):
    return find_devices_page(db, limit, offset)


@app.get("/devices/{device_id}")
def get_device(device_id: int, principal: dict = Depends(get_principal), db: Session = Depends(get_lending_db)):
    try:
        device = find_device_with_owner_and_active_reservations(db, device_id)
    except LendingError as exc:
        raise _to_http_exception(exc, device_not_found_status=404) from exc
    return serialize_device(device)


@app.post("/devices", status_code=201)
def create_device(
    payload: CreateDeviceDto,
    principal: dict = Depends(get_principal),
    db: Session = Depends(get_lending_db),
):
    try:
        device = add_new_device(db, payload.name, payload.description, payload.username)
    except LendingError as exc:
        raise _to_http_exception(exc) from exc
    return serialize_device(device)


@app.put("/devices/{device_id}")
def put_device(
    device_id: int,
    payload: UpdateDeviceDto,
    principal: dict = Depends(get_principal),
    db: Session = Depends(get_lending_db),
):
    try:
        device = update_device(db, device_id, principal["username"], payload.name, payload.description)
    except LendingError as exc:
        raise _to_http_exception(exc, device_not_found_status=404) from exc
    return serialize_device(device)


@app.delete("/devices/{device_id}")
def remove_device(device_id: int, principal: dict = Depends(get_principal), db: Session = Depends(get_lending_db)):
    try:
        delete_device(db, device_id, principal["username"])
    except LendingError as exc:
        raise _to_http_exception(exc) from exc
    return {"message": "Device deleted"}


# ---------- reservations ----------


@app.post("/reservations", status_code=201)
def post_reservation(
    payload: CreateReservationDto,
    principal: dict = Depends(get_principal),
    db: Session = Depends(get_lending_db),
):
    if payload.dateEnd < payload.dateStart:
        raise HTTPException(status_code=400, detail="dateEnd must be on or after dateStart.")
    try:
        reservation = create_reservation(db, payload.dateStart, payload.dateEnd, payload.deviceId, principal["username"])
    except LendingError as exc:
        raise _to_http_exception(exc) from exc
    return serialize_reservation(reservation)


@app.put("/reservations/{reservation_id}/status-approve")
def put_reservation_approve(
    reservation_id: int,
    principal: dict = Depends(get_principal),
    db: Session = Depends(get_lending_db),
):
    try:
        reservation = approve_reservation(db, reservation_id, principal["username"])
    except LendingError as exc:
        raise _to_http_exception(exc) from exc
    return serialize_reservation(reservation, include_owner=True)


@app.put("/reservations/{reservation_id}/status-finish")
def put_reservation_finish(
    reservation_id: int,
    principal: dict = Depends(get_principal),
    db: Session = Depends(get_lending_db),
):
    try:
        reservation = finish_reservation(db, reservation_id, principal["username"])
    except LendingError as exc:
        raise _to_http_exception(exc) from exc
    return serialize_reservation(reservation, include_owner=True)


@app.put("/reservations/{reservation_id}/status-cancel")
def put_reservation_cancel(
    reservation_id: int,
    principal: dict = Depends(get_principal),
    db: Session = Depends(get_lending_db),
):
    try:
        reservation = cancel_reservation(db, reservation_id, principal["username"])
    except LendingError as exc:
        raise _to_http_exception(exc) from exc
    return serialize_reservation(reservation, include_owner=True)


def _incoming(db: Session, username: str, principal: dict, status: ReservationStatus) -> list[dict]:
    try:
        reservations = find_incoming_reservations(db, username, principal["username"], status)
    except LendingError as exc:
        raise _to_http_exception(exc) from exc
    return [serialize_reservation(reservation) for reservation in reservations]


@app.get("/reservations/{username}/created")
def get_incoming_created(username: str, principal: dict = Depends(get_principal), db: Session = Depends(get_lending_db)):
    return _incoming(db, username, principal, ReservationStatus.Created)


@app.get("/reservations/{username}/in-progress")
def get_incoming_in_progress(
    username: str,
    principal: dict = Depends(get_principal),
    db: Session = Depends(get_lending_db),
):
    return _incoming(db, username, principal, ReservationStatus.InProgress)


# ---------- users ----------


@app.get("/users/{username}")
def get_user(username: str, principal: dict = Depends(get_principal), db: Session = Depends(get_lending_db)):
    return serialize_user(find_user(db, username))


@app.put("/users/{username}/update")
def put_user_update(
    username: str,
    principal: dict = Depends(get_principal),
    db: Session = Depends(get_lending_db),
    directory: UsermapDirectory = Depends(get_directory),
):
    try:
        user = refresh_user_profile(db, directory, username, principal["username"], principal["accessToken"])
    except LendingError as exc:
        raise _to_http_exception(exc) from exc
    return serialize_user(user)


@app.get("/users/{username}/devices")
def get_user_devices(
    username: str,
    limit: int = Query(..., gt=0),
    offset: int = Query(0, ge=0),
    principal: dict = Depends(get_principal),
    db: Session = Depends(get_lending_db),
):
    try:
        return find_user_devices(db, username, principal["username"], limit, offset)
    except LendingError as exc:
        raise _to_http_exception(exc) from exc


@app.get("/users/{username}/devices/statistics")
def get_user_devices_stats(username: str, principal: dict = Depends(get_principal), db: Session = Depends(get_lending_db)):
    try:
        return get_user_devices_statistics(db, username, principal["username"])
    except LendingError as exc:
        raise _to_http_exception(exc) from exc


def _outgoing(db: Session, username: str, principal: dict, status: ReservationStatus) -> list[dict]:
    try:
        reservations = find_user_reservations(db, username, principal["username"], status)
    except LendingError as exc:
        raise _to_http_exception(exc) from exc
    return [serialize_reservation(reservation, include_owner=True, include_user=False) for reservation in reservations]


@app.get("/users/{username}/reservations/created")
def get_user_reservations_created(
    username: str,
    principal: dict = Depends(get_principal),
    db: Session = Depends(get_lending_db),
):
    return _outgoing(db, username, principal, ReservationStatus.Created)


@app.get("/users/{username}/reservations/in-progress")
def get_user_reservations_in_progress(
    username: str,
    principal: dict = Depends(get_principal),
    db: Session = Depends(get_lending_db),
):
    return _outgoing(db, username, principal, ReservationStatus.InProgress)
