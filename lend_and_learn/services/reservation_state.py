from __future__ import annotations

from datetime import date
from enum import Enum

from .exceptions import ReservationWrongStatus


class ReservationStatus(str, Enum):
    Created = "Created"
    InProgress = "InProgress"
    Finished = "Finished"
    Cancelled = "Cancelled"


class ReservationAction(str, Enum):
    Approve = "approve"
    Finish = "finish"
    Cancel = "cancel"


ACTIVE_STATUSES = frozenset({ReservationStatus.Created, ReservationStatus.InProgress})
ACTIVE_STATUS_VALUES = tuple(sorted(status.value for status in ACTIVE_STATUSES))
TERMINAL_STATUSES = frozenset({ReservationStatus.Finished, ReservationStatus.Cancelled})

STATUS_TRANSITIONS = {
    (ReservationStatus.Created, ReservationAction.Approve): ReservationStatus.InProgress,
    (ReservationStatus.InProgress, ReservationAction.Finish): ReservationStatus.Finished,
    (ReservationStatus.Created, ReservationAction.Cancel): ReservationStatus.Cancelled,
}


def normalize_status(raw: str | ReservationStatus | None) -> ReservationStatus | None:
    if raw is None:
        return None
    if isinstance(raw, ReservationStatus):
        return raw
    try:
        return ReservationStatus((raw or "").strip())
    except ValueError:
        return None


def next_status(current: str | ReservationStatus | None, action: str | ReservationAction) -> ReservationStatus:
    state = normalize_status(current)
    step = ReservationAction(action)
    target = STATUS_TRANSITIONS.get((state, step)) if state else None
    if target is None:
        raise ReservationWrongStatus(current=state.value if state else str(current), action=step.value)
    return target


def is_active_status(raw: str | ReservationStatus | None) -> bool:
    return normalize_status(raw) in ACTIVE_STATUSES


def ranges_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """Inclusive day ranges overlap when neither ends before the other starts."""
    return a_start <= b_end and a_end >= b_start


def is_active_and_covers_today(reservation, today: date | None = None) -> bool:
    current_day = today or date.today()
    if not is_active_status(reservation.Status):
        return False
    return reservation.DateStart <= current_day <= reservation.DateEnd
