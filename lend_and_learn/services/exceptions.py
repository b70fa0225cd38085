from __future__ import annotations


class LendingError(RuntimeError):
    message = "Lending operation failed."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)


class NotFoundError(LendingError):
    pass


class ConflictError(LendingError):
    pass


class UserNotFound(NotFoundError):
    message = "User not found"


class DeviceNotFound(NotFoundError):
    message = "Device not found"


class ReservationNotFound(NotFoundError):
    message = "Reservation not found"


class ReservationCollision(ConflictError):
    message = "Reservation date collision"


class ReservationWrongStatus(ConflictError):
    message = "Reservation status does not allow this change"

    def __init__(self, current: str | None = None, action: str | None = None):
        detail = self.message
        if current and action:
            detail = f"Cannot {action} reservation in status {current}"
        super().__init__(detail)
        self.current = current
        self.action = action


class DeviceWithActiveReservations(ConflictError):
    code = "DEVICE_WITH_ACTIVE_RESERVATIONS"
    message = "Device has some active reservations"


class Unauthorized(LendingError):
    message = "Unauthorized"
